"""
Arithmetic over resource requests, limits and pod-level bounds.

Requests, limits and the pod minimum/maximum are all handled the same way here:
a binding is a float keyed by (role, resource name), tagged as either a
fraction of something or an absolute quantity. This keeps the sizing code free
of per-field special cases, at the price of float rounding that the
rendering and force_limit_above_request have to absorb.
"""

import dataclasses
import logging
import math
import re
from decimal import ROUND_DOWN, Decimal, localcontext
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from kubernetes.utils import parse_quantity

from .config import MILLI_RENDER_THRESHOLD
from .errors import InvalidAnnotationValue, InvalidResourceValue, MissingBindingError

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """How a binding value is parsed and rendered."""
    FRACTION = "fraction"
    QUANTITY = "quantity"


class ResourceRole(str, Enum):
    """The logical bucket a binding belongs to."""
    REQUESTS = "requests"
    LIMITS = "limits"
    POD_MINIMUM = "pod-minimum"
    POD_MAXIMUM = "pod-maximum"


CONTAINER_ROLES = (ResourceRole.REQUESTS, ResourceRole.LIMITS)

_SCALE_SUFFIXES = {0: "", 3: "k", 6: "M", 9: "G", 12: "T", 15: "P", 18: "E"}
_MAX_SCALE = 18
_FRACTION_PATTERN = re.compile(r"^\+?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?$")


def parse_fraction(text: str) -> float:
    """
    Parse a fraction of node capacity.

    Examples:
        "0.1" -> 0.1
        "1" -> 1.0
        "1.5" -> ValueError
    """
    text = str(text).strip()
    if not _FRACTION_PATTERN.match(text):
        raise ValueError(f"{text!r} is not a decimal number")

    value = float(text)
    # 0 makes no sense as a request or limit
    if value <= 0:
        raise ValueError(f"{text} is not a valid fraction: cannot be <= 0")
    if value > 1:
        raise ValueError(f"{text} is not a valid fraction: cannot be > 1")
    return value


def parse_quantity_value(text) -> float:
    """
    Parse a Kubernetes quantity string to a float.

    Examples:
        "100m" -> 0.1
        "2Gi" -> 2147483648.0
        "1.5G" -> 1500000000.0
    """
    quantity = parse_quantity(str(text).strip())
    if not quantity.is_finite():
        raise ValueError(f"{text} is not a finite quantity")
    return float(quantity)


def _plain(number: Decimal) -> str:
    text = format(number, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_fraction(value: float) -> str:
    """Format a fraction as a plain decimal, e.g. 0.25 -> "0.25", 1.0 -> "1"."""
    return _plain(Decimal(repr(value)))


def format_quantity(value: float) -> str:
    """
    Format a float as a Kubernetes quantity string.

    Values up to MILLI_RENDER_THRESHOLD milli-units are rendered in milli-units
    ("400m", "2"), truncated to a whole milli-unit. Larger values use the
    largest SI scale that is a multiple of 3 and does not exceed the value's
    order of magnitude, with at most three truncated decimals
    ("840M", "858.993M"), so the relative error stays below 1e-3.
    """
    if not math.isfinite(value):
        raise ValueError(f"{value} cannot be rendered as a quantity")

    # 12 significant digits absorb float noise such as 0.29999999999999993
    with localcontext() as ctx:
        ctx.prec = 12
        amount = +Decimal(repr(value))
    milli = amount * 1000
    if milli <= MILLI_RENDER_THRESHOLD:
        milli = milli.to_integral_value(rounding=ROUND_DOWN)
        if milli == 0:
            return "0"
        if milli % 1000 == 0:
            return _plain(milli / 1000)
        return f"{_plain(milli)}m"

    scale = min((amount.adjusted() // 3) * 3, _MAX_SCALE)
    mantissa = amount.scaleb(-scale).quantize(Decimal("0.001"), rounding=ROUND_DOWN)
    return _plain(mantissa) + _SCALE_SUFFIXES[scale]


def _escape_pointer(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


@dataclasses.dataclass(frozen=True)
class Binding:
    """A value bound to one (kind, role, resource) coordinate."""
    kind: ResourceKind
    role: ResourceRole
    resource: str
    value: float

    @property
    def key(self) -> Tuple[ResourceRole, str]:
        return self.role, self.resource

    def with_value(self, value: float) -> "Binding":
        return dataclasses.replace(self, value=float(value))

    def human_value(self) -> str:
        """Render the value the way Kubernetes would print it, e.g. 2G or 200m."""
        if self.kind == ResourceKind.FRACTION:
            return format_fraction(self.value)
        return format_quantity(self.value)

    def json_path(self, container_index: int) -> str:
        """JSON pointer to this binding in the pod's container list."""
        return "/spec/containers/{}/resources/{}/{}".format(
            container_index, self.role.value, _escape_pointer(self.resource)
        )

    def __str__(self) -> str:
        return f"{self.role.value}.{self.resource}={self.value:f}={self.human_value()} ({self.kind.value})"


class PropertySet:
    """
    Bindings describing a container or a pod at one stage of the sizing.

    An absent binding means "unset", never zero. Bindings are immutable, so
    sets never share mutable state: in-place operations swap entries for new
    bindings.
    """

    def __init__(self, bindings: Iterable[Binding] = ()):
        self._bindings: Dict[Tuple[ResourceRole, str], Binding] = {}
        for binding in bindings:
            self.put(binding)

    @classmethod
    def from_resource_requirements(cls, requirements) -> "PropertySet":
        """
        Build quantity bindings from a container's resource requirements.

        Args:
            requirements: A V1ResourceRequirements (or None)

        Returns:
            A PropertySet with one binding per request and limit
        """
        result = cls()
        if requirements is None:
            return result

        for role, quantities in (
            (ResourceRole.REQUESTS, requirements.requests),
            (ResourceRole.LIMITS, requirements.limits),
        ):
            for name, text in (quantities or {}).items():
                try:
                    value = parse_quantity_value(text)
                except ValueError as e:
                    raise InvalidResourceValue(
                        f"{role.value}.{name}={text} is not a valid quantity: {e}"
                    ) from e
                result.bind_value(ResourceKind.QUANTITY, role, name, value)
        return result

    def __iter__(self) -> Iterator[Binding]:
        return iter(list(self._bindings.values()))

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, key) -> bool:
        return key in self._bindings

    def __repr__(self) -> str:
        return f"PropertySet([{', '.join(str(b) for b in self)}])"

    def __str__(self) -> str:
        return "\n".join(str(b) for b in self)

    def get(self, role: ResourceRole, resource: str) -> Optional[Binding]:
        return self._bindings.get((role, resource))

    def value(self, role: ResourceRole, resource: str) -> Optional[float]:
        """Return the bound value, or None for an unbound coordinate."""
        binding = self.get(role, resource)
        return binding.value if binding is not None else None

    def put(self, binding: Binding) -> None:
        """Register a binding, replacing any binding on the same coordinate."""
        self._bindings[binding.key] = binding

    def bind_value(self, kind: ResourceKind, role: ResourceRole, resource: str, value: float) -> None:
        self.put(Binding(kind, role, resource, float(value)))

    def bind(self, kind: ResourceKind, role: ResourceRole, resource: str, text: str) -> None:
        """
        Bind a coordinate by parsing a string.

        Fractions must be a decimal in (0, 1]. Quantities accept anything
        Kubernetes would, including SI suffixes like 100m or 2Gi.

        Raises:
            InvalidAnnotationValue: If the text cannot be parsed as the kind
        """
        try:
            if kind == ResourceKind.FRACTION:
                value = parse_fraction(text)
            else:
                value = parse_quantity_value(text)
        except ValueError as e:
            raise InvalidAnnotationValue(f"{text} cannot be parsed as a {kind.value}: {e}") from e

        self.bind_value(kind, role, resource, value)

    def select(self, predicate: Callable[[Binding], bool]) -> "PropertySet":
        """Return a new set holding the bindings matching predicate."""
        return PropertySet(b for b in self if predicate(b))

    def resource_names(self) -> List[str]:
        """Distinct resource names, in binding order."""
        names: List[str] = []
        for role, resource in self._bindings:
            if resource not in names:
                names.append(resource)
        return names

    def add(self, operand: "PropertySet") -> None:
        """
        Sum the operand into the receiver, in place.

        Bindings missing from the receiver are copied over.
        """
        for other in operand:
            ours = self.get(other.role, other.resource)
            if ours is not None:
                self.put(ours.with_value(ours.value + other.value))
            else:
                self.put(other)

    def subtract(self, operand: "PropertySet") -> None:
        """
        Subtract the operand from the receiver, in place.

        Only coordinates bound on the receiver are touched; operand bindings
        without a counterpart are ignored.
        """
        for other in operand:
            ours = self.get(other.role, other.resource)
            if ours is not None:
                self.put(ours.with_value(ours.value - other.value))

    def mul(self, operand: "PropertySet") -> "PropertySet":
        """
        Multiply the receiver by the operand into a new set.

        Coordinates unset on either side are unset on the result rather than
        set to zero. Two fractions produce a fraction, anything else produces
        a quantity.
        """
        result = PropertySet()
        for ours in self:
            other = operand.get(ours.role, ours.resource)
            if other is None:
                continue
            kind = ResourceKind.QUANTITY
            if ours.kind == ResourceKind.FRACTION and other.kind == ResourceKind.FRACTION:
                kind = ResourceKind.FRACTION
            result.bind_value(kind, ours.role, ours.resource, ours.value * other.value)
        return result

    def div(self, operand: "PropertySet") -> "PropertySet":
        """
        Divide the receiver by the operand into a new set.

        Every receiver binding needs a matching operand binding. Operand
        bindings absent from the receiver are absent from the result.

        Kinds: quantity / quantity and fraction / fraction give a fraction,
        mixed kinds give a quantity.

        Raises:
            MissingBindingError: If the operand lacks a receiver coordinate
        """
        result = PropertySet()
        for ours in self:
            other = operand.get(ours.role, ours.resource)
            if other is None:
                raise MissingBindingError(
                    f"cannot divide {ours.role.value}.{ours.resource}: no matching operand binding"
                )
            kind = ResourceKind.FRACTION if ours.kind == other.kind else ResourceKind.QUANTITY
            result.bind_value(kind, ours.role, ours.resource, ours.value / other.value)
        return result

    def force_limit_above_request(self) -> List[str]:
        """
        Lower any request above its limit down to the limit, in place.

        Float rounding occasionally produces a request a hair above its
        limit once a pod budget is split between containers.

        Returns:
            Names of the resources whose request was lowered
        """
        corrected = []
        for resource in self.resource_names():
            request = self.get(ResourceRole.REQUESTS, resource)
            limit = self.get(ResourceRole.LIMITS, resource)
            if request is not None and limit is not None and request.value > limit.value:
                logger.warning(
                    f"Lowering {resource} request {request.value} to its limit {limit.value}"
                )
                self.put(request.with_value(limit.value))
                corrected.append(resource)
        return corrected

    def clamp(self, bounds: "PropertySet") -> None:
        """
        Clamp requests and limits to the pod minimum and maximum, in place.

        Args:
            bounds: A set holding pod-minimum and/or pod-maximum bindings
        """
        for resource in self.resource_names():
            minimum = bounds.get(ResourceRole.POD_MINIMUM, resource)
            maximum = bounds.get(ResourceRole.POD_MAXIMUM, resource)
            if minimum is None and maximum is None:
                continue

            for role in (ResourceRole.LIMITS, ResourceRole.REQUESTS):
                binding = self.get(role, resource)
                if binding is None:
                    continue
                value = binding.value
                if minimum is not None and value < minimum.value:
                    value = minimum.value
                if maximum is not None and value > maximum.value:
                    value = maximum.value
                if value != binding.value:
                    logger.debug(f"Clamped {role.value}.{resource} from {binding.value} to {value}")
                    self.put(binding.with_value(value))
