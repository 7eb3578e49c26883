"""Proportional allocation of a node-derived budget between a pod's containers."""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .config import CAPACITY_SOURCES, DEFAULT_CAPACITY_SOURCE
from .errors import BudgetExhaustedError, InvalidResourceValue, NodeResolutionError
from .resource_properties import CONTAINER_ROLES, PropertySet, ResourceKind, ResourceRole, parse_quantity_value

logger = logging.getLogger(__name__)


@dataclass
class ContainerResources:
    """A container's position in the pod and its declared requests/limits."""
    index: int
    name: str
    properties: PropertySet


def container_resources(pod) -> List[ContainerResources]:
    """
    Extract the declared resources of every container of a pod.

    Args:
        pod: Kubernetes Pod object

    Returns:
        One ContainerResources per container, in pod order
    """
    result = []
    for index, container in enumerate(pod.spec.containers or []):
        try:
            properties = PropertySet.from_resource_requirements(container.resources)
        except InvalidResourceValue as e:
            raise InvalidResourceValue(f"container {container.name}: {e}") from e
        result.append(ContainerResources(index=index, name=container.name, properties=properties))
    return result


def split_excluded(containers: Sequence[ContainerResources], excluded: Iterable[str]):
    """Split containers into (included, excluded) lists, keeping pod order."""
    excluded = set(excluded)
    included = [c for c in containers if c.name not in excluded]
    left_out = [c for c in containers if c.name in excluded]

    unknown = excluded - {c.name for c in containers}
    if unknown:
        logger.debug(f"Excluded containers not found in pod: {sorted(unknown)}")
    return included, left_out


def total_properties(containers: Iterable[ContainerResources]) -> PropertySet:
    """Sum the declared resources of the given containers."""
    total = PropertySet()
    for container in containers:
        total.add(container.properties)
    return total


def compute_proportions(
    containers: Sequence[ContainerResources],
    excluded: Iterable[str] = ()
) -> Dict[int, PropertySet]:
    """
    Compute each container's share of the pod's own declared resources.

    For every (role, resource), the share of a container is its value
    divided by the total over the non-excluded containers. A zero total
    gives no share for that coordinate, and neither does a container that
    does not declare it.

        C1 requests cpu 100m, C2 requests cpu 300m
        -> C1 requests.cpu 0.25, C2 requests.cpu 0.75

    Args:
        containers: The pod's containers
        excluded: Names of containers left out of the sizing

    Returns:
        Fraction bindings keyed by container index, for included containers only
    """
    included, _ = split_excluded(containers, excluded)
    totals = total_properties(included).select(lambda b: b.value != 0)

    proportions = {}
    for container in included:
        divisible = container.properties.select(lambda b: b.key in totals)
        proportions[container.index] = divisible.div(totals)
    return proportions


def node_capacity(node, source: str = DEFAULT_CAPACITY_SOURCE) -> PropertySet:
    """
    Read a node's capacity as request and limit quantity bindings.

    Args:
        node: Kubernetes Node object
        source: "allocatable" or "capacity"

    Returns:
        A PropertySet binding every node resource for both requests and limits
    """
    if source not in CAPACITY_SOURCES:
        raise ValueError(f"unknown capacity source {source!r}, expected one of {CAPACITY_SOURCES}")

    name = node.metadata.name if node.metadata else "<unnamed>"
    quantities = getattr(node.status, source, None) if node.status else None
    if not quantities:
        raise NodeResolutionError(f"node {name} reports no {source} resources")

    result = PropertySet()
    for resource, text in quantities.items():
        try:
            value = parse_quantity_value(text)
        except ValueError as e:
            raise InvalidResourceValue(f"node {name} {source}.{resource}={text}: {e}") from e
        for role in CONTAINER_ROLES:
            result.bind_value(ResourceKind.QUANTITY, role, resource, value)
    return result


def compute_pod_budget(
    capacity: PropertySet,
    fractions: PropertySet,
    excluded_total: PropertySet
) -> PropertySet:
    """
    Compute the absolute budget of a pod.

    pod_budget = node_capacity * fraction - sum(excluded container values),
    for every (role, resource) with a configured fraction. No floor is
    applied here.
    """
    budget = capacity.mul(fractions)
    budget.subtract(excluded_total)
    return budget


def check_budget(budget: PropertySet) -> None:
    """
    Reject a budget that leaves nothing to distribute.

    Raises:
        BudgetExhaustedError: If any budget binding is zero or negative
    """
    exhausted = [b for b in budget if b.value <= 0]
    if exhausted:
        details = ", ".join(f"{b.role.value}.{b.resource}={b.value}" for b in exhausted)
        raise BudgetExhaustedError(f"pod budget is not positive: {details}")


def cap_requests_at_declared_limits(container_budget: PropertySet, declared: PropertySet) -> List[str]:
    """
    Lower resized requests above a limit the pod keeps unchanged, in place.

    A request is only compared here when its limit is not resized, so the
    limit declared on the container stays in the pod after patching.

    Returns:
        Names of the resources whose request was lowered
    """
    corrected = []
    for request in container_budget.select(lambda b: b.role == ResourceRole.REQUESTS):
        if container_budget.get(ResourceRole.LIMITS, request.resource) is not None:
            continue
        limit = declared.get(ResourceRole.LIMITS, request.resource)
        if limit is not None and request.value > limit.value:
            logger.warning(
                f"Lowering {request.resource} request {request.value} to its declared limit {limit.value}"
            )
            container_budget.put(request.with_value(limit.value))
            corrected.append(request.resource)
    return corrected


def distribute_budget(
    proportions: Dict[int, PropertySet],
    budget: PropertySet,
    declared: Optional[Dict[int, PropertySet]] = None
) -> Dict[int, PropertySet]:
    """
    Turn container shares into absolute container budgets.

    Each share is multiplied by the pod budget, then requests above their
    limit are lowered to the limit. The limit is the resized one when there
    is one, otherwise the one declared on the container.

    Args:
        proportions: Container shares keyed by container index
        budget: The pod budget
        declared: Declared container resources keyed by container index

    Returns:
        Quantity bindings keyed by container index
    """
    declared = declared or {}
    budgets = {}
    for index, shares in proportions.items():
        container_budget = shares.mul(budget)
        if container_budget.force_limit_above_request():
            logger.debug(f"Container #{index} had requests above limits after distribution")
        if index in declared:
            cap_requests_at_declared_limits(container_budget, declared[index])
        budgets[index] = container_budget
    return budgets
