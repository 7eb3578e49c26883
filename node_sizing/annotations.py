"""Parsing of the sizing annotations set on a pod."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import ANNOTATION_PREFIX, EXCLUDE_CONTAINERS_ANNOTATION
from .errors import InvalidAnnotationValue
from .resource_properties import CONTAINER_ROLES, PropertySet, ResourceKind, ResourceRole

logger = logging.getLogger(__name__)

# Other packages cannot register annotations; the table is fixed.
SUPPORTED_ANNOTATIONS: Dict[str, Tuple[ResourceKind, ResourceRole, str]] = {
    ANNOTATION_PREFIX + "request-cpu-fraction": (ResourceKind.FRACTION, ResourceRole.REQUESTS, "cpu"),
    ANNOTATION_PREFIX + "request-memory-fraction": (ResourceKind.FRACTION, ResourceRole.REQUESTS, "memory"),
    ANNOTATION_PREFIX + "limit-cpu-fraction": (ResourceKind.FRACTION, ResourceRole.LIMITS, "cpu"),
    ANNOTATION_PREFIX + "limit-memory-fraction": (ResourceKind.FRACTION, ResourceRole.LIMITS, "memory"),
    ANNOTATION_PREFIX + "minimum-cpu": (ResourceKind.QUANTITY, ResourceRole.POD_MINIMUM, "cpu"),
    ANNOTATION_PREFIX + "minimum-memory": (ResourceKind.QUANTITY, ResourceRole.POD_MINIMUM, "memory"),
    ANNOTATION_PREFIX + "maximum-cpu": (ResourceKind.QUANTITY, ResourceRole.POD_MAXIMUM, "cpu"),
    ANNOTATION_PREFIX + "maximum-memory": (ResourceKind.QUANTITY, ResourceRole.POD_MAXIMUM, "memory"),
}


@dataclass
class SizingAnnotations:
    """Sizing settings parsed from a pod's annotations."""
    properties: PropertySet = field(default_factory=PropertySet)
    excluded_containers: List[str] = field(default_factory=list)

    def fractions(self) -> PropertySet:
        """The request and limit fractions of node capacity."""
        return self.properties.select(lambda b: b.role in CONTAINER_ROLES)

    @property
    def has_fractions(self) -> bool:
        return len(self.fractions()) > 0


def parse_excluded_containers(value: str) -> List[str]:
    """
    Split a comma-separated container list.

    Examples:
        "istio-proxy, log-shipper" -> ["istio-proxy", "log-shipper"]
        "" -> []
    """
    names = []
    for name in value.split(","):
        name = name.strip()
        if name and name not in names:
            names.append(name)
    return names


def parse_annotations(annotations: Optional[Dict[str, str]]) -> SizingAnnotations:
    """
    Parse every recognized sizing annotation.

    Unknown annotations are ignored. A single malformed value aborts the
    whole parse so that partial settings are never used.

    Args:
        annotations: The pod's annotation map (may be None)

    Returns:
        The parsed SizingAnnotations

    Raises:
        InvalidAnnotationValue: If a recognized annotation is malformed
    """
    annotations = annotations or {}
    result = SizingAnnotations()

    for key, (kind, role, resource) in SUPPORTED_ANNOTATIONS.items():
        if key not in annotations:
            continue
        try:
            result.properties.bind(kind, role, resource, annotations[key])
        except InvalidAnnotationValue as e:
            raise InvalidAnnotationValue(f"annotation {key}: {e}", key=key) from e

    if EXCLUDE_CONTAINERS_ANNOTATION in annotations:
        result.excluded_containers = parse_excluded_containers(annotations[EXCLUDE_CONTAINERS_ANNOTATION])

    logger.debug(f"Parsed sizing annotations: {result.properties!r}, excluded={result.excluded_containers}")
    return result
