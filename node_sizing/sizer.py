"""Sizing of a pod against the node it is pinned to."""

import logging
from typing import Dict, List

from .allocation import (
    check_budget,
    compute_pod_budget,
    compute_proportions,
    container_resources,
    distribute_budget,
    node_capacity,
    split_excluded,
    total_properties,
)
from .annotations import parse_annotations
from .config import DEFAULT_CAPACITY_SOURCE, STATUS_ANNOTATION
from .errors import NodeResolutionError
from .node_cache import resolve_node_name
from .patch import PatchOperation, build_patch
from .resource_properties import PropertySet

logger = logging.getLogger(__name__)


class PodSizer:
    """Computes the resource patch of a pod from its annotations and its node."""

    def __init__(
        self,
        node_provider,
        capacity_source: str = DEFAULT_CAPACITY_SOURCE,
        status_key: str = STATUS_ANNOTATION
    ):
        """
        Initialize the sizer.

        Args:
            node_provider: Object with a get_node(name) method returning a V1Node or None
            capacity_source: Node status field used as capacity ("allocatable" or "capacity")
            status_key: Annotation recording the patch count
        """
        self.node_provider = node_provider
        self.capacity_source = capacity_source
        self.status_key = status_key

    def _pod_key(self, pod) -> str:
        metadata = pod.metadata
        if metadata is None:
            return "<unknown>"
        name = metadata.name or metadata.generate_name or "<unnamed>"
        return f"{metadata.namespace}/{name}"

    def get_node(self, pod):
        """
        Look up the node the pod is pinned to.

        Raises:
            NodeResolutionError: If the node cannot be derived or is missing
        """
        node_name = resolve_node_name(pod)
        node = self.node_provider.get_node(node_name)
        if node is None:
            raise NodeResolutionError(f"cannot find data for node '{node_name}'")
        return node

    def compute_container_budgets(self, pod) -> Dict[int, PropertySet]:
        """
        Compute the final requests and limits of every sized container.

        The pod budget is clamped to the configured bounds before it is
        split between containers, and requests are then capped by limits
        container by container. This order matters.

        Args:
            pod: Kubernetes Pod object

        Returns:
            Quantity bindings keyed by container index; excluded containers
            and unconfigured resources are absent
        """
        pod_key = self._pod_key(pod)
        settings = parse_annotations(pod.metadata.annotations if pod.metadata else None)
        if not settings.has_fractions:
            logger.debug(f"Pod {pod_key} has no sizing fraction, nothing to do")
            return {}

        node = self.get_node(pod)
        capacity = node_capacity(node, self.capacity_source)

        containers = container_resources(pod)
        proportions = compute_proportions(containers, settings.excluded_containers)
        _, excluded = split_excluded(containers, settings.excluded_containers)

        budget = compute_pod_budget(capacity, settings.fractions(), total_properties(excluded))
        budget.clamp(settings.properties)
        check_budget(budget)
        logger.debug(f"Pod {pod_key} budget on node {node.metadata.name}: {budget!r}")

        declared = {c.index: c.properties for c in containers}
        return distribute_budget(proportions, budget, declared)

    def create_patch(self, pod) -> List[PatchOperation]:
        """
        Compute the JSON patch resizing a pod.

        Returns:
            The patch operations, empty if the pod is left unchanged

        Raises:
            SizingError: If the pod cannot be sized; no partial patch is produced
        """
        pod_key = self._pod_key(pod)
        logger.debug(f"Starting patch process for pod {pod_key}")

        budgets = self.compute_container_budgets(pod)
        patch = build_patch(budgets, self.status_key)

        if patch:
            logger.info(f"Pod {pod_key}: {len(patch) - 1} resource(s) resized")
        else:
            logger.debug(f"Pod {pod_key}: concluding patch process without a single patch")
        return patch
