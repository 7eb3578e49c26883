"""Node resolution and an in-memory cache of cluster nodes."""

import logging
import threading
import time
from typing import Dict, List, Optional

from kubernetes import watch
from kubernetes.client.rest import ApiException

from .config import WATCH_RETRY_SECONDS, WATCH_TIMEOUT_SECONDS
from .errors import NodeResolutionError

logger = logging.getLogger(__name__)

NODE_NAME_FIELD = "metadata.name"


def resolve_node_name(pod) -> str:
    """
    Find the node a pod is pinned to.

    spec.nodeName is not set yet when a pod is created, so the node is read
    from a required node affinity of exactly this shape:

        spec:
          affinity:
            nodeAffinity:
              requiredDuringSchedulingIgnoredDuringExecution:
                nodeSelectorTerms:
                - matchFields:
                  - key: metadata.name
                    operator: In
                    values:
                    - node-1

    This is the shape the DaemonSet controller gives its pods.

    Args:
        pod: Kubernetes Pod object

    Returns:
        The node name

    Raises:
        NodeResolutionError: If the affinity has any other shape
    """
    affinity = pod.spec.affinity if pod.spec else None
    if affinity is None:
        raise NodeResolutionError("pod does not have affinity")
    if affinity.node_affinity is None:
        raise NodeResolutionError("pod does not have affinity.nodeAffinity")

    required = affinity.node_affinity.required_during_scheduling_ignored_during_execution
    if required is None:
        raise NodeResolutionError(
            "pod does not have affinity.nodeAffinity.requiredDuringSchedulingIgnoredDuringExecution"
        )

    terms = required.node_selector_terms or []
    if len(terms) != 1:
        raise NodeResolutionError(f"pod has {len(terms)} nodeSelectorTerms, expected exactly 1")

    fields = terms[0].match_fields or []
    if len(fields) != 1:
        raise NodeResolutionError(f"pod has {len(fields)} matchFields, expected exactly 1")

    requirement = fields[0]
    if requirement.key != NODE_NAME_FIELD or requirement.operator != "In":
        raise NodeResolutionError(
            f"matchField {requirement.key} {requirement.operator} cannot pin a node, "
            f"expected {NODE_NAME_FIELD} In"
        )

    values = requirement.values or []
    if len(values) != 1:
        raise NodeResolutionError(f"matchField has {len(values)} values, expected exactly 1")

    return values[0]


class NodeCache:
    """Thread-safe cache of Node objects, keyed by node name."""

    def __init__(self):
        """Initialize the cache."""
        self._nodes: Dict[str, object] = {}
        self._lock = threading.RLock()
        self._synced = threading.Event()

    def add_or_update(self, node) -> None:
        """
        Add or update a node in the cache.

        Args:
            node: The V1Node object from the Kubernetes API
        """
        name = node.metadata.name
        with self._lock:
            self._nodes[name] = node
        logger.debug(f"Cached node: {name}")

    def remove(self, name: str) -> Optional[object]:
        """
        Remove a node from the cache.

        Returns:
            The removed node or None
        """
        with self._lock:
            node = self._nodes.pop(name, None)
        if node is not None:
            logger.info(f"Removed node from cache: {name}")
        return node

    def get_node(self, name: str):
        """
        Get a node from the cache.

        Raises:
            NodeResolutionError: If the cache never synced
        """
        if not self._synced.is_set():
            raise NodeResolutionError("node cache is not synced yet")
        with self._lock:
            return self._nodes.get(name)

    def replace_all(self, nodes) -> None:
        """Replace the cache content with a full node listing."""
        with self._lock:
            self._nodes = {node.metadata.name: node for node in nodes}

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._nodes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def mark_synced(self) -> None:
        self._synced.set()

    @property
    def synced(self) -> bool:
        return self._synced.is_set()


class NodeWatcher:
    """Keeps a NodeCache in step with the cluster using list + watch."""

    def __init__(self, core_v1, cache: NodeCache, timeout: int = WATCH_TIMEOUT_SECONDS):
        """
        Initialize the watcher.

        Args:
            core_v1: A CoreV1Api client
            cache: The cache to fill
            timeout: Server-side watch timeout in seconds
        """
        self.v1 = core_v1
        self.cache = cache
        self.timeout = timeout
        self._resource_version: Optional[str] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def load_existing_nodes(self) -> int:
        """
        List all nodes into the cache.

        Returns:
            Number of nodes loaded
        """
        logger.info("Loading existing nodes...")
        nodes = self.v1.list_node()
        self.cache.replace_all(nodes.items)
        self._resource_version = nodes.metadata.resource_version if nodes.metadata else None
        self.cache.mark_synced()

        count = len(nodes.items)
        logger.info(f"Loaded {count} existing nodes")
        return count

    def handle_event(self, event_type: str, node) -> None:
        """
        Handle a node watch event.

        Args:
            event_type: ADDED, MODIFIED, DELETED or BOOKMARK
            node: The node object from the event
        """
        if node.metadata and node.metadata.resource_version:
            self._resource_version = node.metadata.resource_version

        if event_type in ("ADDED", "MODIFIED"):
            self.cache.add_or_update(node)
        elif event_type == "DELETED":
            self.cache.remove(node.metadata.name)

    def watch_nodes(self) -> None:
        """Watch for Node events in a loop."""
        logger.info("Starting node watcher...")
        w = watch.Watch()

        while not self._stop_event.is_set():
            try:
                if self._resource_version is None:
                    self.load_existing_nodes()

                stream = w.stream(
                    self.v1.list_node,
                    resource_version=self._resource_version,
                    timeout_seconds=self.timeout
                )
                for event in stream:
                    if self._stop_event.is_set():
                        break
                    self.handle_event(event["type"], event["object"])

            except ApiException as e:
                if e.status == 410:
                    logger.info("Node watch expired, relisting")
                    self._resource_version = None
                    continue
                logger.error(f"Node watch error: {e}")
                self._stop_event.wait(WATCH_RETRY_SECONDS)
            except Exception as e:
                logger.error(f"Unexpected error in node watcher: {e}")
                self._resource_version = None
                self._stop_event.wait(WATCH_RETRY_SECONDS)

        w.stop()

    def start(self) -> threading.Thread:
        """Run the watch loop in a daemon thread."""
        self._thread = threading.Thread(
            target=self.watch_nodes,
            name="node-watcher",
            daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        """Stop the watcher."""
        logger.info("Stopping node watcher...")
        self._stop_event.set()
