"""Shared fixtures for sizing tests."""

from unittest.mock import MagicMock

import pytest
from kubernetes.client import (
    V1Affinity,
    V1Container,
    V1Node,
    V1NodeAffinity,
    V1NodeSelector,
    V1NodeSelectorRequirement,
    V1NodeSelectorTerm,
    V1NodeStatus,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
    V1ResourceRequirements,
)

from node_sizing.config import ANNOTATION_PREFIX
from node_sizing.node_cache import NodeCache


def _pinned_affinity(node_name: str, operator: str = "In", key: str = "metadata.name", values=None):
    return V1Affinity(
        node_affinity=V1NodeAffinity(
            required_during_scheduling_ignored_during_execution=V1NodeSelector(
                node_selector_terms=[
                    V1NodeSelectorTerm(
                        match_fields=[
                            V1NodeSelectorRequirement(
                                key=key,
                                operator=operator,
                                values=values if values is not None else [node_name],
                            )
                        ]
                    )
                ]
            )
        )
    )


@pytest.fixture
def pinned_affinity():
    """Build a required node affinity with a single matchFields entry."""
    return _pinned_affinity


@pytest.fixture
def make_container():
    def _make(name, requests=None, limits=None):
        return V1Container(
            name=name,
            image="busybox",
            resources=V1ResourceRequirements(requests=requests, limits=limits),
        )
    return _make


@pytest.fixture
def make_pod(make_container):
    """Build a pod pinned to node-1 by default; annotation keys are given without prefix."""
    def _make(containers=None, annotations=None, node_name="node-1", affinity=None):
        if containers is None:
            containers = [
                make_container("c1", requests={"cpu": "100m", "memory": "100Mi"}),
                make_container("c2", requests={"cpu": "300m", "memory": "900Mi"}),
            ]
        if affinity is None and node_name is not None:
            affinity = _pinned_affinity(node_name)
        return V1Pod(
            metadata=V1ObjectMeta(
                name="web-0",
                namespace="default",
                annotations={ANNOTATION_PREFIX + k: v for k, v in (annotations or {}).items()},
            ),
            spec=V1PodSpec(containers=containers, affinity=affinity),
        )
    return _make


@pytest.fixture
def make_node():
    def _make(name="node-1", allocatable=None, capacity=None):
        return V1Node(
            metadata=V1ObjectMeta(name=name, resource_version="1"),
            status=V1NodeStatus(
                allocatable=allocatable if allocatable is not None else {"cpu": "4", "memory": "8Gi", "pods": "110"},
                capacity=capacity,
            ),
        )
    return _make


@pytest.fixture
def node_cache(make_node):
    """A synced cache holding node-1 with cpu=4, memory=8Gi."""
    cache = NodeCache()
    cache.add_or_update(make_node())
    cache.mark_synced()
    return cache


@pytest.fixture
def mock_core_v1():
    """Mock CoreV1Api."""
    return MagicMock()
