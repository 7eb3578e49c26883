"""Tests for node_sizing.sizer."""

from unittest.mock import MagicMock

import pytest

from node_sizing.errors import BudgetExhaustedError, InvalidAnnotationValue, NodeResolutionError
from node_sizing.resource_properties import ResourceRole
from node_sizing.sizer import PodSizer

MiB = 1024 ** 2


def as_dict(patch):
    return {op.path: op.value for op in patch}


@pytest.fixture
def sizer(node_cache):
    return PodSizer(node_cache)


class TestScenarios:
    def test_requests_follow_node_capacity(self, sizer, make_pod):
        pod = make_pod(annotations={"request-cpu-fraction": "0.1", "request-memory-fraction": "0.1"})
        patch = sizer.create_patch(pod)

        assert [op.op for op in patch] == ["replace"] * 4 + ["add"]
        assert as_dict(patch) == {
            "/spec/containers/0/resources/requests/cpu": "100m",
            "/spec/containers/0/resources/requests/memory": "85.899M",
            "/spec/containers/1/resources/requests/cpu": "300m",
            "/spec/containers/1/resources/requests/memory": "773.094M",
            "/metadata/annotations/node-specific-sizing.manomano.tech~1status": "patch_count=4",
        }

    def test_minimum_applies_before_distribution(self, sizer, make_pod):
        pod = make_pod(annotations={"request-cpu-fraction": "0.1", "minimum-cpu": "500m"})
        budgets = sizer.compute_container_budgets(pod)

        assert budgets[0].value(ResourceRole.REQUESTS, "cpu") == pytest.approx(0.125)
        assert budgets[1].value(ResourceRole.REQUESTS, "cpu") == pytest.approx(0.375)
        assert as_dict(sizer.create_patch(pod))["/spec/containers/1/resources/requests/cpu"] == "375m"

    def test_maximum_caps_budget(self, sizer, make_pod):
        pod = make_pod(annotations={"request-memory-fraction": "0.5", "maximum-memory": "1Gi"})
        budgets = sizer.compute_container_budgets(pod)

        total = sum(b.value(ResourceRole.REQUESTS, "memory") for b in budgets.values())
        assert total == pytest.approx(1024 * MiB)

    def test_invalid_fraction(self, sizer, make_pod):
        with pytest.raises(InvalidAnnotationValue):
            sizer.create_patch(make_pod(annotations={"request-cpu-fraction": "1.5"}))

    def test_unpinned_pod(self, sizer, make_pod):
        with pytest.raises(NodeResolutionError):
            sizer.create_patch(make_pod(annotations={"request-cpu-fraction": "0.1"}, node_name=None))


class TestPodSizer:
    def test_no_fraction_skips_node_lookup(self, make_pod):
        provider = MagicMock()
        patch = PodSizer(provider).create_patch(make_pod(annotations={"minimum-cpu": "1"}, node_name=None))

        assert patch == []
        provider.get_node.assert_not_called()

    def test_unknown_node(self, sizer, make_pod):
        pod = make_pod(annotations={"request-cpu-fraction": "0.1"}, node_name="node-9")
        with pytest.raises(NodeResolutionError, match="cannot find data for node 'node-9'"):
            sizer.create_patch(pod)

    def test_limits_and_requests(self, sizer, make_pod, make_container):
        pod = make_pod(
            containers=[
                make_container("app", requests={"cpu": "1"}, limits={"cpu": "2"}),
                make_container("worker", requests={"cpu": "1"}, limits={"cpu": "2"}),
            ],
            annotations={"request-cpu-fraction": "0.25", "limit-cpu-fraction": "0.5"},
        )
        assert as_dict(sizer.create_patch(pod)) == {
            "/spec/containers/0/resources/requests/cpu": "500m",
            "/spec/containers/0/resources/limits/cpu": "1",
            "/spec/containers/1/resources/requests/cpu": "500m",
            "/spec/containers/1/resources/limits/cpu": "1",
            "/metadata/annotations/node-specific-sizing.manomano.tech~1status": "patch_count=4",
        }

    def test_requests_capped_by_limits(self, sizer, make_pod, make_container):
        pod = make_pod(
            containers=[make_container("app", requests={"cpu": "1"}, limits={"cpu": "1"})],
            annotations={"request-cpu-fraction": "0.5", "limit-cpu-fraction": "0.25"},
        )
        budgets = sizer.compute_container_budgets(pod)
        assert budgets[0].value(ResourceRole.REQUESTS, "cpu") == pytest.approx(1.0)
        assert budgets[0].value(ResourceRole.LIMITS, "cpu") == pytest.approx(1.0)

    def test_requests_capped_by_declared_limits(self, sizer, make_pod, make_container):
        pod = make_pod(
            containers=[make_container("app", requests={"cpu": "100m"}, limits={"cpu": "200m"})],
            annotations={"request-cpu-fraction": "0.5"},
        )
        assert as_dict(sizer.create_patch(pod)) == {
            "/spec/containers/0/resources/requests/cpu": "200m",
            "/metadata/annotations/node-specific-sizing.manomano.tech~1status": "patch_count=1",
        }

    def test_excluded_container_keeps_its_resources(self, sizer, make_pod, make_container):
        pod = make_pod(
            containers=[
                make_container("app", requests={"cpu": "300m"}),
                make_container("istio-proxy", requests={"cpu": "100m"}),
            ],
            annotations={"request-cpu-fraction": "0.5", "exclude-containers": "istio-proxy"},
        )
        budgets = sizer.compute_container_budgets(pod)

        assert set(budgets) == {0}
        assert budgets[0].value(ResourceRole.REQUESTS, "cpu") == pytest.approx(1.9)
        assert as_dict(sizer.create_patch(pod)) == {
            "/spec/containers/0/resources/requests/cpu": "1900m",
            "/metadata/annotations/node-specific-sizing.manomano.tech~1status": "patch_count=1",
        }

    def test_excluded_containers_exhaust_budget(self, sizer, make_pod, make_container):
        pod = make_pod(
            containers=[
                make_container("app", requests={"cpu": "100m"}),
                make_container("hog", requests={"cpu": "3"}),
            ],
            annotations={"request-cpu-fraction": "0.5", "exclude-containers": "hog"},
        )
        with pytest.raises(BudgetExhaustedError):
            sizer.create_patch(pod)

    def test_unconfigured_resource_untouched(self, sizer, make_pod):
        patch = sizer.create_patch(make_pod(annotations={"request-cpu-fraction": "0.1"}))
        assert all("memory" not in op.path for op in patch)
        assert len(patch) == 3

    def test_capacity_source(self, make_pod, make_node):
        provider = MagicMock()
        provider.get_node.return_value = make_node(allocatable={"cpu": "2"}, capacity={"cpu": "4"})
        pod = make_pod(annotations={"request-cpu-fraction": "0.1"})

        allocatable = PodSizer(provider).compute_container_budgets(pod)
        capacity = PodSizer(provider, capacity_source="capacity").compute_container_budgets(pod)

        assert allocatable[1].value(ResourceRole.REQUESTS, "cpu") == pytest.approx(0.15)
        assert capacity[1].value(ResourceRole.REQUESTS, "cpu") == pytest.approx(0.3)
        provider.get_node.assert_called_with("node-1")
