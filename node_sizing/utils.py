"""Utility functions for decoding and describing pods."""

import json
from typing import Any, Dict, List

from kubernetes import client

_api_client = None


class _RawResponse:
    """Minimal stand-in for a REST response, as expected by ApiClient.deserialize."""

    def __init__(self, data: Any):
        self.data = json.dumps(data)


def _get_api_client() -> client.ApiClient:
    global _api_client
    if _api_client is None:
        _api_client = client.ApiClient()
    return _api_client


def deserialize_pod(data: Dict[str, Any]) -> client.V1Pod:
    """
    Turn a pod as found in an AdmissionReview into a V1Pod.

    Uses the response-object form of ApiClient.deserialize that kubernetes
    client releases up to 33 expose.

    Args:
        data: The pod JSON object (camelCase keys)

    Returns:
        The V1Pod model

    Raises:
        ValueError, TypeError, AttributeError: If the object is not a valid pod
    """
    return _get_api_client().deserialize(_RawResponse(data), "V1Pod")


def get_pod_resources(pod) -> List[Dict[str, Any]]:
    """
    Extract resource requests and limits from every container of a pod.

    Returns:
        [
            {"name": "app", "requests": {"cpu": "100m"}, "limits": {"cpu": "200m"}},
            ...
        ]
    """
    result = []
    for container in pod.spec.containers or []:
        resources = container.resources
        result.append({
            "name": container.name,
            "requests": dict(resources.requests or {}) if resources else {},
            "limits": dict(resources.limits or {}) if resources else {},
        })
    return result
