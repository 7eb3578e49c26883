"""JSON patch rendering of container budgets."""

import json
from dataclasses import asdict, dataclass
from typing import Dict, List

from .config import STATUS_ANNOTATION
from .resource_properties import CONTAINER_ROLES, PropertySet


@dataclass
class PatchOperation:
    op: str
    path: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def annotation_path(key: str) -> str:
    """JSON pointer to a pod annotation, e.g. a/b -> /metadata/annotations/a~1b."""
    return "/metadata/annotations/" + key.replace("~", "~0").replace("/", "~1")


def build_patch(container_budgets: Dict[int, PropertySet], status_key: str = STATUS_ANNOTATION) -> List[PatchOperation]:
    """
    Render container budgets as JSON patch operations.

    Containers are visited in pod order; within a container requests come
    before limits and resources are sorted by name. When at least one value
    is replaced, a status annotation recording the patch count is added.

    Args:
        container_budgets: Final bindings keyed by container index
        status_key: Annotation receiving the patch count

    Returns:
        The patch operations, empty when nothing is resized
    """
    patch = []
    for index in sorted(container_budgets):
        budget = container_budgets[index]
        for role in CONTAINER_ROLES:
            bindings = sorted((b for b in budget if b.role == role), key=lambda b: b.resource)
            for binding in bindings:
                patch.append(PatchOperation(
                    op="replace",
                    path=binding.json_path(index),
                    value=binding.human_value()
                ))

    if patch:
        patch.append(PatchOperation(
            op="add",
            path=annotation_path(status_key),
            value=f"patch_count={len(patch)}"
        ))
    return patch


def serialize_patch(patch: List[PatchOperation]) -> bytes:
    """Encode a patch as JSON bytes."""
    return json.dumps([operation.to_dict() for operation in patch]).encode("utf-8")
