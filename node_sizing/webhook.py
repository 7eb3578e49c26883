"""Mutating admission webhook serving the pod sizer."""

import base64
import json
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from .errors import SizingError
from .patch import serialize_patch
from .sizer import PodSizer
from .utils import deserialize_pod, get_pod_resources

logger = logging.getLogger(__name__)

ADMISSION_API_VERSION = "admission.k8s.io/v1"


def review_response(uid: Optional[str], allowed: bool, message: str = "",
                    patch: Optional[bytes] = None, warning: str = "") -> Dict[str, Any]:
    """Wrap an admission response in an AdmissionReview."""
    response: Dict[str, Any] = {"allowed": allowed}
    if uid is not None:
        response["uid"] = uid
    if message:
        response["status"] = {"message": message}
    if warning:
        response["warnings"] = [warning]
    if patch is not None:
        response["patchType"] = "JSONPatch"
        response["patch"] = base64.b64encode(patch).decode("ascii")

    return {
        "apiVersion": ADMISSION_API_VERSION,
        "kind": "AdmissionReview",
        "response": response,
    }


def mutate(sizer: PodSizer, admission_request: Dict[str, Any],
           fail_open: bool = True, dry_run: bool = False) -> Dict[str, Any]:
    """
    Size the pod of an admission request.

    Args:
        sizer: The PodSizer computing the patch
        admission_request: The "request" field of an AdmissionReview
        fail_open: If True, a pod that cannot be sized is admitted unchanged
        dry_run: If True, the patch is logged but not returned

    Returns:
        The AdmissionReview to send back
    """
    uid = admission_request.get("uid")
    namespace = admission_request.get("namespace", "")
    name = admission_request.get("name") or ""

    try:
        pod = deserialize_pod(admission_request.get("object") or {})
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Could not decode pod of request {uid}: {e}")
        return review_response(uid, allowed=False, message=str(e))

    logger.info(
        f"AdmissionReview request uid={uid} kind={admission_request.get('kind')} "
        f"namespace={namespace} name={name} operation={admission_request.get('operation')}"
    )

    try:
        patch = sizer.create_patch(pod)
    except SizingError as e:
        message = f"could not size pod: {e}"
        if fail_open:
            logger.warning(f"{message}; admitting {namespace}/{name} unchanged")
            return review_response(uid, allowed=True, warning=message)
        logger.warning(f"{message}; rejecting {namespace}/{name}")
        return review_response(uid, allowed=False, message=message)

    if not patch:
        return review_response(uid, allowed=True)

    patch_bytes = serialize_patch(patch)
    if dry_run:
        logger.info(f"[DRY-RUN] Would patch {namespace}/{name}: {patch_bytes.decode()}")
        logger.info(f"[DRY-RUN] Current: {get_pod_resources(pod)}")
        return review_response(uid, allowed=True)

    logger.debug(f"AdmissionResponse patch: {patch_bytes.decode()}")
    return review_response(uid, allowed=True, patch=patch_bytes)


def create_app(sizer: PodSizer, fail_open: bool = True, dry_run: bool = False,
               node_cache=None) -> FastAPI:
    """
    Build the webhook application.

    Args:
        sizer: The PodSizer used for every request
        fail_open: Admit pods unchanged when they cannot be sized
        dry_run: Compute patches without returning them
        node_cache: NodeCache reported by the health endpoint
    """
    app = FastAPI(title="node-specific-sizing", docs_url=None, redoc_url=None)

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {
            "status": "ok",
            "nodes": len(node_cache) if node_cache is not None else 0,
            "synced": node_cache.synced if node_cache is not None else False,
        }

    @app.post("/mutate")
    async def serve(request: Request):
        body = await request.body()
        if not body:
            logger.warning("request error: empty body")
            return PlainTextResponse("empty body", status_code=400)

        content_type = request.headers.get("content-type", "").split(";")[0].strip()
        if content_type != "application/json":
            logger.warning(f"Content-Type={content_type}, expect application/json")
            return PlainTextResponse("invalid Content-Type, expect `application/json`", status_code=415)

        try:
            review = json.loads(body)
            admission_request = review["request"]
            if not isinstance(admission_request, dict):
                raise TypeError("request is not an object")
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Can't decode body: {e}")
            return JSONResponse(review_response(None, allowed=False, message=f"cannot decode body: {e}"))

        return JSONResponse(mutate(sizer, admission_request, fail_open=fail_open, dry_run=dry_run))

    return app
