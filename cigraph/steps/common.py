from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..api import JobSpec, PIPELINE_IMAGE_STREAM


INTERNAL_REGISTRY = "image-registry.openshift-image-registry.svc:5000"


def pipeline_pull_spec(namespace: str, tag: str) -> str:
    """In-cluster pull spec for a tag of the run's pipeline image stream."""
    return f"{INTERNAL_REGISTRY}/{namespace}/{PIPELINE_IMAGE_STREAM}:{tag}"


def find_docker_image_reference(stream: Optional[Dict[str, Any]], tag: str) -> str:
    """Pull reference recorded for `tag` in the stream status, or "" if none."""
    if not stream:
        return ""
    for entry in (stream.get("status") or {}).get("tags") or []:
        if entry.get("tag") != tag:
            continue
        items = entry.get("items") or []
        if not items:
            return ""
        return items[0].get("dockerImageReference", "")
    return ""


def env_list(env: Optional[Dict[str, str]]) -> List[Dict[str, str]]:
    return [{"name": k, "value": v} for k, v in sorted((env or {}).items())]


def build_pod(
    name: str,
    job_spec: JobSpec,
    image: str,
    command: List[str],
    args: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    container: Dict[str, Any] = {
        "name": name,
        "image": image,
        "command": command,
    }
    if args:
        container["args"] = args
    if env:
        container["env"] = env_list(env)
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": job_spec.namespace,
            "labels": job_spec.owner_labels(),
        },
        "spec": {
            "restartPolicy": "Never",
            "containers": [container],
        },
    }
