"""Cluster collaborator: object reads and short-lived pods.

The core only needs `get(kind, namespace, name)` and `run_pod(pod)`. One client
instance is shared by all executor workers, so implementations must be safe
for concurrent use.
"""
from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import requests

from .errors import CancelledError

if TYPE_CHECKING:
    from .step import RunContext


logger = logging.getLogger(__name__)

POD_SUCCEEDED = "Succeeded"
POD_FAILED = "Failed"

RESOURCES: Dict[str, Tuple[str, str]] = {
    "Pod": ("/api/v1", "pods"),
    "Secret": ("/api/v1", "secrets"),
    "ImageStream": ("/apis/image.openshift.io/v1", "imagestreams"),
}


class ClusterError(RuntimeError):
    """Non-retryable cluster API failure."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(ClusterError):
    pass


class AlreadyExistsError(ClusterError):
    """Name conflict on create. `after_retry` marks a conflict hit by a retried request."""

    def __init__(self, message: str, status: Optional[int] = None, after_retry: bool = False):
        super().__init__(message, status)
        self.after_retry = after_retry


class TransientClusterError(ClusterError):
    """Retries exhausted on a transient failure."""


class PodFailedError(ClusterError):
    """A pod reached the Failed phase."""

    def __init__(self, name: str, exit_code: Optional[int] = None, message: str = ""):
        self.name = name
        self.exit_code = exit_code
        self.termination_message = message
        detail = f"pod {name} failed"
        if exit_code is not None:
            detail += f" (exit code {exit_code})"
        if message:
            detail += f": {message}"
        super().__init__(detail)

    @classmethod
    def from_pod(cls, pod: Dict[str, Any]) -> PodFailedError:
        name = pod.get("metadata", {}).get("name", "?")
        status = pod.get("status") or {}
        exit_code: Optional[int] = None
        message = status.get("message", "")
        for cs in status.get("containerStatuses") or []:
            terminated = (cs.get("state") or {}).get("terminated") or {}
            code = terminated.get("exitCode")
            if code is not None and code != 0:
                exit_code = code
                message = terminated.get("message") or terminated.get("reason") or message
                break
        return cls(name, exit_code, message)


class ClusterClient(ABC):
    """Object-store style client the steps talk to."""

    poll_interval: float = 5.0

    def __init__(self) -> None:
        self._created: List[Dict[str, Any]] = []
        self._created_lock = threading.Lock()

    @abstractmethod
    def get(self, kind: str, namespace: str, name: str, ctx: Optional["RunContext"] = None) -> Dict[str, Any]:
        """Fetch one object. Raises NotFoundError if absent."""

    @abstractmethod
    def create(self, obj: Dict[str, Any], ctx: Optional["RunContext"] = None) -> Dict[str, Any]:
        """Create `obj`. Raises AlreadyExistsError on a name conflict."""

    def objects(self) -> List[Dict[str, Any]]:
        """Every object created through this client, for cleanup bookkeeping."""
        with self._created_lock:
            return list(self._created)

    def _record(self, obj: Dict[str, Any]) -> None:
        with self._created_lock:
            self._created.append(obj)

    def run_pod(self, pod: Dict[str, Any], ctx: Optional["RunContext"] = None) -> Dict[str, Any]:
        """Create `pod` and wait for a terminal phase.

        A conflict on create re-uses the existing pod, so a retried call never
        launches the workload twice.
        """
        meta = pod["metadata"]
        namespace, name = meta["namespace"], meta["name"]
        try:
            current = self.create(pod, ctx)
            logger.info(f"Created pod {namespace}/{name}")
        except AlreadyExistsError:
            logger.info(f"Pod {namespace}/{name} already exists, waiting on it")
            current = self.get("Pod", namespace, name, ctx)

        while True:
            phase = (current.get("status") or {}).get("phase")
            if phase == POD_SUCCEEDED:
                logger.debug(f"Pod {namespace}/{name} succeeded")
                return current
            if phase == POD_FAILED:
                raise PodFailedError.from_pod(current)
            if ctx is not None:
                if ctx.wait(self.poll_interval):
                    raise CancelledError(f"cancelled while waiting for pod {namespace}/{name}")
            else:
                time.sleep(self.poll_interval)
            current = self.get("Pod", namespace, name, ctx)


class OfflineClusterClient(ClusterClient):
    """Refuses every call. Lets dry runs build steps without a cluster."""

    def get(self, kind: str, namespace: str, name: str, ctx: Optional["RunContext"] = None) -> Dict[str, Any]:
        raise ClusterError(f"offline: cannot get {kind} {namespace}/{name}")

    def create(self, obj: Dict[str, Any], ctx: Optional["RunContext"] = None) -> Dict[str, Any]:
        raise ClusterError(f"offline: cannot create {obj.get('kind')}")


class KubeClusterClient(ClusterClient):
    """ClusterClient over the Kubernetes REST API.

    Transient failures (connection errors, timeouts, 429 and 5xx responses,
    and 404 on reads while the API converges) are retried with exponential
    backoff, at most `retries` extra attempts per call.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        verify: bool | str = True,
        retries: int = 5,
        backoff: float = 0.5,
        max_backoff: float = 10.0,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.backoff = backoff
        self.max_backoff = max_backoff
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.verify = verify
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _path(self, kind: str, namespace: str, name: Optional[str] = None) -> str:
        try:
            prefix, plural = RESOURCES[kind]
        except KeyError:
            raise ClusterError(f"unsupported kind {kind!r}") from None
        path = f"{prefix}/namespaces/{namespace}/{plural}"
        if name:
            path += f"/{name}"
        return path

    def _sleep(self, attempt: int, ctx: Optional["RunContext"] = None) -> None:
        delay = min(self.max_backoff, self.backoff * (2 ** attempt))
        if ctx is None:
            time.sleep(delay)
        elif ctx.wait(delay):
            raise CancelledError("cancelled while backing off from the cluster API")

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        retry_not_found: bool = False,
        ctx: Optional["RunContext"] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        last_error = ""
        for attempt in range(self.retries + 1):
            if attempt:
                self._sleep(attempt - 1, ctx)
            try:
                response = self.session.request(method=method, url=url, json=json, timeout=self.timeout)
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                last_error = str(e)
                logger.debug(f"{method} {path} attempt {attempt + 1} failed: {e}")
                continue

            status = response.status_code
            if status < 400:
                return response.json()
            message = _error_message(response)
            if status == 404:
                if retry_not_found:
                    last_error = message
                    continue
                raise NotFoundError(message, status)
            if status == 409:
                raise AlreadyExistsError(message, status, after_retry=attempt > 0)
            if status == 429 or status >= 500:
                last_error = message
                logger.debug(f"{method} {path} attempt {attempt + 1} got {status}: {message}")
                continue
            raise ClusterError(message, status)

        raise TransientClusterError(f"{method} {path} failed after {self.retries + 1} attempts: {last_error}")

    def get(self, kind: str, namespace: str, name: str, ctx: Optional["RunContext"] = None) -> Dict[str, Any]:
        return self._request("GET", self._path(kind, namespace, name), retry_not_found=True, ctx=ctx)

    def create(self, obj: Dict[str, Any], ctx: Optional["RunContext"] = None) -> Dict[str, Any]:
        meta = obj.get("metadata") or {}
        try:
            created = self._request("POST", self._path(obj["kind"], meta["namespace"]), json=obj, ctx=ctx)
        except AlreadyExistsError as e:
            # An earlier attempt may have landed before its response was lost.
            if e.after_retry:
                self._record(obj)
            raise
        self._record(created)
        return created


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
        if isinstance(body, dict) and body.get("message"):
            return f"{response.status_code}: {body['message']}"
    except ValueError:
        pass
    return f"{response.status_code}: {response.text[:200]}"
