"""Pytest configuration and fixtures for cigraph tests"""
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from cigraph.api import JobSpec, Refs
from cigraph.cluster import AlreadyExistsError, ClusterClient, NotFoundError
from cigraph.link import StepLink
from cigraph.step import RunContext, Step


class FakeClusterClient(ClusterClient):
    """In-memory cluster: pods finish immediately in the configured phase."""

    poll_interval = 0.01

    def __init__(self, objects: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__()
        self.store: Dict[tuple, Dict[str, Any]] = {}
        self.pod_phases: Dict[str, str] = {}
        self.pod_exit_codes: Dict[str, int] = {}
        self.created_pods: List[Dict[str, Any]] = []
        self.lock = threading.Lock()
        for obj in objects or []:
            self.add(obj)

    def add(self, obj: Dict[str, Any]) -> None:
        meta = obj["metadata"]
        self.store[(obj["kind"], meta["namespace"], meta["name"])] = obj

    def get(self, kind: str, namespace: str, name: str, ctx: Any = None) -> Dict[str, Any]:
        with self.lock:
            try:
                return self.store[(kind, namespace, name)]
            except KeyError:
                raise NotFoundError(f"{kind} {namespace}/{name} not found", 404) from None

    def create(self, obj: Dict[str, Any], ctx: Any = None) -> Dict[str, Any]:
        meta = obj["metadata"]
        key = (obj["kind"], meta["namespace"], meta["name"])
        with self.lock:
            if key in self.store:
                raise AlreadyExistsError(f"{key} already exists", 409)
            created = dict(obj)
            if obj["kind"] == "Pod":
                phase = self.pod_phases.get(meta["name"], "Succeeded")
                status: Dict[str, Any] = {"phase": phase}
                if phase == "Failed":
                    code = self.pod_exit_codes.get(meta["name"], 1)
                    status["containerStatuses"] = [
                        {"name": meta["name"], "state": {"terminated": {"exitCode": code, "message": "boom"}}}
                    ]
                created["status"] = status
                self.created_pods.append(obj)
            self.store[key] = created
        self._record(created)
        return created


class RecordingStep(Step):
    """Configurable step for graph and executor tests."""

    def __init__(
        self,
        name: str,
        requires: Optional[List[StepLink]] = None,
        creates: Optional[List[StepLink]] = None,
        fail: bool = False,
        invalid: bool = False,
        delay: float = 0.0,
        provides: Optional[Dict[str, Any]] = None,
        log: Optional[List[str]] = None,
    ) -> None:
        self.name = name
        self._requires = list(requires or [])
        self._creates = list(creates or [])
        self.fail = fail
        self.invalid = invalid
        self.delay = delay
        self._provides = provides
        self.calls = 0
        self.log = log if log is not None else []
        self._lock = threading.Lock()

    def validate(self) -> None:
        if self.invalid:
            raise ValueError(f"{self.name} is misconfigured")

    def run(self, ctx: RunContext) -> None:
        with self._lock:
            self.calls += 1
            self.log.append(f"start:{self.name}")
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.log.append(f"end:{self.name}")
        if self.fail:
            raise RuntimeError(f"{self.name} failed")

    def requires(self) -> List[StepLink]:
        return self._requires

    def creates(self) -> List[StepLink]:
        return self._creates

    def provides(self):
        return self._provides


def image_stream(namespace: str, tags: Dict[str, str], public_repository: str = "") -> Dict[str, Any]:
    status: Dict[str, Any] = {
        "tags": [{"tag": tag, "items": [{"dockerImageReference": ref}] if ref else []} for tag, ref in tags.items()],
    }
    if public_repository:
        status["publicDockerImageRepository"] = public_repository
    return {
        "kind": "ImageStream",
        "metadata": {"name": "pipeline", "namespace": namespace},
        "status": status,
    }


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def job_spec():
    return JobSpec(
        namespace="ci-op-1234",
        job="pull-ci-org-repo-master-unit",
        build_id="42",
        refs=Refs(org="org", repo="repo", base_ref="master", base_sha="abc123", pulls=("def456",)),
    )


@pytest.fixture
def fake_client():
    return FakeClusterClient()


@pytest.fixture
def ctx(job_spec):
    return RunContext(job_spec)


@pytest.fixture
def cigraph_project(temp_dir):
    """Provide a temporary repo with a .cigraph settings directory"""
    (temp_dir / ".git").mkdir()
    (temp_dir / ".cigraph").mkdir()
    yield temp_dir
