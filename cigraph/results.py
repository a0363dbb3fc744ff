"""Reason-tagged errors for reporting and aggregation.

Every step failure is wrapped with a short, stable reason string
(`promoting_images`, `cloning_source`, ...). Reasons nest: a step error whose
cause is itself reasoned produces a full reason like
`promoting_images:running_pod`.
"""
from __future__ import annotations

from typing import List, Optional

from .errors import CancelledError, ConfigurationError


REASON_UNKNOWN = "unknown"
REASON_CANCELLED = "cancelled"
REASON_VALIDATING = "validating_step"
REASON_SKIPPED = "dependency_failed"

CATEGORY_CONFIGURATION = "configuration"
CATEGORY_INFRASTRUCTURE = "infrastructure"
CATEGORY_STEP = "step"
CATEGORY_CANCELLED = "cancelled"


class ReasonedError(Exception):
    def __init__(self, reason: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.reason = reason
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message


class ForReason:
    def __init__(self, reason: str):
        self.reason = reason

    def for_error(self, err: Optional[BaseException]) -> Optional[ReasonedError]:
        """Wrap `err`; None passes through so callers can wrap unconditionally."""
        if err is None:
            return None
        return ReasonedError(self.reason, str(err) or err.__class__.__name__, cause=err)

    def errorf(self, message: str, *args: object) -> ReasonedError:
        return ReasonedError(self.reason, message % args if args else message)


def for_reason(reason: str) -> ForReason:
    return ForReason(reason)


def _chain(err: Optional[BaseException]) -> List[BaseException]:
    chain: List[BaseException] = []
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        chain.append(err)
        err = err.__cause__
    return chain


def reason_for(err: Optional[BaseException]) -> str:
    """Outermost reason attached to `err`, or `unknown`."""
    for e in _chain(err):
        if isinstance(e, ReasonedError):
            return e.reason
    if isinstance(err, CancelledError):
        return REASON_CANCELLED
    return REASON_UNKNOWN


def full_reason(err: Optional[BaseException]) -> str:
    reasons = [e.reason for e in _chain(err) if isinstance(e, ReasonedError)]
    if not reasons:
        return reason_for(err)
    return ":".join(reasons)


def classify(err: Optional[BaseException]) -> str:
    """Sort a failure into configuration / infrastructure / step / cancelled."""
    from .cluster import ClusterError, PodFailedError

    for e in _chain(err):
        if isinstance(e, CancelledError):
            return CATEGORY_CANCELLED
        if isinstance(e, ConfigurationError):
            return CATEGORY_CONFIGURATION
        if isinstance(e, PodFailedError):
            return CATEGORY_STEP
        if isinstance(e, ClusterError):
            return CATEGORY_INFRASTRUCTURE
    return CATEGORY_STEP
