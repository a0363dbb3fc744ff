"""Error taxonomy for graph construction and execution."""
from __future__ import annotations

from typing import List, Optional, Sequence


class ConfigurationError(ValueError):
    """Malformed configuration. Fatal before any cluster call; never retried."""


class DuplicateProviderError(ConfigurationError):
    """Two steps claim the same link (or the same name)."""

    def __init__(self, link: str, first: str, second: str):
        self.link = link
        self.providers = (first, second)
        super().__init__(f"{link} is provided by both {first!r} and {second!r}")


class UnsatisfiableDependencyError(ConfigurationError):
    """A required link has no producer, requested or implicit."""

    def __init__(self, step: str, link: str):
        self.step = step
        self.link = link
        super().__init__(f"step {step!r} requires {link}, which no step provides")


class CyclicDependencyError(ConfigurationError):
    """The requires relation contains a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle: List[str] = list(cycle)
        super().__init__(f"cyclic dependency: {' -> '.join(self.cycle)}")


class StepValidationError(ConfigurationError):
    """A step's own configuration is invalid. Fatal for that step only."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(f"step {step!r} is invalid: {message}")


class MissingParameterError(ConfigurationError):
    """A parameter was read whose producer did not run (or does not exist)."""

    def __init__(self, name: str, producer: Optional[str] = None):
        self.name = name
        self.producer = producer
        if producer:
            msg = f"parameter {name!r} is not available: producing step {producer!r} has not succeeded"
        else:
            msg = f"parameter {name!r} is not provided by any step"
        super().__init__(msg)


class CancelledError(RuntimeError):
    """The run was cancelled or its deadline elapsed."""
