from __future__ import annotations

import threading
from typing import Callable, Dict, Iterable, Mapping, Optional

from .errors import ConfigurationError, MissingParameterError


Resolver = Callable[[], str]

# A step's provides(): parameter name -> deferred value.
ParameterMap = Dict[str, Resolver]


class _Entry:
    __slots__ = ("producer", "resolver", "lock", "resolved", "value")

    def __init__(self, producer: str, resolver: Resolver) -> None:
        self.producer = producer
        self.resolver = resolver
        self.lock = threading.Lock()
        self.resolved = False
        self.value: Optional[str] = None


class Parameters:
    """Run-scoped registry of every step's provided parameters.

    Values are resolved lazily and at most once. A parameter is readable only
    after its producing step has been marked succeeded by the executor.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._succeeded: set[str] = set()
        self._lock = threading.Lock()

    def declare(self, producer: str, params: Optional[Mapping[str, Resolver]]) -> None:
        if not params:
            return
        with self._lock:
            for name, resolver in params.items():
                existing = self._entries.get(name)
                if existing is not None and existing.producer != producer:
                    raise ConfigurationError(
                        f"parameter {name!r} is provided by both {existing.producer!r} and {producer!r}"
                    )
                self._entries[name] = _Entry(producer, resolver)

    def mark_succeeded(self, producer: str) -> None:
        with self._lock:
            self._succeeded.add(producer)

    def has(self, name: str) -> bool:
        with self._lock:
            entry = self._entries.get(name)
            return entry is not None and entry.producer in self._succeeded

    def get(self, name: str) -> str:
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                raise MissingParameterError(name)
            if entry.producer not in self._succeeded:
                raise MissingParameterError(name, entry.producer)
        with entry.lock:
            if not entry.resolved:
                entry.value = entry.resolver()
                entry.resolved = True
            return entry.value  # type: ignore[return-value]

    def environment(self, names: Iterable[str]) -> Dict[str, str]:
        """Resolve `names` into an env mapping for a pod."""
        return {name: self.get(name) for name in names}

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)
