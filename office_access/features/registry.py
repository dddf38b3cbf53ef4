"""
Granular feature registry.

Maps (feature name, operation name) pairs to the handler that implements
the operation. Capability owners register themselves once at startup;
the registry is rebuilt identically on every boot and never persisted.

Concurrency model:
- Writers (register / unregister / clear) serialize on a single Lock
- Readers (is_registered / get / invoke) never lock: they read the
  current snapshot, which is replaced wholesale on every write
- Entries are frozen; a write swaps the entry, it never mutates one

Ownership: one FeatureRegistry per process, created by the composition
root (office_access.bootstrap) and passed to every consumer. There is no
module-level instance.

Usage:
    registry = FeatureRegistry()
    registry.register("Create Office", "create_office", office_service)

    registry.invoke("Create Office", "create_office", dto)
"""

import inspect
import logging
from dataclasses import dataclass
from threading import Lock
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

from office_access.platform.errors import NotRegisteredError, TargetNotCallableError

logger = logging.getLogger(__name__)


class FeatureKey(NamedTuple):
    """Identifier pair a granular feature is registered under."""
    feature_name: str
    operation_name: str

    def __str__(self) -> str:
        return f"{self.feature_name}:{self.operation_name}"


@dataclass(frozen=True)
class GranularFeatureEntry:
    """A registered granular feature. Immutable once inserted."""
    feature_name: str
    operation_name: str
    handler: Any
    description: Optional[str] = None

    @property
    def key(self) -> FeatureKey:
        return FeatureKey(self.feature_name, self.operation_name)

    def resolve_target(self) -> Any:
        """
        Find the callable implementing the operation.

        The handler is normally a service object exposing a method named
        after the operation; a bare function or bound method is accepted
        as its own target.

        Raises:
            TargetNotCallableError: If nothing callable is found
        """
        target = getattr(self.handler, self.operation_name, None)
        if target is None and inspect.isroutine(self.handler):
            target = self.handler
        if not callable(target):
            raise TargetNotCallableError(self.feature_name, self.operation_name)
        return target

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_name": self.feature_name,
            "operation_name": self.operation_name,
            "handler": type(self.handler).__name__,
            "description": self.description,
        }


class FeatureRegistry:
    """
    Process-wide catalog of granular features.

    Copy-on-write: self._entries always points at a read-only snapshot.
    """

    def __init__(self):
        self._write_lock = Lock()
        self._entries: Mapping[FeatureKey, GranularFeatureEntry] = MappingProxyType({})

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register(
        self,
        feature_name: str,
        operation_name: str,
        handler: Any,
        description: Optional[str] = None,
    ) -> GranularFeatureEntry:
        """
        Register (or replace) the handler for a (feature, operation) pair.

        Idempotent upsert: last writer wins, never duplicates.
        """
        if not feature_name or not operation_name:
            raise ValueError("feature_name and operation_name are required")

        entry = GranularFeatureEntry(
            feature_name=feature_name,
            operation_name=operation_name,
            handler=handler,
            description=description,
        )
        with self._write_lock:
            updated = dict(self._entries)
            replaced = entry.key in updated
            updated[entry.key] = entry
            self._entries = MappingProxyType(updated)

        logger.info(
            "Registered granular feature",
            extra={
                "feature_name": feature_name,
                "operation_name": operation_name,
                "replaced": replaced,
            },
        )
        return entry

    def register_service_features(
        self,
        service: Any,
        feature_mappings: Mapping[str, str],
        description: Optional[str] = None,
    ) -> List[GranularFeatureEntry]:
        """
        Register several features implemented by one service.

        Args:
            service: Service instance owning the operations
            feature_mappings: feature name -> operation (method) name
            description: Optional description applied to every entry
        """
        return [
            self.register(feature_name, operation_name, service, description)
            for feature_name, operation_name in feature_mappings.items()
        ]

    def unregister(self, feature_name: str, operation_name: str) -> bool:
        """Remove a pair. Returns True if it was registered."""
        key = FeatureKey(feature_name, operation_name)
        with self._write_lock:
            if key not in self._entries:
                return False
            updated = dict(self._entries)
            del updated[key]
            self._entries = MappingProxyType(updated)

        logger.info(
            "Unregistered granular feature",
            extra={"feature_name": feature_name, "operation_name": operation_name},
        )
        return True

    def clear(self) -> None:
        """Remove every entry (hot-reload / tests)."""
        with self._write_lock:
            self._entries = MappingProxyType({})
        logger.info("Cleared all granular features")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def is_registered(self, feature_name: str, operation_name: str) -> bool:
        return FeatureKey(feature_name, operation_name) in self._entries

    def get(self, feature_name: str, operation_name: str) -> Optional[GranularFeatureEntry]:
        return self._entries.get(FeatureKey(feature_name, operation_name))

    def entries(self) -> List[GranularFeatureEntry]:
        return list(self._entries.values())

    def entries_for_feature(self, feature_name: str) -> List[GranularFeatureEntry]:
        return [e for e in self._entries.values() if e.feature_name == feature_name]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        return key in self._entries

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def _lookup(self, feature_name: str, operation_name: str) -> GranularFeatureEntry:
        entry = self._entries.get(FeatureKey(feature_name, operation_name))
        if entry is None:
            raise NotRegisteredError(feature_name, operation_name)
        return entry

    def invoke(self, feature_name: str, operation_name: str, *args, **kwargs) -> Any:
        """
        Invoke a registered operation.

        Handler exceptions propagate unchanged after being logged.

        Raises:
            NotRegisteredError: If the pair is not registered
            TargetNotCallableError: If the handler does not expose the operation
        """
        target = self._lookup(feature_name, operation_name).resolve_target()
        try:
            return target(*args, **kwargs)
        except Exception:
            logger.error(
                "Granular feature handler failed",
                extra={"feature_name": feature_name, "operation_name": operation_name},
                exc_info=True,
            )
            raise

    async def ainvoke(self, feature_name: str, operation_name: str, *args, **kwargs) -> Any:
        """Async variant of invoke(); awaits coroutine handlers."""
        target = self._lookup(feature_name, operation_name).resolve_target()
        try:
            result = target(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception:
            logger.error(
                "Granular feature handler failed",
                extra={"feature_name": feature_name, "operation_name": operation_name},
                exc_info=True,
            )
            raise
