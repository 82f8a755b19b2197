"""
Provenance guard for path-tagged writes.

Every order and audit write must name the delivery path that produced
it. The comparison between the SOA and serverless paths is only as good
as these tags, so an unknown, empty or differently-cased tag is rejected
before any session is opened. There is no default path.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

import structlog

from core.errors import InvalidProvenanceError
from core.types import DeliveryPath

logger = structlog.get_logger()

R = TypeVar("R")


class ProvenanceGuard:
    """Validating gate in front of every path-tagged sink."""

    def __init__(self, allowed: Iterable[DeliveryPath] = tuple(DeliveryPath)):
        allowed = tuple(allowed)
        if not allowed:
            raise ValueError("ProvenanceGuard needs at least one allowed path")
        for path in allowed:
            if not isinstance(path, DeliveryPath):
                raise ValueError(f"Not a DeliveryPath: {path!r}")
        self.allowed = allowed
        self._by_value = {path.value: path for path in allowed}

    def check(self, path: Any) -> DeliveryPath:
        """Return the matching DeliveryPath or raise InvalidProvenanceError."""
        if isinstance(path, DeliveryPath):
            if path in self.allowed:
                return path
        elif type(path) is str and path in self._by_value:
            return self._by_value[path]

        allowed_values = tuple(self._by_value)
        logger.error("provenance.rejected", path=repr(path), allowed=list(allowed_values))
        raise InvalidProvenanceError(path, allowed_values)

    async def write(
        self,
        sink: Callable[[Any, DeliveryPath], Awaitable[R]],
        record: Any,
        path: Any,
    ) -> R:
        """Validate ``path`` and only then hand the record to ``sink``."""
        checked = self.check(path)
        return await sink(record, checked)


DEFAULT_GUARD = ProvenanceGuard()


def require_path(path: Any) -> DeliveryPath:
    return DEFAULT_GUARD.check(path)
