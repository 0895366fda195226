"""
Idempotency ports.

MarkerStore
    Durable ``(key, marker) -> value`` facts proving a side-effecting step has
    completed. Contract (marker-before-mirror): a caller that performed a
    non-idempotent external effect must store its marker before writing any
    best-effort mirror (ledger). A present marker is authoritative; mirrors are
    never consulted to decide whether work is needed.

ClaimStore
    Optional conditional write (set-if-absent with expiry) used in strict mode
    to let only one invocation at a time run the non-idempotent step for a key.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class MarkerStore(Protocol):
    async def get_marker(self, key: str, marker: str) -> Optional[str]: ...

    async def set_marker(self, key: str, marker: str, value: str) -> None: ...


@runtime_checkable
class ClaimStore(Protocol):
    async def claim(self, key: str) -> bool:
        """Return True if this caller now owns ``key``; False if someone else does."""
        ...

    async def release(self, key: str) -> None: ...
