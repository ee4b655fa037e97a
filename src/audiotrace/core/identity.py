# src/audiotrace/core/identity.py
"""Identity resolution for observed host objects.

Every observed object gets a stable opaque identifier for as long as it
remains reachable. The table holds weak references only: when the host
drops its last reference, the weakref callback removes the entry, so the
engine never extends an object's lifetime.

Objects that cannot be weakly referenced fall back to an explicit arena keyed
by the object itself when it is hashable (value-like handles such as stream
id strings are owned by the host, not by us); the caller may release() them.
Unhashable, non-weakrefable objects get a fresh identity on every call.

Release listeners hear every identity the resolver forgets, whether the
object died, its handle was released, or the table was cleared.
"""

from __future__ import annotations

import itertools
import weakref
from collections.abc import Callable, Hashable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class IdentityResolver:
    """Assigns ``"<TypeName>#<n>"`` identities to host objects.

    Example:
        resolver = IdentityResolver()
        node = host.AudioContext().createGain()
        assert resolver.resolve(node) == resolver.resolve(node)
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        # id(obj) -> (weakref, identity). The weakref callback evicts the
        # entry during the referent's deallocation, before id() can be reused.
        self._table: dict[int, tuple[weakref.ref[Any], str]] = {}
        self._arena: dict[Hashable, str] = {}
        # identity -> id(obj) for weakly referenced objects
        self._keys: dict[str, int] = {}
        self._release_listeners: list[Callable[[str], None]] = []

    def __len__(self) -> int:
        return len(self._table) + len(self._arena)

    def _mint(self, obj: Any) -> str:
        return f"{type(obj).__name__}#{next(self._counter)}"

    def resolve(self, obj: Any) -> str:
        """Return the identity of ``obj``, assigning one on first sight."""
        key = id(obj)
        entry = self._table.get(key)
        if entry is not None and entry[0]() is obj:
            return entry[1]

        identity = self._mint(obj)
        try:
            ref = weakref.ref(obj, self._evictor(key))
        except TypeError:
            return self._resolve_unreferenceable(obj, identity)
        if entry is not None:
            self._keys.pop(entry[1], None)
        self._table[key] = (ref, identity)
        self._keys[identity] = key
        return identity

    def lookup(self, obj: Any) -> str | None:
        """Return the identity of ``obj`` if it was already resolved."""
        entry = self._table.get(id(obj))
        if entry is not None and entry[0]() is obj:
            return entry[1]
        if isinstance(obj, Hashable):
            try:
                return self._arena.get(obj)
            except TypeError:
                return None
        return None

    def referent(self, identity: str) -> Any | None:
        """Return the live object behind ``identity``, or None once it is gone."""
        key = self._keys.get(identity)
        entry = self._table.get(key) if key is not None else None
        if entry is None or entry[1] != identity:
            return None
        return entry[0]()

    def on_release(self, listener: Callable[[str], None]) -> None:
        """Call ``listener(identity)`` whenever an identity is forgotten."""
        self._release_listeners.append(listener)

    def release(self, handle: Hashable) -> None:
        """Drop an arena entry for a non-weakrefable handle."""
        identity = self._arena.pop(handle, None)
        if identity is not None:
            _notify(self._release_listeners, identity)

    def clear(self) -> None:
        forgotten = [identity for _, identity in self._table.values()] + list(self._arena.values())
        self._table.clear()
        self._arena.clear()
        self._keys.clear()
        for identity in forgotten:
            _notify(self._release_listeners, identity)

    def _evictor(self, key: int) -> Any:
        table = self._table
        keys = self._keys
        listeners = self._release_listeners

        def _evict(ref: weakref.ref[Any]) -> None:
            entry = table.get(key)
            if entry is not None and entry[0] is ref:
                del table[key]
                keys.pop(entry[1], None)
                _notify(listeners, entry[1])

        return _evict

    def _resolve_unreferenceable(self, obj: Any, identity: str) -> str:
        try:
            existing = self._arena.get(obj)
        except TypeError:
            logger.debug("Transient identity for unhashable object", type=type(obj).__name__)
            return identity
        if existing is not None:
            return existing
        self._arena[obj] = identity
        return identity


def _notify(listeners: list[Callable[[str], None]], identity: str) -> None:
    # Also called from weakref callbacks
    for listener in listeners:
        try:
            listener(identity)
        except Exception as e:
            logger.error("Identity release listener failed", identity=identity, error=str(e))
