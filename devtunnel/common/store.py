"""Key/value store abstraction backing credentials and sessions."""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class KeyValueStore(ABC, Generic[K, V]):
    """Minimal associative store interface.

    Implementations need not be thread-safe; callers that require atomic
    multi-step updates hold their own lock around the calls.
    """

    @abstractmethod
    def get(self, key: K) -> V | None:
        """Return the value for ``key`` or None."""

    @abstractmethod
    def set(self, key: K, value: V) -> None:
        """Insert or replace ``key``."""

    @abstractmethod
    def delete(self, key: K) -> bool:
        """Remove ``key``. Returns whether it existed."""

    @abstractmethod
    def items(self) -> Iterator[tuple[K, V]]:
        """Iterate over a snapshot of ``(key, value)`` pairs."""

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return sum(1 for _ in self.items())


class MemoryStore(KeyValueStore[K, V]):
    """In-process dict-backed store. Nothing survives a restart."""

    def __init__(self) -> None:
        self._data: dict[K, V] = {}

    def get(self, key: K) -> V | None:
        return self._data.get(key)

    def set(self, key: K, value: V) -> None:
        self._data[key] = value

    def delete(self, key: K) -> bool:
        return self._data.pop(key, None) is not None

    def items(self) -> Iterator[tuple[K, V]]:
        # Snapshot so callers may delete while iterating
        return iter(list(self._data.items()))

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
