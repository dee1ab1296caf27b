from contextlib import contextmanager
from threading import Lock
from typing import Iterator


class ProviderLockRegistry:
    """One lock per provider id, created on first use.

    Holding a provider's lock serialises booking writes for that provider only;
    other providers keep booking in parallel.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[int, Lock] = {}

    def lock_for(self, provider_id: int) -> Lock:
        lock = self._locks.get(provider_id)
        if lock is not None:
            return lock

        with self._guard:
            lock = self._locks.get(provider_id)
            if lock is None:
                lock = Lock()
                self._locks[provider_id] = lock
            return lock

    @contextmanager
    def hold(self, provider_id: int) -> Iterator[None]:
        lock = self.lock_for(provider_id)
        with lock:
            yield


provider_locks = ProviderLockRegistry()
