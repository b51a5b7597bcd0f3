"""
callrank/backend/base.py
Abstract base class for the shared counter store.
To add a new backend: subclass CounterStore and implement all four methods.

The sync engine never talks to a network directly. It hands a pure
update function to transact(); the store owns the optimistic
read-modify-write loop and its retry bound.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

UpdateFn = Callable[[Optional[Dict[str, Any]]], Dict[str, Any]]

DEFAULT_MAX_RETRIES = 25


class BackendError(Exception):
    """Base class for shared counter store failures."""


class BackendUnavailable(BackendError):
    """Store is unreachable, disabled or rejected the request."""


class TransactionConflict(BackendError):
    """Concurrent writers kept winning until the retry bound ran out."""


class CounterStore(ABC):

    @abstractmethod
    def is_available(self) -> bool:
        """
        Cheap reachability check. Returns False instead of raising.
        """
        ...

    @abstractmethod
    def read(self) -> Optional[Dict[str, Any]]:
        """
        Current counter document, or None when absent.
        Raises BackendUnavailable.
        """
        ...

    @abstractmethod
    def transact(self, update_fn: UpdateFn, max_retries: int = DEFAULT_MAX_RETRIES) -> Dict[str, Any]:
        """
        Optimistic read-modify-write of the counter document.

        update_fn receives the current document (None when absent) and
        returns the new one. It may be called several times and must be
        pure. Returns the committed document.
        Raises BackendUnavailable, or TransactionConflict after max_retries.
        """
        ...

    @abstractmethod
    def write_user(self, identity: str, payload: Dict[str, Any]) -> None:
        """
        Plain (non-transactional) write of one identity's summary record.
        Raises BackendUnavailable.
        """
        ...
