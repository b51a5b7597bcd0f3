"""
callrank/backend/memory_store.py
In-process counter store. Versioned compare-and-swap, same contract as
the network backend. Used for local-only runs and in tests.
"""

import copy
import logging
import threading
from typing import Any, Dict, Optional

from callrank.backend.base import (
    DEFAULT_MAX_RETRIES, BackendUnavailable, CounterStore,
    TransactionConflict, UpdateFn,
)

logger = logging.getLogger(__name__)


class InMemoryCounterStore(CounterStore):

    def __init__(self, document: Optional[Dict[str, Any]] = None, available: bool = True):
        self.document: Optional[Dict[str, Any]] = copy.deepcopy(document)
        self.users:    Dict[str, Dict[str, Any]] = {}
        self.available = available
        self.version   = 0
        self._lock     = threading.Lock()

        # Concurrent commits to inject between a read and its write-back
        self.pending_conflicts = 0
        self.conflict_document: Optional[Dict[str, Any]] = None

        # Call counters
        self.read_calls     = 0
        self.transact_calls = 0
        self.attempts       = 0
        self.write_calls    = 0

    def is_available(self) -> bool:
        return self.available

    def read(self) -> Optional[Dict[str, Any]]:
        self._check()
        with self._lock:
            self.read_calls += 1
            return copy.deepcopy(self.document)

    def transact(self, update_fn: UpdateFn, max_retries: int = DEFAULT_MAX_RETRIES) -> Dict[str, Any]:
        self._check()
        self.transact_calls += 1

        for attempt in range(1, max_retries + 1):
            with self._lock:
                snapshot = copy.deepcopy(self.document)
                seen_version = self.version

            new_doc = update_fn(snapshot)
            self.attempts += 1

            with self._lock:
                if self.pending_conflicts > 0:
                    self.pending_conflicts -= 1
                    if self.conflict_document is not None:
                        self.document = copy.deepcopy(self.conflict_document)
                    self.version += 1

                if self.version == seen_version:
                    self.document = copy.deepcopy(new_doc)
                    self.version += 1
                    return copy.deepcopy(new_doc)

            logger.debug(f"Counter transaction conflict (attempt {attempt}/{max_retries})")

        raise TransactionConflict(f"gave up after {max_retries} attempts")

    def write_user(self, identity: str, payload: Dict[str, Any]) -> None:
        self._check()
        with self._lock:
            self.write_calls += 1
            self.users[identity] = copy.deepcopy(payload)

    def _check(self) -> None:
        if not self.available:
            raise BackendUnavailable('in-memory store marked unavailable')
