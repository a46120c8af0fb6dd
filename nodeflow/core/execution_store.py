"""In-memory retention of execution records and their logs."""

import threading
import time
from typing import Callable, Dict, List, Optional

from ..models.core import ExecutionLog, NodeExecution, WorkflowExecution
from .logging import get_logger

logger = get_logger(__name__)


class _StoreEntry:
    """One execution's record, log buffer and expiry deadline."""

    __slots__ = ("execution", "logs", "expires_at")

    def __init__(self, execution: WorkflowExecution):
        self.execution = execution
        self.logs: List[ExecutionLog] = []
        self.expires_at: Optional[float] = None


class ExecutionStore:
    """Keeps execution records and logs per execution id until their TTL runs out.

    The retention clock starts when a run is finalized. Expired entries are
    evicted lazily, on every read and whenever a new run is registered, so no
    background sweeper is needed.
    """

    def __init__(self, retention_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._entries: Dict[str, _StoreEntry] = {}
        self._lock = threading.RLock()
        logger.info(f"ExecutionStore initialized with retention_seconds={retention_seconds}")

    def create(self, execution: WorkflowExecution) -> None:
        """Register a new execution. The store keeps a reference, not a copy."""
        with self._lock:
            self._purge_expired_locked()
            if execution.id in self._entries:
                raise ValueError(f"Execution {execution.id} already exists")
            self._entries[execution.id] = _StoreEntry(execution)

    def append_log(self, execution_id: str, entry: ExecutionLog, node_execution: Optional[NodeExecution] = None) -> None:
        """Append a log line to the execution's buffer and, optionally, to a node's trace."""
        with self._lock:
            stored = self._entries.get(execution_id)
            if stored is not None:
                stored.logs.append(entry)
            if node_execution is not None:
                node_execution.logs.append(entry)

    def finalize(self, execution_id: str) -> None:
        """Start the retention window for a finished execution."""
        with self._lock:
            stored = self._entries.get(execution_id)
            if stored is not None:
                stored.expires_at = self._clock() + self.retention_seconds
        logger.debug(f"Execution {execution_id} will be retained for {self.retention_seconds}s")

    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Return a deep copy of the execution, or None if unknown or expired."""
        with self._lock:
            stored = self._get_live_locked(execution_id)
            if stored is None:
                return None
            return stored.execution.model_copy(deep=True)

    def get_logs(self, execution_id: str) -> List[ExecutionLog]:
        """Return a copy of the execution's logs; empty if unknown or expired."""
        with self._lock:
            stored = self._get_live_locked(execution_id)
            if stored is None:
                return []
            return [entry.model_copy(deep=True) for entry in stored.logs]

    def evict(self, execution_id: str) -> bool:
        with self._lock:
            return self._entries.pop(execution_id, None) is not None

    def purge_expired(self) -> int:
        """Evict every expired entry and return how many were removed."""
        with self._lock:
            return self._purge_expired_locked()

    def active_execution_ids(self) -> List[str]:
        with self._lock:
            return [execution_id for execution_id, stored in self._entries.items() if stored.expires_at is None]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _get_live_locked(self, execution_id: str) -> Optional[_StoreEntry]:
        stored = self._entries.get(execution_id)
        if stored is None:
            return None
        if stored.expires_at is not None and self._clock() >= stored.expires_at:
            del self._entries[execution_id]
            logger.debug(f"Evicted expired execution {execution_id}")
            return None
        return stored

    def _purge_expired_locked(self) -> int:
        now = self._clock()
        expired = [
            execution_id for execution_id, stored in self._entries.items()
            if stored.expires_at is not None and now >= stored.expires_at
        ]
        for execution_id in expired:
            del self._entries[execution_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired executions")
        return len(expired)
