"""
In-Memory Storage for FlowAgent.

Holds flow sessions and run records for the lifetime of the process.
Nothing survives a restart.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import asyncio
from dataclasses import dataclass, field

from flowagent.engine.executor import RunOutcome, RunStatus
from flowagent.engine.session import FlowSession


@dataclass
class StoredRun:
    """A stored flow run."""
    run_id: str
    flow_id: str
    status: str
    global_input: str
    outcome: Optional[RunOutcome] = None
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        outcome = self.outcome.to_dict() if self.outcome else {}
        return {
            "run_id": self.run_id,
            "flow_id": self.flow_id,
            "status": self.status,
            "global_input": self.global_input,
            "levels": outcome.get("levels", 0),
            "invocations": outcome.get("invocations", []),
            "total_duration_ms": outcome.get("total_duration_ms"),
            "error": outcome.get("error"),
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class FlowStorage:
    """
    In-memory storage for flow sessions.

    Sessions are stored by flow ID, allowing creation, retrieval and
    deletion operations.
    """

    def __init__(self):
        self._flows: Dict[str, FlowSession] = {}
        self._lock = asyncio.Lock()

    async def save(self, session: FlowSession) -> FlowSession:
        """Save a flow session under its flow ID."""
        async with self._lock:
            self._flows[session.flow_id] = session
            return session

    async def get(self, flow_id: str) -> Optional[FlowSession]:
        """Get a flow session by ID."""
        async with self._lock:
            return self._flows.get(flow_id)

    async def delete(self, flow_id: str) -> bool:
        """Delete a flow session, resetting it first."""
        async with self._lock:
            session = self._flows.pop(flow_id, None)
            if session is None:
                return False
            session.reset()
            return True

    async def list_all(self) -> List[FlowSession]:
        """List all stored flow sessions."""
        async with self._lock:
            return list(self._flows.values())

    def __len__(self) -> int:
        return len(self._flows)


class RunStorage:
    """
    In-memory storage for run records.

    A record is created when a run is requested and completed with the
    run outcome when it settles.
    """

    def __init__(self):
        self._runs: Dict[str, StoredRun] = {}
        self._lock = asyncio.Lock()

    async def create(self, run_id: str, flow_id: str, global_input: str) -> StoredRun:
        """Create a pending run record."""
        async with self._lock:
            stored = StoredRun(
                run_id=run_id,
                flow_id=flow_id,
                status=RunStatus.PENDING.value,
                global_input=global_input,
            )
            self._runs[run_id] = stored
            return stored

    async def get(self, run_id: str) -> Optional[StoredRun]:
        """Get a run by ID."""
        async with self._lock:
            return self._runs.get(run_id)

    async def mark_running(self, run_id: str) -> Optional[StoredRun]:
        """Mark a run as started."""
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            stored.status = RunStatus.RUNNING.value
            return stored

    async def complete(self, run_id: str, outcome: RunOutcome) -> Optional[StoredRun]:
        """Attach the outcome to a run."""
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            stored.outcome = outcome
            stored.status = outcome.status.value
            stored.completed_at = outcome.completed_at or datetime.now()
            return stored

    async def list_all(self) -> List[StoredRun]:
        """List all runs."""
        async with self._lock:
            return list(self._runs.values())

    async def list_by_flow(self, flow_id: str) -> List[StoredRun]:
        """List all runs for a specific flow."""
        async with self._lock:
            return [r for r in self._runs.values() if r.flow_id == flow_id]

    async def delete_by_flow(self, flow_id: str) -> int:
        """Delete every run of a flow."""
        async with self._lock:
            doomed = [rid for rid, r in self._runs.items() if r.flow_id == flow_id]
            for rid in doomed:
                del self._runs[rid]
            return len(doomed)

    def __len__(self) -> int:
        return len(self._runs)


# Global storage instances
flow_storage = FlowStorage()
run_storage = RunStorage()
