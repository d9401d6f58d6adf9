"""
Async Flow Executor.

The executor runs an agent flow level by level: every root node receives
the global input, every node in a level is invoked concurrently, and the
next level is built from the outputs of the nodes that succeeded.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio
import inspect
import uuid
import time
import logging

from flowagent.config import settings
from flowagent.engine.graph import FlowGraph
from flowagent.engine.node import NodeStatus
from flowagent.engine.reconciler import StatusReconciler
from flowagent.services.generation import GenerationClient, GenerationFailure


logger = logging.getLogger(__name__)

NO_START_NODE_MESSAGE = "No start node found (a node with no incoming connections)."

EventCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class RunStatus(str, Enum):
    """Outcome of a flow run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    NO_START_NODE = "no_start_node"
    MAX_LEVELS_EXCEEDED = "max_levels_exceeded"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    FAILED = "failed"


class JoinPolicy(str, Enum):
    """How a node reached several times in one level is invoked."""
    INDEPENDENT = "independent"  # One invocation per arrival, last writer wins
    MERGE = "merge"              # One invocation with the arrivals joined


@dataclass
class FrontierEntry:
    """A pending invocation: a node and the text it will receive."""
    node_id: str
    input: str


@dataclass
class InvocationRecord:
    """A single node invocation in the run log."""
    step: int
    level: int
    node_id: str
    input: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    result: str = "pending"
    output: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "level": self.level,
            "node_id": self.node_id,
            "input": self.input,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "result": self.result,
            "output": self.output,
            "error": self.error,
        }


@dataclass
class RunOutcome:
    """Result of a flow run."""
    run_id: str
    graph_id: str
    status: RunStatus
    global_input: str = ""
    levels: int = 0
    invocations: List[InvocationRecord] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "graph_id": self.graph_id,
            "status": self.status.value,
            "global_input": self.global_input,
            "levels": self.levels,
            "invocations": [i.to_dict() for i in self.invocations],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
            "error": self.error,
        }


class FlowExecutor:
    """
    Level-synchronous flow executor.

    Handles:
    - Root discovery and the missing-start-node check
    - Concurrent invocation of every node in a level
    - A barrier between levels
    - Failure isolation: a failed node only stops its own branch
    - A level limit for cycles that stay reachable from a root

    Usage:
        executor = FlowExecutor(graph, client)
        outcome = await executor.run("Artificial Intelligence")
    """

    def __init__(
        self,
        graph: FlowGraph,
        client: GenerationClient,
        reconciler: Optional[StatusReconciler] = None,
        run_id: Optional[str] = None,
        max_levels: Optional[int] = None,
        join_policy: JoinPolicy = JoinPolicy.INDEPENDENT,
        on_event: Optional[EventCallback] = None,
    ):
        """
        Initialize the executor.

        Args:
            graph: The flow to execute
            client: Generation backend called once per invocation
            reconciler: Status writer shared with the owning session
            run_id: Optional run ID (generated if not provided)
            max_levels: Level limit (defaults to settings.MAX_LEVELS)
            join_policy: Fan-in behaviour within a level
            on_event: Optional callback for live updates (sync or async)
        """
        self.graph = graph
        self.client = client
        self.reconciler = reconciler or StatusReconciler(graph)
        self.run_id = run_id or str(uuid.uuid4())
        self.max_levels = max_levels if max_levels is not None else settings.MAX_LEVELS
        self.join_policy = join_policy
        self.on_event = on_event

        self._invocations: List[InvocationRecord] = []
        self._step_counter = 0
        self._status = RunStatus.PENDING
        self._cancelled = False

    @property
    def status(self) -> RunStatus:
        """Get the current run status."""
        return self._status

    def cancel(self) -> None:
        """Stop the run before its next level starts."""
        self._cancelled = True

    async def run(self, global_input: str) -> RunOutcome:
        """
        Execute the flow.

        Args:
            global_input: Text given to every root node

        Returns:
            RunOutcome with status and invocation log
        """
        start_time = time.time()
        started_at = datetime.now()
        self._status = RunStatus.RUNNING

        # Forget the previous run's statuses
        for node in self.graph.nodes.values():
            node.status = NodeStatus.IDLE
            node.error_message = None

        roots = self.graph.root_nodes()
        if not roots and len(self.graph) > 0:
            logger.warning(f"Run {self.run_id} aborted: {NO_START_NODE_MESSAGE}")
            return await self._finish(
                RunStatus.NO_START_NODE, global_input, 0, started_at, start_time,
                error=NO_START_NODE_MESSAGE,
            )

        epoch = self.reconciler.epoch
        frontier = [FrontierEntry(node_id=n.id, input=global_input) for n in roots]
        level = 0
        status = RunStatus.COMPLETED
        error = None

        logger.info(f"Starting run {self.run_id} with {len(roots)} root node(s)")
        await self._emit("run_started", roots=[n.id for n in roots], global_input=global_input)

        try:
            while frontier:
                if self._is_cancelled(epoch):
                    break

                if level >= self.max_levels:
                    error = f"Max levels ({self.max_levels}) exceeded"
                    logger.warning(f"Run {self.run_id}: {error}")
                    status = RunStatus.MAX_LEVELS_EXCEEDED
                    break

                if self.join_policy == JoinPolicy.MERGE:
                    frontier = merge_frontier(frontier)

                logger.debug(f"Level {level}: {[e.node_id for e in frontier]}")

                # Successors are appended as their source settles, so the
                # next level is ordered by completion
                next_frontier: List[FrontierEntry] = []

                # Barrier: every invocation settles before the next level is built
                await asyncio.gather(
                    *(self._invoke(level, entry, epoch, next_frontier) for entry in frontier)
                )
                frontier = next_frontier
                level += 1

                await self._emit("level_completed", level=level - 1, next_frontier=len(frontier))

            if self._is_cancelled(epoch):
                status = RunStatus.CANCELLED

        except Exception as e:
            logger.exception(f"Run {self.run_id} failed: {e}")
            status = RunStatus.FAILED
            error = str(e)

        if status == RunStatus.CANCELLED:
            logger.info(f"Run {self.run_id} cancelled after {level} level(s)")

        return await self._finish(status, global_input, level, started_at, start_time, error=error)

    def _is_cancelled(self, epoch: int) -> bool:
        return self._cancelled or epoch != self.reconciler.epoch

    async def _invoke(
        self,
        level: int,
        entry: FrontierEntry,
        epoch: int,
        next_frontier: List[FrontierEntry],
    ) -> None:
        """Invoke one node and append its successors to next_frontier."""
        node = await self.reconciler.mark_running(entry.node_id, entry.input, epoch)
        if node is None:
            logger.warning(f"Skipping {entry.node_id}: node deleted or run reset")
            return

        # Persona as of now, not as of run start
        persona = node.persona_instruction

        self._step_counter += 1
        record = InvocationRecord(
            step=self._step_counter,
            level=level,
            node_id=entry.node_id,
            input=entry.input,
            started_at=datetime.now(),
        )
        self._invocations.append(record)
        node_start_time = time.time()

        logger.info(f"Executing node: {node.label or node.id} (level {level}, step {record.step})")
        await self._emit("node_running", node=node.to_dict(), level=level, step=record.step)

        try:
            output = await self.client.generate(entry.input, persona)
        except GenerationFailure as e:
            message = e.message
        except Exception as e:
            logger.exception(f"Unexpected generation error in node {entry.node_id}")
            message = str(e) or type(e).__name__
        else:
            message = None

        record.completed_at = datetime.now()
        record.duration_ms = (time.time() - node_start_time) * 1000

        if message is not None:
            logger.error(f"Node {entry.node_id} failed: {message}")
            record.result = "error"
            record.error = message
            node = await self.reconciler.mark_error(entry.node_id, message, epoch)
            if node is not None:
                await self._emit("node_error", node=node.to_dict(), level=level, step=record.step)
            return

        record.result = "success"
        record.output = output
        node = await self.reconciler.mark_completed(entry.node_id, output, epoch)
        if node is None:
            return

        next_frontier.extend(
            FrontierEntry(node_id=c.target, input=output)
            for c in self.graph.outgoing(entry.node_id)
        )

        await self._emit("node_completed", node=node.to_dict(), level=level, step=record.step)

    async def _emit(self, event_type: str, **payload: Any) -> None:
        """Send an event to the callback. Callback errors never break the run."""
        if not self.on_event:
            return

        event = {"type": event_type, "run_id": self.run_id, **payload}
        try:
            result = self.on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Event callback failed: {e}")

    async def _finish(
        self,
        status: RunStatus,
        global_input: str,
        levels: int,
        started_at: datetime,
        start_time: float,
        error: Optional[str] = None,
    ) -> RunOutcome:
        self._status = status
        outcome = RunOutcome(
            run_id=self.run_id,
            graph_id=self.graph.graph_id,
            status=status,
            global_input=global_input,
            levels=levels,
            invocations=self._invocations,
            started_at=started_at,
            completed_at=datetime.now(),
            total_duration_ms=(time.time() - start_time) * 1000,
            error=error,
        )
        logger.info(
            f"Run {self.run_id} finished: {status.value} "
            f"({levels} level(s), {len(self._invocations)} invocation(s))"
        )
        await self._emit("run_finished", status=status.value, levels=levels, error=error)
        return outcome


def merge_frontier(frontier: List[FrontierEntry]) -> List[FrontierEntry]:
    """
    Collapse repeated nodes into one entry each.

    Inputs for the same node are joined with a blank line, in frontier
    order; the merged entry takes the position of the node's first arrival.
    """
    merged: Dict[str, List[str]] = {}
    for entry in frontier:
        merged.setdefault(entry.node_id, []).append(entry.input)
    return [
        FrontierEntry(node_id=node_id, input="\n\n".join(inputs))
        for node_id, inputs in merged.items()
    ]
