"""
Flow Session.

A session owns one flow graph, the global input, and at most one run in
progress. It is the surface the presentation layer talks to: graph
mutations, run and reset.
"""

from typing import Any, Dict, Optional
from datetime import datetime
import logging

from flowagent.config import settings
from flowagent.engine.executor import (
    EventCallback,
    FlowExecutor,
    JoinPolicy,
    RunOutcome,
    RunStatus,
)
from flowagent.engine.graph import FlowGraph
from flowagent.engine.node import AgentNode, Position
from flowagent.engine.reconciler import StatusReconciler
from flowagent.services.generation import GenerationClient


logger = logging.getLogger(__name__)


class FlowSession:
    """
    A flow graph plus its run state.

    Only one run may be in progress at a time; a second call to run()
    is rejected. reset() stops the current run from starting new levels
    and discards the writes of invocations still in flight.
    """

    def __init__(
        self,
        graph: Optional[FlowGraph] = None,
        global_input: Optional[str] = None,
        max_levels: Optional[int] = None,
        join_policy: JoinPolicy = JoinPolicy.INDEPENDENT,
    ):
        self.graph = graph if graph is not None else FlowGraph()
        self.global_input = (
            global_input if global_input is not None else settings.DEFAULT_GLOBAL_INPUT
        )
        self.max_levels = max_levels
        self.join_policy = join_policy
        self.reconciler = StatusReconciler(self.graph)
        self.last_outcome: Optional[RunOutcome] = None
        self.created_at = datetime.now()

        self._executor: Optional[FlowExecutor] = None
        self._running = False

    @property
    def flow_id(self) -> str:
        return self.graph.graph_id

    @property
    def is_running(self) -> bool:
        """Whether a run is currently in progress."""
        return self._running

    # ------------------------------------------------------------
    # Graph mutations
    # ------------------------------------------------------------

    def add_node(
        self,
        label: Optional[str] = None,
        persona_instruction: str = "",
        position: Optional[Position] = None,
        node_id: Optional[str] = None,
    ) -> str:
        return self.graph.add_node(label, persona_instruction, position, node_id)

    def delete_node(self, node_id: str) -> bool:
        return self.graph.delete_node(node_id)

    def update_node_data(self, node_id: str, **fields: Any) -> AgentNode:
        return self.graph.update_node_data(node_id, **fields)

    def add_connection(self, source: str, target: str) -> Optional[str]:
        return self.graph.add_connection(source, target)

    def delete_connections_touching(self, node_id: str) -> int:
        return self.graph.delete_connections_touching(node_id)

    def set_global_input(self, text: str) -> None:
        self.global_input = text

    # ------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------

    async def run(
        self,
        client: GenerationClient,
        run_id: Optional[str] = None,
        on_event: Optional[EventCallback] = None,
    ) -> RunOutcome:
        """
        Run the flow with the current global input.

        Returns a REJECTED outcome without touching the graph if a run is
        already in progress.
        """
        if self._running:
            logger.warning(f"Run rejected for flow {self.flow_id}: a run is already in progress")
            now = datetime.now()
            return RunOutcome(
                run_id=run_id or "",
                graph_id=self.flow_id,
                status=RunStatus.REJECTED,
                global_input=self.global_input,
                started_at=now,
                completed_at=now,
                total_duration_ms=0.0,
                error="A run is already in progress",
            )

        self._running = True
        executor = FlowExecutor(
            self.graph,
            client,
            reconciler=self.reconciler,
            run_id=run_id,
            max_levels=self.max_levels,
            join_policy=self.join_policy,
            on_event=on_event,
        )
        self._executor = executor

        try:
            outcome = await executor.run(self.global_input)
        finally:
            # A reset during the run may already have handed the flag back
            if self._executor is executor:
                self._executor = None
                self._running = False

        self.last_outcome = outcome
        return outcome

    def reset(self) -> None:
        """Return every node to idle and stop the current run, if any."""
        if self._executor is not None:
            self._executor.cancel()
            self._executor = None
        self.reconciler.advance_epoch()
        self.graph.reset_all_statuses()
        self._running = False
        logger.info(f"Flow {self.flow_id} reset")

    def to_dict(self) -> Dict[str, Any]:
        """Full state for rendering."""
        return {
            "flow_id": self.flow_id,
            "name": self.graph.name,
            "global_input": self.global_input,
            "is_running": self.is_running,
            "join_policy": self.join_policy.value,
            "nodes": [n.to_dict() for n in self.graph.nodes.values()],
            "connections": [c.to_dict() for c in self.graph.connections.values()],
            "created_at": self.created_at.isoformat(),
        }
