"""
Per-node status reconciliation.

Invocations inside one level run concurrently and each one writes to the
shared FlowGraph. The reconciler applies those writes one node at a time,
touching only the fields owned by the invocation, so concurrent siblings
never clobber each other. Two writes to the same node only happen on
fan-in, where the last write to complete wins.

Each write carries the epoch it was issued under. A reset advances the
epoch, and writes from before the reset are dropped.
"""

from typing import Dict, Optional
import asyncio
import logging

from flowagent.engine.graph import FlowGraph
from flowagent.engine.node import AgentNode, NodeStatus


logger = logging.getLogger(__name__)


class StatusReconciler:
    """Applies keyed, per-node status writes to a FlowGraph."""

    def __init__(self, graph: FlowGraph):
        self.graph = graph
        self._epoch = 0
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def epoch(self) -> int:
        """The current write epoch."""
        return self._epoch

    def advance_epoch(self) -> int:
        """Invalidate every write issued under an earlier epoch."""
        self._epoch += 1
        # Locks of deleted nodes are not needed any more
        self._locks = {k: v for k, v in self._locks.items() if k in self.graph.nodes}
        return self._epoch

    def _lock_for(self, node_id: str) -> asyncio.Lock:
        lock = self._locks.get(node_id)
        if lock is None:
            lock = self._locks[node_id] = asyncio.Lock()
        return lock

    async def _apply(self, node_id: str, epoch: int, **fields) -> Optional[AgentNode]:
        async with self._lock_for(node_id):
            if epoch != self._epoch:
                logger.debug(f"Dropping stale write to {node_id} (epoch {epoch} < {self._epoch})")
                return None

            node = self.graph.get_node(node_id)
            if node is None:
                logger.debug(f"Dropping write to deleted node {node_id}")
                return None

            for key, value in fields.items():
                setattr(node, key, value)
            return node

    async def mark_running(self, node_id: str, input_text: str, epoch: int) -> Optional[AgentNode]:
        """Record that node_id started processing input_text."""
        return await self._apply(
            node_id,
            epoch,
            status=NodeStatus.RUNNING,
            last_input=input_text,
            error_message=None,
        )

    async def mark_completed(self, node_id: str, output: str, epoch: int) -> Optional[AgentNode]:
        """Record a successful generation."""
        return await self._apply(
            node_id,
            epoch,
            status=NodeStatus.COMPLETED,
            last_output=output,
            error_message=None,
        )

    async def mark_error(self, node_id: str, message: str, epoch: int) -> Optional[AgentNode]:
        """Record a failed generation."""
        return await self._apply(
            node_id,
            epoch,
            status=NodeStatus.ERROR,
            error_message=message,
        )
