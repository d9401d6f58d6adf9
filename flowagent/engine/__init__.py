"""
Engine package - Flow graph, execution and status reconciliation.
"""

from flowagent.engine.node import AgentNode, NodeStatus, Position
from flowagent.engine.graph import Connection, FlowGraph
from flowagent.engine.reconciler import StatusReconciler
from flowagent.engine.executor import (
    FlowExecutor,
    FrontierEntry,
    InvocationRecord,
    JoinPolicy,
    RunOutcome,
    RunStatus,
)
from flowagent.engine.session import FlowSession

__all__ = [
    "AgentNode",
    "NodeStatus",
    "Position",
    "Connection",
    "FlowGraph",
    "StatusReconciler",
    "FlowExecutor",
    "FrontierEntry",
    "InvocationRecord",
    "JoinPolicy",
    "RunOutcome",
    "RunStatus",
    "FlowSession",
]
