"""
Flow Graph Definition.

The FlowGraph is the store for agent nodes and the directed connections
between them. It is mutated by the presentation layer between runs and
read by the executor during a run.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import uuid
import logging

from flowagent.engine.node import AgentNode, Position


logger = logging.getLogger(__name__)

# Fields the presentation layer may edit through update_node_data
EDITABLE_FIELDS = frozenset({"label", "persona_instruction", "position"})


@dataclass
class Connection:
    """A directed connection carrying output from source to target."""
    source: str
    target: str
    id: str = field(default_factory=lambda: f"c-{uuid.uuid4().hex[:12]}")

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
        }


@dataclass
class FlowGraph:
    """
    A flow of agent nodes and connections.

    Nodes and connections keep insertion order, so root discovery and
    successor lists are deterministic.

    Attributes:
        graph_id: Unique identifier for this graph
        name: Human-readable name
        nodes: Dict of node_id -> AgentNode
        connections: Dict of connection_id -> Connection
    """

    graph_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Untitled Flow"
    nodes: Dict[str, AgentNode] = field(default_factory=dict)
    connections: Dict[str, Connection] = field(default_factory=dict)

    # ------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------

    def add_node(
        self,
        label: Optional[str] = None,
        persona_instruction: str = "",
        position: Optional[Position] = None,
        node_id: Optional[str] = None,
    ) -> str:
        """
        Add an agent node to the graph.

        Label and position default to the next "Agent <n>" slot, offset
        diagonally so new nodes do not stack on top of each other.

        Returns:
            The id of the new node

        Raises:
            ValueError: If node_id is empty or already in the graph
        """
        count = len(self.nodes)
        extra: Dict[str, Any] = {}
        if node_id is not None:
            extra["id"] = node_id
        node = AgentNode(
            label=label if label is not None else f"Agent {count + 1}",
            persona_instruction=persona_instruction,
            position=position or Position(x=200 + count * 20, y=200 + count * 20),
            **extra,
        )

        if node.id in self.nodes:
            raise ValueError(f"Node '{node.id}' already exists in the graph")

        self.nodes[node.id] = node
        return node.id

    def get_node(self, node_id: str) -> Optional[AgentNode]:
        """Get a node by id."""
        return self.nodes.get(node_id)

    def delete_node(self, node_id: str) -> bool:
        """Delete a node and every connection touching it."""
        if node_id not in self.nodes:
            return False
        del self.nodes[node_id]
        removed = self.delete_connections_touching(node_id)
        logger.debug(f"Deleted node {node_id} and {removed} connection(s)")
        return True

    def update_node_data(self, node_id: str, **fields: Any) -> AgentNode:
        """
        Apply a partial update to a node's editable fields.

        Raises:
            KeyError: If the node does not exist
            ValueError: If a field is not editable
        """
        node = self.nodes.get(node_id)
        if node is None:
            raise KeyError(node_id)

        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {sorted(unknown)}")

        for key, value in fields.items():
            if key == "position" and isinstance(value, dict):
                value = Position(**value)
            setattr(node, key, value)
        return node

    def move_node(self, node_id: str, position: Position) -> AgentNode:
        """Move a node on the canvas."""
        return self.update_node_data(node_id, position=position)

    def reset_all_statuses(self) -> None:
        """Set every node to idle and clear input, output and error."""
        for node in self.nodes.values():
            node.clear_run_state()

    # ------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------

    def add_connection(self, source: str, target: str) -> Optional[str]:
        """
        Connect source to target.

        Self loops and duplicate pairs are rejected without raising.

        Returns:
            The new connection id, or None if the connection was rejected

        Raises:
            KeyError: If either endpoint does not exist
        """
        if source not in self.nodes:
            raise KeyError(source)
        if target not in self.nodes:
            raise KeyError(target)

        if source == target:
            return None
        if self.has_connection(source, target):
            return None

        connection = Connection(source=source, target=target)
        self.connections[connection.id] = connection
        return connection.id

    def has_connection(self, source: str, target: str) -> bool:
        """Check whether a source -> target connection exists."""
        return any(
            c.source == source and c.target == target
            for c in self.connections.values()
        )

    def delete_connection(self, connection_id: str) -> bool:
        """Delete a single connection."""
        return self.connections.pop(connection_id, None) is not None

    def delete_connections_touching(self, node_id: str) -> int:
        """Delete every connection with node_id as source or target."""
        doomed = [
            cid for cid, c in self.connections.items()
            if c.source == node_id or c.target == node_id
        ]
        for cid in doomed:
            del self.connections[cid]
        return len(doomed)

    def outgoing(self, node_id: str) -> List[Connection]:
        """Connections leaving node_id, in insertion order."""
        return [c for c in self.connections.values() if c.source == node_id]

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def root_nodes(self) -> List[AgentNode]:
        """Nodes that no connection targets."""
        targets = {c.target for c in self.connections.values()}
        return [n for n in self.nodes.values() if n.id not in targets]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the graph to a dictionary."""
        return {
            "graph_id": self.graph_id,
            "name": self.name,
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "connections": [c.to_dict() for c in self.connections.values()],
        }

    def to_mermaid(self) -> str:
        """Generate a Mermaid diagram of the flow."""
        lines = ["graph LR"]

        aliases = {node_id: f"n{i}" for i, node_id in enumerate(self.nodes)}

        for node_id, node in self.nodes.items():
            label = (node.label or node_id).replace('"', "'")
            lines.append(f'    {aliases[node_id]}["{label} ({node.status.value})"]')

        for c in self.connections.values():
            lines.append(f"    {aliases[c.source]} --> {aliases[c.target]}")

        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.nodes)

    def __repr__(self) -> str:
        return (
            f"FlowGraph(name='{self.name}', nodes={list(self.nodes.keys())}, "
            f"connections={len(self.connections)})"
        )
