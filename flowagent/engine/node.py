"""
Agent Node Definition.

An agent node is a single persona in the flow. It receives text,
sends it to the generation backend together with its persona
instruction, and passes the generated text to its successors.
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass, field
from enum import Enum
import uuid


class NodeStatus(str, Enum):
    """Execution status of an agent node."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class Position:
    """Canvas coordinate of a node. Owned by the presentation layer."""
    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass
class AgentNode:
    """
    A node in the agent flow.

    Attributes:
        id: Unique identifier, stable for the node's lifetime
        label: Display name
        persona_instruction: System instruction sent with every invocation
        position: Canvas position, carried through unchanged
        status: Status of the most recent execution attempt
        last_input: Text consumed by the most recent attempt
        last_output: Text produced by the most recent successful attempt
        error_message: Failure message, present only while status is ERROR
    """

    id: str = field(default_factory=lambda: f"node-{uuid.uuid4().hex[:12]}")
    label: str = ""
    persona_instruction: str = ""
    position: Position = field(default_factory=Position)
    status: NodeStatus = NodeStatus.IDLE
    last_input: Optional[str] = None
    last_output: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        """Validate the node after initialization."""
        if not self.id:
            raise ValueError("Node id cannot be empty")
        if isinstance(self.position, dict):
            self.position = Position(**self.position)
        if isinstance(self.status, str):
            self.status = NodeStatus(self.status)

    def clear_run_state(self) -> None:
        """Return to idle and forget the previous run's input, output and error."""
        self.status = NodeStatus.IDLE
        self.last_input = None
        self.last_output = None
        self.error_message = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the node to a dictionary."""
        return {
            "id": self.id,
            "label": self.label,
            "persona_instruction": self.persona_instruction,
            "position": self.position.to_dict(),
            "status": self.status.value,
            "last_input": self.last_input,
            "last_output": self.last_output,
            "error_message": self.error_message,
        }
