"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation.
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from flowagent.engine.executor import JoinPolicy, RunStatus
from flowagent.engine.node import NodeStatus


# ============================================================
# Node Schemas
# ============================================================

class PositionModel(BaseModel):
    """Canvas coordinate of a node."""
    x: float = 0.0
    y: float = 0.0


class NodeCreateRequest(BaseModel):
    """Request to add an agent node."""
    id: Optional[str] = Field(None, min_length=1, description="Node id (generated if omitted)")
    label: Optional[str] = Field(None, description="Display name (defaults to 'Agent <n>')")
    persona_instruction: str = Field("", description="System instruction for this agent")
    position: Optional[PositionModel] = Field(None, description="Canvas position")

    class Config:
        json_schema_extra = {
            "example": {
                "id": "writer",
                "label": "Haiku Writer",
                "persona_instruction": "You are a creative writer. Receive a topic and write a short haiku about it.",
                "position": {"x": 100, "y": 150}
            }
        }


class NodeUpdateRequest(BaseModel):
    """Partial update of a node's editable fields."""
    label: Optional[str] = None
    persona_instruction: Optional[str] = None
    position: Optional[PositionModel] = None


class NodeResponse(BaseModel):
    """An agent node with its execution state."""
    id: str
    label: str
    persona_instruction: str
    position: PositionModel
    status: NodeStatus
    last_input: Optional[str] = None
    last_output: Optional[str] = None
    error_message: Optional[str] = None


# ============================================================
# Connection Schemas
# ============================================================

class ConnectionCreateRequest(BaseModel):
    """Request to connect two nodes."""
    source: str = Field(..., description="Source node id")
    target: str = Field(..., description="Target node id")


class ConnectionResponse(BaseModel):
    """A directed connection."""
    id: str
    source: str
    target: str


class ConnectionCreateResponse(BaseModel):
    """Result of a connection request. Self loops and duplicates are not created."""
    created: bool
    connection: Optional[ConnectionResponse] = None


class ConnectionDeleteResponse(BaseModel):
    """Number of connections removed."""
    deleted: int


# ============================================================
# Flow Schemas
# ============================================================

class FlowCreateRequest(BaseModel):
    """Request to create a new flow."""
    name: str = Field(..., description="Name of the flow")
    global_input: Optional[str] = Field(None, description="Text given to every root node")
    join_policy: JoinPolicy = Field(JoinPolicy.INDEPENDENT, description="Fan-in behaviour")
    max_levels: Optional[int] = Field(None, description="Level limit per run", ge=1, le=10000)
    nodes: List[NodeCreateRequest] = Field(default_factory=list)
    connections: List[ConnectionCreateRequest] = Field(
        default_factory=list,
        description="Connections between the ids given in nodes"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "name": "writer_and_critic",
                "global_input": "Artificial Intelligence",
                "nodes": [
                    {"id": "writer", "label": "Writer", "persona_instruction": "Write a haiku about the topic."},
                    {"id": "critic", "label": "Critic", "persona_instruction": "Critique the haiku you receive."}
                ],
                "connections": [
                    {"source": "writer", "target": "critic"}
                ]
            }
        }


class FlowStateResponse(BaseModel):
    """Full state of a flow for rendering."""
    flow_id: str
    name: str
    global_input: str
    is_running: bool
    join_policy: JoinPolicy
    nodes: List[NodeResponse]
    connections: List[ConnectionResponse]
    created_at: str
    mermaid_diagram: Optional[str] = Field(None, description="Mermaid diagram of the flow")


class FlowSummary(BaseModel):
    """Short description of a flow."""
    flow_id: str
    name: str
    node_count: int
    connection_count: int
    is_running: bool
    created_at: str


class FlowListResponse(BaseModel):
    """Response listing all flows."""
    flows: List[FlowSummary]
    total: int


class GlobalInputRequest(BaseModel):
    """Request to change the global input."""
    global_input: str


# ============================================================
# Run Schemas
# ============================================================

class FlowRunRequest(BaseModel):
    """Request to run a flow."""
    global_input: Optional[str] = Field(
        None,
        description="Replace the flow's global input before running"
    )
    async_execution: bool = Field(
        False,
        description="If true, run in background and return immediately"
    )


class InvocationLogEntry(BaseModel):
    """A single node invocation."""
    step: int
    level: int
    node_id: str
    input: str
    started_at: str
    completed_at: Optional[str]
    duration_ms: Optional[float]
    result: str
    output: Optional[str]
    error: Optional[str]


class FlowRunResponse(BaseModel):
    """Response after running a flow."""
    run_id: str = Field(..., description="Unique identifier for this run")
    flow_id: str
    status: RunStatus
    global_input: str
    levels: int
    invocations: List[InvocationLogEntry]
    started_at: Optional[str]
    completed_at: Optional[str]
    total_duration_ms: Optional[float]
    error: Optional[str] = None
    nodes: List[NodeResponse] = Field(default_factory=list)


class RunRecordResponse(BaseModel):
    """A stored run."""
    run_id: str
    flow_id: str
    status: RunStatus
    global_input: str
    levels: int
    invocations: List[InvocationLogEntry]
    total_duration_ms: Optional[float]
    error: Optional[str]
    created_at: str
    completed_at: Optional[str]


class RunListResponse(BaseModel):
    """Response listing runs."""
    runs: List[RunRecordResponse]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int
