"""
Flow API Routes.

Endpoints for building flows (nodes, connections, global input),
running them, and resetting their state.
"""

from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response, status
from uuid import uuid4
import logging

from flowagent.api.dependencies import get_generation_client
from flowagent.api.routes.websocket import manager
from flowagent.api.schemas import (
    ConnectionCreateRequest,
    ConnectionCreateResponse,
    ConnectionDeleteResponse,
    ConnectionResponse,
    ErrorResponse,
    FlowCreateRequest,
    FlowListResponse,
    FlowRunRequest,
    FlowRunResponse,
    FlowStateResponse,
    FlowSummary,
    GlobalInputRequest,
    InvocationLogEntry,
    NodeCreateRequest,
    NodeResponse,
    NodeUpdateRequest,
    RunListResponse,
    RunRecordResponse,
)
from flowagent.engine.executor import InvocationRecord, RunOutcome, RunStatus
from flowagent.engine.graph import Connection, FlowGraph
from flowagent.engine.node import AgentNode, Position
from flowagent.engine.session import FlowSession
from flowagent.services.generation import GenerationClient
from flowagent.storage.memory import StoredRun, flow_storage, run_storage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/flows", tags=["Flows"])


# ============================================================
# Response helpers
# ============================================================

def _node_response(node: AgentNode) -> NodeResponse:
    return NodeResponse(**node.to_dict())


def _connection_response(connection: Connection) -> ConnectionResponse:
    return ConnectionResponse(**connection.to_dict())


def _state_response(session: FlowSession, include_mermaid: bool = True) -> FlowStateResponse:
    return FlowStateResponse(
        flow_id=session.flow_id,
        name=session.graph.name,
        global_input=session.global_input,
        is_running=session.is_running,
        join_policy=session.join_policy,
        nodes=[_node_response(n) for n in session.graph.nodes.values()],
        connections=[_connection_response(c) for c in session.graph.connections.values()],
        created_at=session.created_at.isoformat(),
        mermaid_diagram=session.graph.to_mermaid() if include_mermaid else None,
    )


def _invocation_entries(invocations: List[InvocationRecord]) -> List[InvocationLogEntry]:
    return [InvocationLogEntry(**i.to_dict()) for i in invocations]


def _outcome_to_response(outcome: RunOutcome, session: FlowSession) -> FlowRunResponse:
    """Convert a RunOutcome to an API response."""
    return FlowRunResponse(
        run_id=outcome.run_id,
        flow_id=session.flow_id,
        status=outcome.status,
        global_input=outcome.global_input,
        levels=outcome.levels,
        invocations=_invocation_entries(outcome.invocations),
        started_at=outcome.started_at.isoformat() if outcome.started_at else None,
        completed_at=outcome.completed_at.isoformat() if outcome.completed_at else None,
        total_duration_ms=outcome.total_duration_ms,
        error=outcome.error,
        nodes=[_node_response(n) for n in session.graph.nodes.values()],
    )


def run_record_response(stored: StoredRun) -> RunRecordResponse:
    """Convert a stored run to an API response."""
    data = stored.to_dict()
    data["invocations"] = [InvocationLogEntry(**i) for i in data["invocations"]]
    return RunRecordResponse(**data)


async def _get_session(flow_id: str) -> FlowSession:
    session = await flow_storage.get(flow_id)
    if not session:
        raise HTTPException(status_code=404, detail=f"Flow '{flow_id}' not found")
    return session


def _position(model) -> Optional[Position]:
    return Position(x=model.x, y=model.y) if model is not None else None


# ============================================================
# Flow CRUD Endpoints
# ============================================================

@router.post(
    "",
    response_model=FlowStateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Invalid flow definition"}},
)
async def create_flow(request: FlowCreateRequest) -> FlowStateResponse:
    """
    Create a new flow.

    Nodes may carry explicit ids so that connections in the same request
    can refer to them.
    """
    session = FlowSession(
        graph=FlowGraph(name=request.name),
        global_input=request.global_input,
        max_levels=request.max_levels,
        join_policy=request.join_policy,
    )

    for node_def in request.nodes:
        try:
            session.add_node(
                label=node_def.label,
                persona_instruction=node_def.persona_instruction,
                position=_position(node_def.position),
                node_id=node_def.id,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    for conn_def in request.connections:
        try:
            session.add_connection(conn_def.source, conn_def.target)
        except KeyError as e:
            raise HTTPException(
                status_code=400,
                detail=f"Connection endpoint {e} is not a valid node"
            )

    await flow_storage.save(session)
    logger.info(f"Created flow: {session.flow_id} ({request.name})")

    return _state_response(session)


@router.get("", response_model=FlowListResponse)
async def list_flows() -> FlowListResponse:
    """List all flows."""
    sessions = await flow_storage.list_all()

    flows = [
        FlowSummary(
            flow_id=s.flow_id,
            name=s.graph.name,
            node_count=len(s.graph.nodes),
            connection_count=len(s.graph.connections),
            is_running=s.is_running,
            created_at=s.created_at.isoformat(),
        )
        for s in sessions
    ]
    return FlowListResponse(flows=flows, total=len(flows))


@router.get(
    "/{flow_id}",
    response_model=FlowStateResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_flow(flow_id: str) -> FlowStateResponse:
    """Get the full state of a flow: nodes, connections, statuses."""
    session = await _get_session(flow_id)
    return _state_response(session)


@router.delete(
    "/{flow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_flow(flow_id: str):
    """Delete a flow and its run history."""
    deleted = await flow_storage.delete(flow_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Flow '{flow_id}' not found")
    await run_storage.delete_by_flow(flow_id)
    logger.info(f"Deleted flow: {flow_id}")


@router.put(
    "/{flow_id}/input",
    response_model=FlowStateResponse,
    responses={404: {"model": ErrorResponse}},
)
async def set_global_input(flow_id: str, request: GlobalInputRequest) -> FlowStateResponse:
    """Set the text given to every root node."""
    session = await _get_session(flow_id)
    session.set_global_input(request.global_input)
    return _state_response(session, include_mermaid=False)


# ============================================================
# Node Endpoints
# ============================================================

@router.post(
    "/{flow_id}/nodes",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def add_node(flow_id: str, request: NodeCreateRequest) -> NodeResponse:
    """Add an agent node."""
    session = await _get_session(flow_id)
    try:
        node_id = session.add_node(
            label=request.label,
            persona_instruction=request.persona_instruction,
            position=_position(request.position),
            node_id=request.id,
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return _node_response(session.graph.nodes[node_id])


@router.patch(
    "/{flow_id}/nodes/{node_id}",
    response_model=NodeResponse,
    responses={404: {"model": ErrorResponse}},
)
async def update_node(flow_id: str, node_id: str, request: NodeUpdateRequest) -> NodeResponse:
    """Edit a node's label, persona instruction or position."""
    session = await _get_session(flow_id)

    node = session.graph.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node '{node_id}' not found")

    fields = request.model_dump(exclude_unset=True, exclude_none=True)
    if "position" in fields:
        # Coordinates left out keep their current value
        fields["position"] = Position(**{**node.position.to_dict(), **fields["position"]})

    node = session.update_node_data(node_id, **fields)

    return _node_response(node)


@router.delete(
    "/{flow_id}/nodes/{node_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_node(flow_id: str, node_id: str):
    """Delete a node together with its connections."""
    session = await _get_session(flow_id)
    if not session.delete_node(node_id):
        raise HTTPException(status_code=404, detail=f"Node '{node_id}' not found")


@router.delete(
    "/{flow_id}/nodes/{node_id}/connections",
    response_model=ConnectionDeleteResponse,
    responses={404: {"model": ErrorResponse}},
)
async def delete_node_connections(flow_id: str, node_id: str) -> ConnectionDeleteResponse:
    """Remove every connection into or out of a node."""
    session = await _get_session(flow_id)
    if node_id not in session.graph.nodes:
        raise HTTPException(status_code=404, detail=f"Node '{node_id}' not found")
    return ConnectionDeleteResponse(deleted=session.delete_connections_touching(node_id))


# ============================================================
# Connection Endpoints
# ============================================================

@router.post(
    "/{flow_id}/connections",
    response_model=ConnectionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}},
)
async def add_connection(
    flow_id: str,
    request: ConnectionCreateRequest,
    response: Response,
) -> ConnectionCreateResponse:
    """
    Connect two nodes.

    Self loops and duplicate connections are not created; the response
    then has `created: false` and status 200.
    """
    session = await _get_session(flow_id)
    try:
        connection_id = session.add_connection(request.source, request.target)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=f"Node {e} not found")

    if connection_id is None:
        response.status_code = status.HTTP_200_OK
        return ConnectionCreateResponse(created=False)

    return ConnectionCreateResponse(
        created=True,
        connection=_connection_response(session.graph.connections[connection_id]),
    )


@router.delete(
    "/{flow_id}/connections/{connection_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_connection(flow_id: str, connection_id: str):
    """Delete a single connection."""
    session = await _get_session(flow_id)
    if not session.graph.delete_connection(connection_id):
        raise HTTPException(
            status_code=404,
            detail=f"Connection '{connection_id}' not found"
        )


# ============================================================
# Execution Endpoints
# ============================================================

@router.post(
    "/{flow_id}/run",
    response_model=FlowRunResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "A run is already in progress"},
        422: {"model": ErrorResponse, "description": "No start node"},
    }
)
async def run_flow(
    flow_id: str,
    background_tasks: BackgroundTasks,
    request: Optional[FlowRunRequest] = None,
    client: GenerationClient = Depends(get_generation_client),
) -> FlowRunResponse:
    """
    Run a flow.

    If `async_execution` is True, the flow runs in the background and
    progress can be followed over `/ws/flows/{flow_id}` or by polling
    `GET /runs/{run_id}`.
    """
    request = request or FlowRunRequest()
    session = await _get_session(flow_id)

    if session.is_running:
        raise HTTPException(status_code=409, detail="A run is already in progress")

    if request.global_input is not None:
        session.set_global_input(request.global_input)

    run_id = str(uuid4())
    await run_storage.create(run_id, flow_id, session.global_input)

    if request.async_execution:
        background_tasks.add_task(_execute_in_background, session, client, run_id)
        return FlowRunResponse(
            run_id=run_id,
            flow_id=flow_id,
            status=RunStatus.PENDING,
            global_input=session.global_input,
            levels=0,
            invocations=[],
            started_at=None,
            completed_at=None,
            total_duration_ms=None,
        )

    outcome = await _execute(session, client, run_id)

    if outcome.status == RunStatus.REJECTED:
        raise HTTPException(status_code=409, detail=outcome.error)
    if outcome.status == RunStatus.NO_START_NODE:
        raise HTTPException(status_code=422, detail=outcome.error)

    return _outcome_to_response(outcome, session)


async def _execute(session: FlowSession, client: GenerationClient, run_id: str) -> RunOutcome:
    """Run a session, streaming events to subscribers and recording the outcome."""
    flow_id = session.flow_id

    async def on_event(event):
        await manager.broadcast(flow_id, event)

    await run_storage.mark_running(run_id)
    outcome = await session.run(client, run_id=run_id, on_event=on_event)
    await run_storage.complete(run_id, outcome)
    return outcome


async def _execute_in_background(session: FlowSession, client: GenerationClient, run_id: str):
    """Execute a flow in the background."""
    try:
        await _execute(session, client, run_id)
    except Exception as e:
        logger.exception(f"Background execution failed: {e}")


@router.post(
    "/{flow_id}/reset",
    response_model=FlowStateResponse,
    responses={404: {"model": ErrorResponse}},
)
async def reset_flow(flow_id: str) -> FlowStateResponse:
    """
    Return every node to idle and clear inputs, outputs and errors.

    A run in progress starts no further levels, and the results of calls
    still in flight are discarded.
    """
    session = await _get_session(flow_id)
    session.reset()
    await manager.broadcast(flow_id, {"type": "state", "flow": session.to_dict()})
    return _state_response(session, include_mermaid=False)


@router.get(
    "/{flow_id}/runs",
    response_model=RunListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_flow_runs(flow_id: str) -> RunListResponse:
    """List the runs of a flow."""
    await _get_session(flow_id)
    runs = await run_storage.list_by_flow(flow_id)
    records = [run_record_response(r) for r in runs]
    return RunListResponse(runs=records, total=len(records))
