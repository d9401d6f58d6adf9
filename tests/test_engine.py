"""
Tests for the FlowAgent engine core components.
"""

import pytest
import asyncio
from typing import Dict, List, Tuple

from flowagent.engine.node import AgentNode, NodeStatus, Position
from flowagent.engine.graph import FlowGraph
from flowagent.engine.reconciler import StatusReconciler
from flowagent.engine.executor import (
    FlowExecutor,
    FrontierEntry,
    JoinPolicy,
    RunStatus,
    NO_START_NODE_MESSAGE,
    merge_frontier,
)
from flowagent.engine.session import FlowSession
from flowagent.services.generation import GenerationClient, GenerationFailure


# ============================================================
# Test Generation Clients
# ============================================================

class RecordingClient(GenerationClient):
    """Records every call and answers with a function of (input, persona)."""

    def __init__(self, respond=None, delays: Dict[str, float] = None):
        self.respond = respond or (lambda text, persona: text)
        self.delays = delays or {}
        self.calls: List[Tuple[str, str]] = []

    async def generate(self, input_text: str, persona_instruction: str) -> str:
        self.calls.append((input_text, persona_instruction))
        await asyncio.sleep(self.delays.get(persona_instruction, 0))
        return self.respond(input_text, persona_instruction)


class UppercaseClient(GenerationClient):
    """Deterministic echo-uppercase backend."""

    async def generate(self, input_text: str, persona_instruction: str) -> str:
        return input_text.upper()


class FailingClient(GenerationClient):
    """Always fails with the given message."""

    def __init__(self, message: str = "boom"):
        self.message = message
        self.calls = 0

    async def generate(self, input_text: str, persona_instruction: str) -> str:
        self.calls += 1
        raise GenerationFailure(self.message)


class BlockingClient(GenerationClient):
    """Blocks every call until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, input_text: str, persona_instruction: str) -> str:
        self.started.set()
        await self.release.wait()
        return f"done:{input_text}"


def build_graph(node_ids, edges) -> FlowGraph:
    """Build a graph whose nodes use their id as persona."""
    graph = FlowGraph()
    for node_id in node_ids:
        graph.add_node(label=node_id.upper(), persona_instruction=node_id, node_id=node_id)
    for source, target in edges:
        graph.add_connection(source, target)
    return graph


# ============================================================
# Node Tests
# ============================================================

class TestAgentNode:
    """Tests for AgentNode."""

    def test_defaults(self):
        """A new node is idle with no input, output or error."""
        node = AgentNode(label="Writer")

        assert node.id.startswith("node-")
        assert node.status == NodeStatus.IDLE
        assert node.last_input is None
        assert node.last_output is None
        assert node.error_message is None

    def test_empty_id_rejected(self):
        """Node ids cannot be empty."""
        with pytest.raises(ValueError, match="cannot be empty"):
            AgentNode(id="")

    def test_position_from_dict(self):
        """Positions given as dicts are converted."""
        node = AgentNode(position={"x": 10, "y": 20})
        assert node.position == Position(x=10, y=20)

    def test_to_dict(self):
        """Serialization uses plain values."""
        node = AgentNode(id="a", label="A", status=NodeStatus.ERROR, error_message="bad")
        data = node.to_dict()

        assert data["id"] == "a"
        assert data["status"] == "error"
        assert data["error_message"] == "bad"
        assert data["position"] == {"x": 0.0, "y": 0.0}


# ============================================================
# Graph Store Tests
# ============================================================

class TestFlowGraph:
    """Tests for the FlowGraph store."""

    def test_add_node_defaults(self):
        """Nodes get an 'Agent <n>' label and a diagonal offset."""
        graph = FlowGraph()
        first = graph.add_node()
        second = graph.add_node()

        assert graph.nodes[first].label == "Agent 1"
        assert graph.nodes[second].label == "Agent 2"
        assert graph.nodes[first].position == Position(x=200, y=200)
        assert graph.nodes[second].position == Position(x=220, y=220)

    def test_duplicate_node_id(self):
        """Node ids are unique."""
        graph = FlowGraph()
        graph.add_node(node_id="a")

        with pytest.raises(ValueError, match="already exists"):
            graph.add_node(node_id="a")

    def test_empty_node_id_rejected(self):
        """An explicit empty id is refused and nothing is added."""
        graph = FlowGraph()

        with pytest.raises(ValueError, match="cannot be empty"):
            graph.add_node(label="x", node_id="")

        assert len(graph) == 0

    def test_self_connection_rejected(self):
        """addConnection(a, a) never changes the connection set."""
        graph = build_graph(["a"], [])

        assert graph.add_connection("a", "a") is None
        assert graph.connections == {}

    def test_duplicate_connection_rejected(self):
        """addConnection(a, b) twice results in exactly one connection."""
        graph = build_graph(["a", "b"], [])

        first = graph.add_connection("a", "b")
        second = graph.add_connection("a", "b")

        assert first is not None
        assert second is None
        assert len(graph.connections) == 1

    def test_reverse_connection_allowed(self):
        """a -> b and b -> a are different pairs."""
        graph = build_graph(["a", "b"], [("a", "b")])

        assert graph.add_connection("b", "a") is not None
        assert len(graph.connections) == 2

    def test_connection_to_missing_node(self):
        """Endpoints must exist when the connection is created."""
        graph = build_graph(["a"], [])

        with pytest.raises(KeyError):
            graph.add_connection("a", "ghost")

    def test_delete_node_cascades(self):
        """Deleting x removes every connection where source or target is x."""
        graph = build_graph(["a", "x", "c"], [("a", "x"), ("x", "c"), ("a", "c")])

        assert graph.delete_node("x") is True

        assert "x" not in graph.nodes
        assert [(c.source, c.target) for c in graph.connections.values()] == [("a", "c")]

    def test_delete_missing_node(self):
        """Deleting an unknown node reports False."""
        graph = FlowGraph()
        assert graph.delete_node("ghost") is False

    def test_delete_connections_touching(self):
        """Only connections touching the node are removed."""
        graph = build_graph(["a", "b", "c"], [("a", "b"), ("b", "c"), ("a", "c")])

        assert graph.delete_connections_touching("b") == 2
        assert len(graph.connections) == 1
        assert "b" in graph.nodes

    def test_update_node_data(self):
        """Partial updates touch only the given fields."""
        graph = build_graph(["a"], [])

        graph.update_node_data("a", persona_instruction="Be terse.")
        node = graph.nodes["a"]

        assert node.persona_instruction == "Be terse."
        assert node.label == "A"

    def test_update_node_data_errors(self):
        """Unknown nodes and non-editable fields are refused."""
        graph = build_graph(["a"], [])

        with pytest.raises(KeyError):
            graph.update_node_data("ghost", label="x")
        with pytest.raises(ValueError, match="not editable"):
            graph.update_node_data("a", status=NodeStatus.COMPLETED)

    def test_move_node(self):
        """Moving a node changes only its position."""
        graph = build_graph(["a"], [])
        graph.move_node("a", Position(x=5, y=6))

        assert graph.nodes["a"].position == Position(x=5, y=6)

    def test_root_nodes(self):
        """Roots are nodes that no connection targets."""
        graph = build_graph(["a", "b", "c", "d"], [("a", "b"), ("b", "c")])

        assert [n.id for n in graph.root_nodes()] == ["a", "d"]

    def test_reset_all_statuses(self):
        """Reset clears status, input, output and error."""
        graph = build_graph(["a", "b"], [])
        graph.nodes["a"].status = NodeStatus.COMPLETED
        graph.nodes["a"].last_input = "in"
        graph.nodes["a"].last_output = "out"
        graph.nodes["b"].status = NodeStatus.ERROR
        graph.nodes["b"].error_message = "bad"

        graph.reset_all_statuses()

        for node in graph.nodes.values():
            assert node.status == NodeStatus.IDLE
            assert node.last_input is None
            assert node.last_output is None
            assert node.error_message is None

    def test_mermaid_generation(self):
        """Mermaid diagram generation."""
        graph = build_graph(["a", "b"], [("a", "b")])

        mermaid = graph.to_mermaid()

        assert "graph LR" in mermaid
        assert "A (idle)" in mermaid
        assert "n0 --> n1" in mermaid


# ============================================================
# Status Reconciler Tests
# ============================================================

class TestStatusReconciler:
    """Tests for per-node status writes."""

    @pytest.mark.asyncio
    async def test_writes_touch_only_own_fields(self):
        """A completion keeps the input recorded when the node started."""
        graph = build_graph(["a"], [])
        reconciler = StatusReconciler(graph)

        await reconciler.mark_running("a", "hello", reconciler.epoch)
        await reconciler.mark_completed("a", "HELLO", reconciler.epoch)

        node = graph.nodes["a"]
        assert node.status == NodeStatus.COMPLETED
        assert node.last_input == "hello"
        assert node.last_output == "HELLO"

    @pytest.mark.asyncio
    async def test_concurrent_writes_do_not_clobber(self):
        """Concurrent writes to different nodes all land."""
        ids = [f"n{i}" for i in range(20)]
        graph = build_graph(ids, [])
        reconciler = StatusReconciler(graph)

        async def invoke(node_id):
            await reconciler.mark_running(node_id, node_id, reconciler.epoch)
            await asyncio.sleep(0)
            await reconciler.mark_completed(node_id, node_id.upper(), reconciler.epoch)

        await asyncio.gather(*(invoke(i) for i in ids))

        for node_id in ids:
            assert graph.nodes[node_id].status == NodeStatus.COMPLETED
            assert graph.nodes[node_id].last_output == node_id.upper()

    @pytest.mark.asyncio
    async def test_error_clears_on_next_write(self):
        """error_message is only present while the status is ERROR."""
        graph = build_graph(["a"], [])
        reconciler = StatusReconciler(graph)

        await reconciler.mark_error("a", "bad", reconciler.epoch)
        assert graph.nodes["a"].error_message == "bad"

        await reconciler.mark_running("a", "retry", reconciler.epoch)
        assert graph.nodes["a"].status == NodeStatus.RUNNING
        assert graph.nodes["a"].error_message is None

    @pytest.mark.asyncio
    async def test_stale_epoch_dropped(self):
        """Writes issued before a reset are discarded."""
        graph = build_graph(["a"], [])
        reconciler = StatusReconciler(graph)
        stale = reconciler.epoch

        reconciler.advance_epoch()
        result = await reconciler.mark_completed("a", "late", stale)

        assert result is None
        assert graph.nodes["a"].status == NodeStatus.IDLE
        assert graph.nodes["a"].last_output is None

    @pytest.mark.asyncio
    async def test_write_to_deleted_node_dropped(self):
        """Writes to a node that no longer exists are ignored."""
        graph = build_graph(["a"], [])
        reconciler = StatusReconciler(graph)
        graph.delete_node("a")

        assert await reconciler.mark_running("a", "x", reconciler.epoch) is None


# ============================================================
# Executor Tests
# ============================================================

class TestFlowExecutor:
    """Tests for the FlowExecutor."""

    @pytest.mark.asyncio
    async def test_uppercase_chain(self):
        """A -> B with an uppercase backend passes 'HI' from A to B."""
        graph = build_graph(["a", "b"], [("a", "b")])
        graph.update_node_data("a", persona_instruction="uppercase")

        outcome = await FlowExecutor(graph, UppercaseClient()).run("hi")

        a, b = graph.nodes["a"], graph.nodes["b"]
        assert outcome.status == RunStatus.COMPLETED
        assert a.status == NodeStatus.COMPLETED
        assert a.last_output == "HI"
        assert b.last_input == "HI"
        assert b.status == NodeStatus.COMPLETED
        assert outcome.levels == 2

    @pytest.mark.asyncio
    async def test_single_node_failure(self):
        """A failing backend marks the node as error and the run completes."""
        graph = build_graph(["a"], [])

        outcome = await FlowExecutor(graph, FailingClient("boom")).run("x")

        a = graph.nodes["a"]
        assert outcome.status == RunStatus.COMPLETED
        assert a.status == NodeStatus.ERROR
        assert a.error_message == "boom"
        assert outcome.invocations[0].result == "error"
        assert outcome.invocations[0].error == "boom"

    @pytest.mark.asyncio
    async def test_roots_receive_global_input(self):
        """With no connections every node is a root invoked once with the global input."""
        graph = build_graph(["a", "b", "c"], [])
        client = RecordingClient()

        outcome = await FlowExecutor(graph, client).run("topic")

        assert sorted(client.calls) == [("topic", "a"), ("topic", "b"), ("topic", "c")]
        assert outcome.levels == 1
        assert all(i.level == 0 for i in outcome.invocations)

    @pytest.mark.asyncio
    async def test_roots_invoked_first(self):
        """Level 0 contains exactly the roots."""
        graph = build_graph(["a", "b", "c"], [("a", "c"), ("b", "c")])
        client = RecordingClient()

        outcome = await FlowExecutor(graph, client).run("g")

        level0 = {i.node_id for i in outcome.invocations if i.level == 0}
        assert level0 == {"a", "b"}
        assert all(i.input == "g" for i in outcome.invocations if i.level == 0)

    @pytest.mark.asyncio
    async def test_fan_in_invokes_twice(self):
        """A -> C and B -> C: C runs once per arrival without raising."""
        graph = build_graph(["a", "b", "c"], [("a", "c"), ("b", "c")])
        client = RecordingClient()

        outcome = await FlowExecutor(graph, client).run("x")

        c_calls = [call for call in client.calls if call[1] == "c"]
        assert len(c_calls) == 2
        assert graph.nodes["c"].last_input == "x"
        assert graph.nodes["c"].status == NodeStatus.COMPLETED
        assert outcome.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_fan_in_last_settled_wins(self):
        """C's final input comes from whichever upstream node settled last."""
        graph = build_graph(["a", "b", "c"], [("a", "c"), ("b", "c")])
        client = RecordingClient(
            respond=lambda text, persona: f"{text}-{persona}",
            delays={"a": 0.01, "b": 0.05},
        )

        await FlowExecutor(graph, client).run("x")

        assert graph.nodes["c"].last_input == "x-b"
        assert graph.nodes["c"].last_output == "x-b-c"

    @pytest.mark.asyncio
    async def test_merge_join_policy(self):
        """MERGE invokes a fan-in node once with the arrivals joined."""
        graph = build_graph(["a", "b", "c"], [("a", "c"), ("b", "c")])
        client = RecordingClient(
            respond=lambda text, persona: f"{text}-{persona}",
            delays={"a": 0.01, "b": 0.03},
        )

        await FlowExecutor(graph, client, join_policy=JoinPolicy.MERGE).run("x")

        c_calls = [call for call in client.calls if call[1] == "c"]
        assert c_calls == [("x-a\n\nx-b", "c")]

    def test_merge_frontier_keeps_first_arrival_order(self):
        """Merged entries keep the order of each node's first arrival."""
        frontier = [
            FrontierEntry("c", "1"),
            FrontierEntry("d", "2"),
            FrontierEntry("c", "3"),
        ]

        merged = merge_frontier(frontier)

        assert merged == [FrontierEntry("c", "1\n\n3"), FrontierEntry("d", "2")]

    @pytest.mark.asyncio
    async def test_cycle_without_root(self):
        """A -> B -> A fails with no start node and never calls the backend."""
        graph = build_graph(["a", "b"], [("a", "b"), ("b", "a")])
        client = RecordingClient()

        outcome = await FlowExecutor(graph, client).run("x")

        assert outcome.status == RunStatus.NO_START_NODE
        assert outcome.error == NO_START_NODE_MESSAGE
        assert client.calls == []
        assert outcome.invocations == []

    @pytest.mark.asyncio
    async def test_empty_graph(self):
        """An empty graph completes with zero levels."""
        outcome = await FlowExecutor(FlowGraph(), RecordingClient()).run("x")

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.levels == 0

    @pytest.mark.asyncio
    async def test_failure_stops_only_its_branch(self):
        """A failed node's successors stay idle; siblings continue."""
        graph = build_graph(
            ["bad", "good", "after_bad", "after_good"],
            [("bad", "after_bad"), ("good", "after_good")],
        )

        class PartialClient(GenerationClient):
            async def generate(self, input_text, persona_instruction):
                if persona_instruction == "bad":
                    raise GenerationFailure("nope")
                return input_text

        outcome = await FlowExecutor(graph, PartialClient()).run("x")

        assert outcome.status == RunStatus.COMPLETED
        assert graph.nodes["bad"].status == NodeStatus.ERROR
        assert graph.nodes["after_bad"].status == NodeStatus.IDLE
        assert graph.nodes["good"].status == NodeStatus.COMPLETED
        assert graph.nodes["after_good"].status == NodeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unreachable_nodes_stay_idle(self):
        """Nodes not reachable from a root are never invoked."""
        graph = build_graph(["root", "p", "q"], [("p", "q"), ("q", "p")])
        client = RecordingClient()

        outcome = await FlowExecutor(graph, client).run("x")

        assert outcome.status == RunStatus.COMPLETED
        assert graph.nodes["root"].status == NodeStatus.COMPLETED
        assert graph.nodes["p"].status == NodeStatus.IDLE
        assert graph.nodes["q"].status == NodeStatus.IDLE

    @pytest.mark.asyncio
    async def test_max_levels_guard(self):
        """A cycle reachable from a root stops at the level limit."""
        graph = build_graph(["a", "b", "c"], [("a", "b"), ("b", "c"), ("c", "b")])
        client = RecordingClient()

        outcome = await FlowExecutor(graph, client, max_levels=5).run("x")

        assert outcome.status == RunStatus.MAX_LEVELS_EXCEEDED
        assert outcome.levels == 5
        assert len(client.calls) == 5
        assert "Max levels" in outcome.error

    @pytest.mark.asyncio
    async def test_unexpected_exception_marks_error(self):
        """Non-GenerationFailure errors are absorbed like failures."""
        graph = build_graph(["a"], [])

        class BrokenClient(GenerationClient):
            async def generate(self, input_text, persona_instruction):
                raise RuntimeError("socket closed")

        outcome = await FlowExecutor(graph, BrokenClient()).run("x")

        assert outcome.status == RunStatus.COMPLETED
        assert graph.nodes["a"].status == NodeStatus.ERROR
        assert graph.nodes["a"].error_message == "socket closed"

    @pytest.mark.asyncio
    async def test_persona_read_at_invocation_time(self):
        """Edits made during level k are seen by level k+1."""
        graph = build_graph(["a", "b"], [("a", "b")])
        client = RecordingClient()

        class EditingClient(GenerationClient):
            async def generate(self, input_text, persona_instruction):
                if persona_instruction == "a":
                    graph.update_node_data("b", persona_instruction="edited")
                return await client.generate(input_text, persona_instruction)

        await FlowExecutor(graph, EditingClient()).run("x")

        assert client.calls[-1] == ("x", "edited")

    @pytest.mark.asyncio
    async def test_node_deleted_mid_run_is_skipped(self):
        """A successor deleted before its level is not invoked."""
        graph = build_graph(["a", "b"], [("a", "b")])

        class DeletingClient(GenerationClient):
            async def generate(self, input_text, persona_instruction):
                if persona_instruction == "a":
                    # Keep the connection so b is still queued, then drop b
                    graph.nodes.pop("b")
                return input_text

        outcome = await FlowExecutor(graph, DeletingClient()).run("x")

        assert outcome.status == RunStatus.COMPLETED
        assert [i.node_id for i in outcome.invocations] == ["a"]

    @pytest.mark.asyncio
    async def test_previous_status_reset(self):
        """A new run starts from idle and clears old errors."""
        graph = build_graph(["a", "b"], [("a", "b")])
        await FlowExecutor(graph, FailingClient()).run("x")
        assert graph.nodes["a"].status == NodeStatus.ERROR

        await FlowExecutor(graph, UppercaseClient()).run("x")

        assert graph.nodes["a"].status == NodeStatus.COMPLETED
        assert graph.nodes["a"].error_message is None
        assert graph.nodes["b"].status == NodeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_events(self):
        """Events bracket the run and report each node."""
        graph = build_graph(["a", "b"], [("a", "b")])
        events = []

        outcome = await FlowExecutor(graph, UppercaseClient(), on_event=events.append).run("x")

        types = [e["type"] for e in events]
        assert types[0] == "run_started"
        assert types[-1] == "run_finished"
        assert types.count("node_running") == 2
        assert types.count("node_completed") == 2
        assert types.count("level_completed") == 2
        assert all(e["run_id"] == outcome.run_id for e in events)

    @pytest.mark.asyncio
    async def test_async_event_callback(self):
        """Async callbacks are awaited."""
        graph = build_graph(["a"], [])
        events = []

        async def on_event(event):
            events.append(event["type"])

        await FlowExecutor(graph, UppercaseClient(), on_event=on_event).run("x")

        assert "node_completed" in events

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_run(self):
        """Callback errors are logged and ignored."""
        graph = build_graph(["a"], [])

        def on_event(event):
            raise ValueError("subscriber gone")

        outcome = await FlowExecutor(graph, UppercaseClient(), on_event=on_event).run("x")

        assert outcome.status == RunStatus.COMPLETED
        assert graph.nodes["a"].status == NodeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_outcome_to_dict(self):
        """Outcome serialization."""
        graph = build_graph(["a"], [])
        outcome = await FlowExecutor(graph, UppercaseClient(), run_id="run-1").run("x")

        data = outcome.to_dict()

        assert data["run_id"] == "run-1"
        assert data["status"] == "completed"
        assert data["invocations"][0]["output"] == "X"
        assert data["total_duration_ms"] >= 0


# ============================================================
# Session Tests
# ============================================================

class TestFlowSession:
    """Tests for FlowSession run and reset."""

    def test_keeps_given_empty_graph(self):
        """An empty graph passed in is the one the session owns."""
        graph = FlowGraph(graph_id="mine", name="Mine")

        session = FlowSession(graph=graph)

        assert session.graph is graph
        assert session.flow_id == "mine"
        assert session.to_dict()["name"] == "Mine"

    @pytest.mark.asyncio
    async def test_run_uses_global_input(self):
        """The session's global input feeds the roots."""
        session = FlowSession(graph=build_graph(["a"], []), global_input="hello")

        outcome = await session.run(UppercaseClient())

        assert outcome.status == RunStatus.COMPLETED
        assert session.graph.nodes["a"].last_output == "HELLO"
        assert session.is_running is False
        assert session.last_outcome is outcome

    @pytest.mark.asyncio
    async def test_failure_leaves_session_idle(self):
        """After a failing run the session is not running."""
        session = FlowSession(graph=build_graph(["a"], []))

        outcome = await session.run(FailingClient("boom"))

        assert outcome.status == RunStatus.COMPLETED
        assert session.graph.nodes["a"].error_message == "boom"
        assert session.is_running is False

    @pytest.mark.asyncio
    async def test_no_start_node_leaves_session_idle(self):
        """A rootless graph aborts and clears the running flag."""
        session = FlowSession(graph=build_graph(["a", "b"], [("a", "b"), ("b", "a")]))

        outcome = await session.run(RecordingClient())

        assert outcome.status == RunStatus.NO_START_NODE
        assert session.is_running is False

    @pytest.mark.asyncio
    async def test_reentrant_run_rejected(self):
        """A second run while one is in progress is rejected."""
        session = FlowSession(graph=build_graph(["a"], []), global_input="x")
        client = BlockingClient()

        first = asyncio.create_task(session.run(client))
        await client.started.wait()
        assert session.is_running is True

        second = await session.run(client)
        assert second.status == RunStatus.REJECTED

        client.release.set()
        outcome = await first

        assert outcome.status == RunStatus.COMPLETED
        assert session.graph.nodes["a"].last_output == "done:x"

    @pytest.mark.asyncio
    async def test_reset_after_run(self):
        """reset() after a completed run returns every node to idle."""
        session = FlowSession(graph=build_graph(["a", "b", "c"], [("a", "b")]))
        await session.run(UppercaseClient())

        session.reset()

        for node in session.graph.nodes.values():
            assert node.status == NodeStatus.IDLE
            assert node.last_input is None
            assert node.last_output is None
            assert node.error_message is None
        assert session.is_running is False

    @pytest.mark.asyncio
    async def test_reset_is_idempotent(self):
        """Resetting twice is harmless."""
        session = FlowSession(graph=build_graph(["a"], []))
        session.reset()
        session.reset()

        assert session.graph.nodes["a"].status == NodeStatus.IDLE

    @pytest.mark.asyncio
    async def test_reset_during_run_discards_late_results(self):
        """In-flight results after a reset do not overwrite the cleared state."""
        session = FlowSession(graph=build_graph(["a", "b"], [("a", "b")]), global_input="x")
        client = BlockingClient()

        task = asyncio.create_task(session.run(client))
        await client.started.wait()

        session.reset()
        assert session.is_running is False
        assert session.graph.nodes["a"].status == NodeStatus.IDLE

        client.release.set()
        outcome = await task

        assert outcome.status == RunStatus.CANCELLED
        assert session.graph.nodes["a"].status == NodeStatus.IDLE
        assert session.graph.nodes["a"].last_output is None
        assert session.graph.nodes["b"].status == NodeStatus.IDLE

    @pytest.mark.asyncio
    async def test_run_after_reset_during_run(self):
        """A fresh run can start once a reset released the session."""
        session = FlowSession(graph=build_graph(["a"], []), global_input="x")
        blocking = BlockingClient()

        stale = asyncio.create_task(session.run(blocking))
        await blocking.started.wait()
        session.reset()

        outcome = await session.run(UppercaseClient())
        assert outcome.status == RunStatus.COMPLETED

        blocking.release.set()
        await stale

        assert session.graph.nodes["a"].last_output == "X"
        assert session.is_running is False

    def test_collaborator_operations(self):
        """Graph mutations go through the session."""
        session = FlowSession()
        a = session.add_node(label="A")
        b = session.add_node(label="B")

        assert session.add_connection(a, b) is not None
        assert session.add_connection(a, a) is None
        session.update_node_data(b, persona_instruction="critic")
        session.set_global_input("topic")

        state = session.to_dict()
        assert state["global_input"] == "topic"
        assert state["is_running"] is False
        assert len(state["connections"]) == 1

        assert session.delete_connections_touching(a) == 1
        assert session.delete_node(b) is True
        assert len(session.graph) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
