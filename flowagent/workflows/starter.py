"""
Starter Flow.

A single-agent flow registered at startup so a fresh server has
something to run: a haiku writer fed with the default global input.
"""

import logging

from flowagent.config import settings
from flowagent.engine.graph import FlowGraph
from flowagent.engine.node import Position
from flowagent.engine.session import FlowSession
from flowagent.storage.memory import flow_storage


logger = logging.getLogger(__name__)

STARTER_FLOW_ID = "starter-flow"

STARTER_PERSONA = (
    "You are a creative writer. Receive a topic and write a short haiku about it."
)


def create_starter_flow() -> FlowSession:
    """Build the starter flow with its single "Start Agent" node."""
    session = FlowSession(
        graph=FlowGraph(graph_id=STARTER_FLOW_ID, name="Starter Flow"),
        global_input=settings.DEFAULT_GLOBAL_INPUT,
    )
    session.add_node(
        label="Start Agent",
        persona_instruction=STARTER_PERSONA,
        position=Position(x=100, y=150),
        node_id="node-1",
    )
    return session


async def register_starter_flow() -> FlowSession:
    """Register the starter flow unless it already exists."""
    existing = await flow_storage.get(STARTER_FLOW_ID)
    if existing is not None:
        return existing

    session = await flow_storage.save(create_starter_flow())
    logger.info(f"Registered starter flow: {STARTER_FLOW_ID}")
    return session
