"""
Workflows package - Flows registered at startup.
"""

from flowagent.workflows.starter import (
    STARTER_FLOW_ID,
    create_starter_flow,
    register_starter_flow,
)

__all__ = [
    "STARTER_FLOW_ID",
    "create_starter_flow",
    "register_starter_flow",
]
