"""
Storage package - In-memory storage for flows and runs.
"""

from flowagent.storage.memory import (
    FlowStorage,
    RunStorage,
    StoredRun,
    flow_storage,
    run_storage,
)

__all__ = [
    "FlowStorage",
    "RunStorage",
    "StoredRun",
    "flow_storage",
    "run_storage",
]
