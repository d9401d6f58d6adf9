"""
FlowAgent - Chain persona-driven LLM agents into a directed flow.

Nodes carry a persona instruction, connections carry text downstream,
and the engine runs the graph level by level.
"""

__version__ = "1.0.0"
