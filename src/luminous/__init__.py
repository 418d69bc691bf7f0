"""Luminous: a tool-calling LLM relay for one persistent conversation."""

__version__ = "0.1.0"
