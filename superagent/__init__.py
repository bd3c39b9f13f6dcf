"""Conversational agent service with tool calling, retrieval and durable research runs."""

__version__ = "0.1.0"
