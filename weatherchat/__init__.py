"""weatherchat — chat backend and streaming relay for a hosted weather agent."""

__version__ = "1.0.0"
