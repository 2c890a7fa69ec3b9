"""Remote provider adapters."""

from .client import AgentSpec, OpenAIAssistantsClient, RemoteClient

__all__ = ["AgentSpec", "OpenAIAssistantsClient", "RemoteClient"]
