"""Chat relay exposing a streaming completion endpoint atop an OpenAI-compatible API.

Streams upstream tokens to the caller as ``data: {json}`` frames while
persisting the exchange to the local conversation store.
"""

__all__ = []
