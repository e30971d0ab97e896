"""convo: client-side conversation sessions for chat-completions APIs."""

__version__ = "0.1.0"
