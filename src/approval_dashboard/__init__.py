"""Review and approve maintenance work orders from the terminal."""

__all__ = [
    "api_client",
    "approval",
    "chat",
    "config",
    "dashboard",
    "models",
    "query",
    "sandbox",
    "session",
    "summaries",
    "table",
]
