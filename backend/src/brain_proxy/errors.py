"""Exception taxonomy for the proxy.

Tool failures are not exceptions: they travel back to the model as
``ToolResult`` values (see ``tools.ToolErrorKind``).
"""

from __future__ import annotations


class ProxyError(Exception):
    """Base class for proxy errors."""


class ConfigurationError(ProxyError):
    """The process cannot start with the given configuration."""


class TransportError(ProxyError):
    """The upstream model call failed (unreachable, rejected or non-2xx).

    Never retried inside the proxy; the message is surfaced verbatim.
    """


class CacheCreationError(ProxyError):
    """The upstream rejected a context cache build."""


class ToolRoundLimitExceeded(ProxyError):
    """A single user turn asked for more tool rounds than allowed."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Tool round limit exceeded ({limit} rounds)")
        self.limit = limit


class ModelNotAllowed(ProxyError):
    """The requested model is on the experimental/preview blocklist."""

    def __init__(self, model: str) -> None:
        super().__init__("Experimental models are not allowed")
        self.model = model
