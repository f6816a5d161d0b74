"""
Planwise error taxonomy.
The HTTP layer maps these to status codes; the conversation loop recovers
from the tool and follow-up variants locally.
"""


class PlanwiseError(Exception):
    """Base class for all Planwise errors."""


class ValidationError(PlanwiseError, ValueError):
    """Malformed input: bad interval, bad tool arguments, unparsable times."""

    def __init__(self, message: str, details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundError(PlanwiseError):
    """Event or conversation missing, or not owned by the caller."""

    def __init__(self, kind: str, ident):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


# Status codes worth retrying by the caller
_RETRYABLE = {408, 409, 429, 500, 502, 503, 504}


class UpstreamServiceError(PlanwiseError):
    """The chat-completion service answered with an error (or not at all)."""

    def __init__(self, status: int, body: str):
        super().__init__(f"upstream_error {status}: {body[:200]}")
        self.status = status
        self.body = body

    @property
    def retryable(self) -> bool:
        return self.status in _RETRYABLE


class FollowupServiceError(UpstreamServiceError):
    """The second model call, made after a tool already ran, failed."""


class ToolExecutionError(PlanwiseError):
    """A tool raised while running."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(reason)
        self.tool_name = tool_name
        self.reason = reason
