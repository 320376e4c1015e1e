"""Exception hierarchy for the MindsDB RAG runtime."""


class MindsDBRAGError(Exception):
    """Base error for the runtime package."""


class SessionError(MindsDBRAGError):
    """A session table operation failed."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Failed to {operation}: {message}")


class SessionConflictError(SessionError):
    """A session with the same key already exists."""


class SessionNotFoundError(SessionError):
    """The session to update does not exist."""


class AgentConfigurationError(MindsDBRAGError):
    """The Bedrock agent is not configured."""


class AgentInvocationError(MindsDBRAGError):
    """Invoking the Bedrock agent failed."""
