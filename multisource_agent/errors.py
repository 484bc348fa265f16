"""Exception taxonomy shared by the data sources and the session.

Only ``InitializationFailure`` is allowed to escape to the caller, and only
when no data source could be brought up. Everything else is caught at the
data source boundary and turned into a display string.
"""
from __future__ import annotations


class AgentError(Exception):
    pass


class InitializationFailure(AgentError):
    """A data source's backing resource is missing or unreadable."""


class ValidationRejection(AgentError):
    """A generated query or command failed its shape/safety check."""


class QueryRejected(ValidationRejection):
    def __init__(self, query: str, reason: str):
        super().__init__(reason)
        self.query = query
        self.reason = reason


class CommandRejected(ValidationRejection):
    def __init__(self, command: str, reason: str):
        super().__init__(reason)
        self.command = command
        self.reason = reason


class ExecutionFault(AgentError):
    """The backing store, shell, or model failed while running."""
