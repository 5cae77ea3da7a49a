"""
Agent Pool Exceptions
"""

from wa_agent.core.exceptions.base import WAAgentError


class AgentPoolError(WAAgentError):
    """Base exception for agent pool errors."""
    pass


class AgentFactoryNotRegisteredError(AgentPoolError):
    """Raised when an agent is requested for a session with no registered factory."""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"No agent factory registered for session: {session_id}",
            session_id=session_id,
            details={"session_id": session_id},
        )
