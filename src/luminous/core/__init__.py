"""Core module for Luminous."""

from luminous.core.orchestrator import AdvanceResult, Orchestrator
from luminous.core.session import SessionContext, SessionLog
from luminous.core.state import InternalState
from luminous.core.turns import CapabilityInvocation, CapabilityResult, History, Turn

__all__ = [
    "AdvanceResult",
    "CapabilityInvocation",
    "CapabilityResult",
    "History",
    "InternalState",
    "Orchestrator",
    "SessionContext",
    "SessionLog",
    "Turn",
]
