"""Application-level exception types for Luminous."""

from __future__ import annotations

from typing import ClassVar


class LuminousError(Exception):
    """Base exception for Luminous."""

    kind: ClassVar[str] = "LuminousError"

    def __init__(self, *args: object) -> None:
        super().__init__(*args)
        # Session log lines written before the failure, filled in by the orchestrator.
        self.logs: list[str] = []


class ConfigurationError(LuminousError):
    """Base exception for configuration and startup validation errors."""

    kind = "ConfigurationError"


class InvalidModelFormatError(ConfigurationError):
    """Raised when model format is not provider:model."""

    kind = "InvalidModelFormat"


class ApiKeyNotConfiguredError(ConfigurationError):
    """Raised when an API key is required but missing."""

    kind = "ApiKeyNotConfigured"


class ProviderError(LuminousError):
    """Failure at the LLM boundary. Aborts the whole turn."""

    kind = "ProviderError"


class ProviderTimeout(ProviderError):
    """The model did not answer within the per-call timeout."""

    kind = "ProviderTimeout"


class ProviderEmptyResponse(ProviderError):
    """The model returned neither text nor capability invocations."""

    kind = "ProviderEmptyResponse"


class ProviderTransportError(ProviderError):
    """The request to the model failed before a response was received."""

    kind = "ProviderTransportError"


class ToolLoopExceeded(LuminousError):
    """The orchestration loop hit its round or wall-clock bound."""

    kind = "ToolLoopExceeded"


class CapabilityError(LuminousError):
    """Capability failure. Converted to a result payload, never fatal to the loop."""

    kind = "CapabilityError"


class CapabilityNotFound(CapabilityError):
    kind = "CapabilityNotFound"


class CapabilityUnconfigured(CapabilityError):
    """A credential required by the capability is not configured."""

    kind = "CapabilityUnconfigured"


class CapabilityArgumentError(CapabilityError):
    """Arguments failed schema validation before dispatch."""

    kind = "CapabilityArgumentError"


class CapabilityExecutionError(CapabilityError):
    kind = "CapabilityExecutionError"


class SandboxExecutionError(CapabilityError):
    kind = "SandboxExecutionError"


class StateDirectiveParseError(LuminousError):
    """The JSON after UPDATE_STATE: could not be parsed. Logged, never raised past the post-processor."""

    kind = "StateDirectiveParseError"


class HistoryOrderError(LuminousError):
    """A turn was appended out of the required order."""

    kind = "HistoryOrderError"


class SessionBusyError(LuminousError):
    """Another turn is already in flight for the session."""

    kind = "SessionBusy"
