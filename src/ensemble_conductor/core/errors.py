"""Typed error hierarchy for the conductor engine.

Every failure the engine reports to a caller is one of these classes, carried
inside an ``Err`` result rather than raised. Callers branch on the class or on
``code`` instead of matching message strings.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes, grouped by subsystem."""

    AGENT_NOT_FOUND = "AGENT_NOT_FOUND"
    AGENT_INVALID_CONFIG = "AGENT_INVALID_CONFIG"
    AGENT_EXECUTION_FAILED = "AGENT_EXECUTION_FAILED"

    ENSEMBLE_NOT_FOUND = "ENSEMBLE_NOT_FOUND"
    ENSEMBLE_PARSE_FAILED = "ENSEMBLE_PARSE_FAILED"
    ENSEMBLE_EXECUTION_FAILED = "ENSEMBLE_EXECUTION_FAILED"

    STORAGE_NOT_FOUND = "STORAGE_NOT_FOUND"
    STORAGE_OPERATION_FAILED = "STORAGE_OPERATION_FAILED"

    RESUMPTION_CONFLICT = "RESUMPTION_CONFLICT"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ConductorError(Exception):
    """Base class for all engine errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    is_operational: bool = True

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logs and API responses."""
        result: dict[str, Any] = {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "is_operational": self.is_operational,
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_user_message(self) -> str:
        """Return a message suitable for showing to an end user."""
        return self.message


class AgentNotFoundError(ConductorError):
    """An agent reference could not be resolved."""

    code = ErrorCode.AGENT_NOT_FOUND

    def __init__(self, agent_name: str) -> None:
        super().__init__(f"Agent '{agent_name}' not found in registry")
        self.agent_name = agent_name

    def to_user_message(self) -> str:
        return (
            f"The agent '{self.agent_name}' does not exist. "
            "Check your ensemble configuration."
        )


class AgentConfigurationError(ConductorError):
    """An agent exists but could not be constructed from its configuration."""

    code = ErrorCode.AGENT_INVALID_CONFIG

    def __init__(self, agent_name: str, reason: str) -> None:
        super().__init__(f"Invalid configuration for agent '{agent_name}': {reason}")
        self.agent_name = agent_name
        self.reason = reason


class AgentExecutionError(ConductorError):
    """An agent failed or timed out while running a step."""

    code = ErrorCode.AGENT_EXECUTION_FAILED

    def __init__(
        self, agent_name: str, reason: str, cause: BaseException | None = None
    ) -> None:
        super().__init__(f"Agent '{agent_name}' execution failed: {reason}")
        self.agent_name = agent_name
        self.reason = reason
        self.cause = cause

    def to_user_message(self) -> str:
        return f"Execution failed for agent '{self.agent_name}': {self.reason}"


class EnsembleExecutionError(ConductorError):
    """A step failure, wrapped with the ensemble and step it happened in."""

    code = ErrorCode.ENSEMBLE_EXECUTION_FAILED

    def __init__(self, ensemble_name: str, step: str, cause: BaseException) -> None:
        super().__init__(
            f"Ensemble '{ensemble_name}' failed at step '{step}': {cause}",
            {"ensemble": ensemble_name, "step": step},
        )
        self.ensemble_name = ensemble_name
        self.step = step
        self.cause = cause
        self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if isinstance(self.cause, ConductorError):
            result["cause"] = self.cause.to_dict()
        else:
            result["cause"] = {
                "name": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return result


class EnsembleNotFoundError(ConductorError):
    """No ensemble with the requested name exists."""

    code = ErrorCode.ENSEMBLE_NOT_FOUND

    def __init__(self, ensemble_name: str) -> None:
        super().__init__(f"Ensemble '{ensemble_name}' not found")
        self.ensemble_name = ensemble_name


class EnsembleParseError(ConductorError):
    """An ensemble document failed schema validation.

    ``errors`` holds one ``"field.path: message"`` string per problem.
    """

    code = ErrorCode.ENSEMBLE_PARSE_FAILED

    def __init__(self, ensemble_name: str, errors: list[str]) -> None:
        super().__init__(
            f"Ensemble '{ensemble_name}' is invalid: {'; '.join(errors)}",
            {"errors": errors},
        )
        self.ensemble_name = ensemble_name
        self.errors = errors

    def to_user_message(self) -> str:
        lines = "\n".join(f"  - {e}" for e in self.errors)
        return f"Ensemble '{self.ensemble_name}' has validation errors:\n{lines}"


class ConfigurationError(ConductorError):
    """Engine or ensemble configuration is malformed."""

    code = ErrorCode.CONFIGURATION_ERROR


class StorageNotFoundError(ConductorError):
    """A key does not exist (or has expired) in a repository."""

    code = ErrorCode.STORAGE_NOT_FOUND

    def __init__(self, key: str, storage: str) -> None:
        super().__init__(f"Key '{key}' not found in {storage}")
        self.key = key
        self.storage = storage


class StorageError(ConductorError):
    """A repository operation failed."""

    code = ErrorCode.STORAGE_OPERATION_FAILED


class ResumptionError(ConductorError):
    """A resumption token is already being resumed by another caller."""

    code = ErrorCode.RESUMPTION_CONFLICT


class StateTransitionError(ConductorError):
    """An execution status command is not allowed in its current status."""

    code = ErrorCode.INVALID_STATE_TRANSITION


class InternalError(ConductorError):
    """Unexpected engine failure."""

    code = ErrorCode.INTERNAL_ERROR
    is_operational = False
