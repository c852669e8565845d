"""Error taxonomy shared by agents, the dispatcher and the context store."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aicollab.tasks.capabilities import Capability


class AICollabError(Exception):
    """Base exception for aicollab."""

    recovery_suggestion: str = "Check the logs for more details."
    is_recoverable: bool = False


# -- Capability ----------------------------------------------------------------


class CapabilityError(AICollabError):
    """A required capability is not available."""

    recovery_suggestion = "Register an agent that provides the missing capabilities."


class NoSuitableAgent(CapabilityError):
    """No registered agent provides every required capability."""

    def __init__(self, missing: Iterable[Capability]) -> None:
        self.missing = frozenset(missing)
        names = ", ".join(sorted(str(c) for c in self.missing)) or "none"
        super().__init__(f"No suitable agent found (missing capabilities: {names})")


class CapabilityNotSupported(CapabilityError):
    """The invoked agent does not provide a required capability."""

    def __init__(self, capability: Capability) -> None:
        self.capability = capability
        super().__init__(f"Capability not supported: {capability}")


# -- Execution -----------------------------------------------------------------


class ExecutionError(AICollabError):
    """Task execution failed at runtime."""

    is_recoverable = True
    recovery_suggestion = "Resubmit the task."


class TaskTimeout(ExecutionError):
    def __init__(self, task_id: str, timeout: float) -> None:
        self.task_id = task_id
        self.timeout = timeout
        super().__init__(f"Task {task_id} timed out after {timeout:g}s")


class TaskCancelled(ExecutionError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} was cancelled")


class ExternalServiceError(ExecutionError):
    """A downstream service (text backend, GitHub CLI) failed."""

    recovery_suggestion = "Verify the external service is running and reachable."

    def __init__(self, service: str, reason: str) -> None:
        self.service = service
        self.reason = reason
        super().__init__(f"{service}: {reason}")


# -- Context data --------------------------------------------------------------


class ContextDataError(AICollabError):
    """Caller-correctable key-value errors in the context store."""

    is_recoverable = True


class ValueAlreadyExists(ContextDataError):
    recovery_suggestion = "Use update() or store_or_update() for existing keys."

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Value already exists for key '{key}'")


class ValueNotFound(ContextDataError):
    recovery_suggestion = "Check contains() before reading or updating a key."

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"No value found for key '{key}'")


class TypeMismatch(ContextDataError):
    recovery_suggestion = "Read the value with the type it was stored as."

    def __init__(self, key: str, expected: str, actual: str) -> None:
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(f"Type mismatch for key '{key}': expected {expected}, got {actual}")


# -- Configuration -------------------------------------------------------------


class ConfigurationError(AICollabError):
    """Invalid identifiers, configuration payloads or credentials."""

    recovery_suggestion = "Fix the configuration and retry the call."


class InvalidAgentId(ConfigurationError):
    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(f"Invalid agent id: {value!r}")


class InvalidConfiguration(ConfigurationError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid configuration: {reason}")


class InvalidCredentials(ConfigurationError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid credentials: {reason}")


# -- Task state ----------------------------------------------------------------


class InvalidStateTransition(AICollabError):
    """A task was moved backwards or out of a terminal state."""

    recovery_suggestion = "Create a new task instead of reusing a finished one."

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid task state transition: {current} -> {target}")


# -- Agents --------------------------------------------------------------------


class AgentTerminated(AICollabError):
    recovery_suggestion = "Register a new agent instance."

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Agent {name} has been shut down")


class NoModelSelected(AICollabError):
    recovery_suggestion = "Select a model with select_model() first."
    is_recoverable = True

    def __init__(self) -> None:
        super().__init__("No model selected")


class ModelNotFound(ConfigurationError):
    recovery_suggestion = "Pull the model or pick one from list_models()."

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Model not found: {name}")


class NoActiveRepository(AICollabError):
    recovery_suggestion = "Call set_active_repository() first."
    is_recoverable = True

    def __init__(self) -> None:
        super().__init__("No active repository")


# -- Text-generation backend ---------------------------------------------------


class ServiceUnavailable(ExternalServiceError):
    def __init__(self, reason: str, service: str = "ollama") -> None:
        super().__init__(service, f"service unavailable ({reason})")


class RequestFailed(ExternalServiceError):
    def __init__(self, reason: str, status_code: int | None = None, service: str = "ollama") -> None:
        self.status_code = status_code
        super().__init__(service, f"request failed ({reason})")


class ResponseParseError(ExternalServiceError):
    def __init__(self, reason: str, service: str = "ollama") -> None:
        super().__init__(service, f"invalid response ({reason})")


# -- GitHub CLI ----------------------------------------------------------------


class GitHubCommandError(ExternalServiceError):
    """A ``gh`` invocation exited non-zero."""

    def __init__(self, command: str, exit_code: int, stderr: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__("github", f"command '{command}' failed (exit code: {exit_code})")


class GitHubParseError(ExternalServiceError):
    def __init__(self, reason: str) -> None:
        super().__init__("github", f"failed to parse CLI output ({reason})")


class GitHubNotAuthenticated(ExternalServiceError):
    recovery_suggestion = "Run 'gh auth login' first."
    is_recoverable = False

    def __init__(self) -> None:
        super().__init__("github", "not authenticated")


class RepositoryNotFound(ExternalServiceError):
    is_recoverable = False

    def __init__(self, full_name: str) -> None:
        self.full_name = full_name
        super().__init__("github", f"repository not found: {full_name}")
