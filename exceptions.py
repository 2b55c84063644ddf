"""Custom exception hierarchy for the Pathfinder QA agent."""
from __future__ import annotations

from typing import Any, Optional


class PathfinderError(Exception):
    """Base exception for all Pathfinder-related errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Browser-related exceptions
class BrowserError(PathfinderError):
    """Base exception for browser automation errors."""

    pass


class NavigationError(BrowserError):
    """Raised when page navigation fails."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        details = {}
        if url:
            details["url"] = url
        if timeout:
            details["timeout"] = timeout
        super().__init__(message, details)
        self.url = url
        self.timeout = timeout


class ElementNotFoundError(BrowserError):
    """Raised when an element cannot be found by selector, coordinates or intent."""

    def __init__(
        self,
        message: str,
        coordinates: Optional[tuple[int, int]] = None,
        selector: Optional[str] = None,
    ):
        details = {}
        if coordinates:
            details["coordinates"] = coordinates
        if selector:
            details["selector"] = selector
        super().__init__(message, details)
        self.coordinates = coordinates
        self.selector = selector


class ElementNotInteractableError(BrowserError):
    """Raised when an element exists but cannot be interacted with."""

    def __init__(
        self,
        message: str,
        selector: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        details = {}
        if selector:
            details["selector"] = selector
        if reason:
            details["reason"] = reason
        super().__init__(message, details)
        self.selector = selector
        self.reason = reason


class BrowserNotStartedError(BrowserError):
    """Raised when attempting to use browser before starting."""

    def __init__(self):
        super().__init__("Browser session has not been started. Call start() first.")


class ScreenshotError(BrowserError):
    """Raised when screenshot capture fails."""

    pass


class ActionExecutionError(BrowserError):
    """Raised when an action cannot be carried out (missing payload, unknown kind)."""

    def __init__(self, message: str, action_kind: Optional[str] = None):
        details = {"action": action_kind} if action_kind else {}
        super().__init__(message, details)
        self.action_kind = action_kind


# Decision engine exceptions
class DecisionError(PathfinderError):
    """Base exception for decision-engine (vision model) errors."""

    pass


class ActionParseError(DecisionError):
    """Raised when an action cannot be parsed from the model response."""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        details = {"raw_response": raw_response[:500] if raw_response else None}
        super().__init__(message, details)
        self.raw_response = raw_response


# Flow definition exceptions
class FlowDefinitionError(PathfinderError):
    """Base exception for flow definition/loading errors."""

    pass


class FlowLoadError(FlowDefinitionError):
    """Raised when a flow file cannot be loaded or parsed."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        details = {"file_path": file_path} if file_path else {}
        super().__init__(message, details)
        self.file_path = file_path


class FlowValidationError(FlowDefinitionError):
    """Raised when a flow definition is invalid."""

    def __init__(self, message: str, flow_name: Optional[str] = None, field: Optional[str] = None):
        details = {}
        if flow_name:
            details["flow"] = flow_name
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.flow_name = flow_name
        self.field = field


# Step execution exceptions
class StepExecutionError(PathfinderError):
    """Base exception for step-fatal conditions.

    ``category`` is a stable string so operators can tell "agent gave up"
    apart from "agent looped" in reports.
    """

    category = "STEP_ERROR"

    def __init__(
        self,
        message: str,
        step_name: Optional[str] = None,
        category: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if category:
            self.category = category
        details["category"] = self.category
        if step_name:
            details["step"] = step_name
        super().__init__(message, details)
        self.step_name = step_name


class ProgressStalledError(StepExecutionError):
    """Raised when the progress observer reports a loop or stagnation."""

    category = "STUCK"


class MaxActionsExceededError(StepExecutionError):
    """Raised when a step exceeds its action budget."""

    category = "BUDGET_EXHAUSTED"

    def __init__(self, max_actions: int, step_name: Optional[str] = None):
        super().__init__(
            f"Step not completed within {max_actions} actions",
            step_name=step_name,
            details={"max_actions": max_actions},
        )
        self.max_actions = max_actions


class AgentGaveUpError(StepExecutionError):
    """Raised when the decision engine explicitly returns ``fail``."""

    category = "AGENT_FAILED"


class ChaosFaultDetected(StepExecutionError):
    """Raised in chaos mode when the target application visibly broke.

    This is the desired outcome of a chaos run and is reported separately
    from ordinary failures.
    """

    category = "FAULT_TRIGGERED"


class RunCancelledError(StepExecutionError):
    """Raised when a run was asked to stop between steps."""

    category = "CANCELLED"


# Configuration exceptions
class ConfigurationError(PathfinderError):
    """Raised when configuration is invalid."""

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when a required config file is not found."""

    def __init__(self, file_path: str):
        super().__init__(f"Configuration file not found: {file_path}", {"file_path": file_path})
        self.file_path = file_path
