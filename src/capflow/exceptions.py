# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Exception hierarchy for capflow.

This module defines all custom exceptions used throughout the application.
All exceptions inherit from CapflowError and support optional suggestions
to help users resolve issues.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from capflow.engine.record import ExecutionRecord


class CapflowError(Exception):
    """Base exception for all capflow errors.

    Supports optional file path, line number, and suggestion to help
    users understand what went wrong and how to fix it.

    Attributes:
        suggestion: Optional actionable advice for resolving the error.
        file_path: Optional path to the file where the error occurred.
        line_number: Optional line number where the error occurred.
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
        line_number: int | None = None,
    ) -> None:
        """Initialize a CapflowError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the file where the error occurred.
            line_number: Optional line number where the error occurred.
        """
        self.suggestion = suggestion
        self.file_path = file_path
        self.line_number = line_number
        super().__init__(message)

    @property
    def message(self) -> str:
        """Return the bare error message without location or suggestion."""
        return self.args[0] if self.args else ""

    def _format_location(self) -> str:
        if not (self.file_path or self.line_number):
            return ""
        location_parts = []
        if self.file_path:
            location_parts.append(f"File: {self.file_path}")
        if self.line_number:
            location_parts.append(f"Line: {self.line_number}")
        return f"\n\n📍 Location: {', '.join(location_parts)}"

    def __str__(self) -> str:
        """Format the error message with location and suggestion."""
        msg = self.message + self._format_location()
        if self.suggestion:
            msg += f"\n\n💡 Suggestion: {self.suggestion}"
        return msg

    @property
    def error_type(self) -> str:
        """Return the type name for display purposes."""
        return self.__class__.__name__


class ConfigurationError(CapflowError):
    """Raised when a YAML file cannot be loaded into a typed model.

    This includes malformed YAML, missing required fields, invalid field
    values and unresolvable environment variables.

    Attributes:
        field_path: Optional path to the invalid field (e.g., 'steps.0.retry').
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
        line_number: int | None = None,
        field_path: str | None = None,
    ) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the file where the error occurred.
            line_number: Optional line number where the error occurred.
            field_path: Optional path to the invalid configuration field.
        """
        self.field_path = field_path

        if suggestion is None:
            suggestion = self._generate_suggestion(message, field_path)

        super().__init__(message, suggestion, file_path, line_number)

    def _generate_suggestion(self, message: str, field_path: str | None) -> str | None:
        """Generate helpful suggestions based on error message and field."""
        msg_lower = message.lower()

        if "provider" in msg_lower and "import" in msg_lower:
            return "Use the 'package.module:attribute' form for capability providers"

        if "required" in msg_lower:
            return f"Add the missing required field{' at ' + field_path if field_path else ''}"

        if "type" in msg_lower or "validation" in msg_lower:
            return "Check the field type matches the expected schema type"

        return None

    def __str__(self) -> str:
        """Format the error message with field path, location and suggestion."""
        msg = self.message
        if self.field_path:
            msg += f"\n\n📋 Field: {self.field_path}"
        msg += self._format_location()
        if self.suggestion:
            msg += f"\n\n💡 Suggestion: {self.suggestion}"
        return msg


class ValidationError(CapflowError):
    """Raised when a workflow definition is structurally invalid.

    Covers missing identifiers, duplicate step ids, dependencies that name
    unknown steps, and dependency cycles. Never retried.

    Attributes:
        workflow_id: Id of the offending workflow, when known.
        errors: Individual violations, one message per entry.
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
        line_number: int | None = None,
        workflow_id: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        """Initialize a ValidationError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the file where the error occurred.
            line_number: Optional line number where the error occurred.
            workflow_id: Optional id of the workflow that failed validation.
            errors: Optional list of the individual violations.
        """
        self.workflow_id = workflow_id
        self.errors = errors or []
        super().__init__(message, suggestion, file_path, line_number)


class TemplateError(CapflowError):
    """Raised when Jinja2 template rendering fails.

    This includes undefined variables, syntax errors, and filter errors
    in classifier prompt templates.
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
        line_number: int | None = None,
        undefined_variable: str | None = None,
    ) -> None:
        """Initialize a TemplateError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the file where the error occurred.
            line_number: Optional line number where the error occurred.
            undefined_variable: Optional name of the undefined variable.
        """
        self.undefined_variable = undefined_variable

        if suggestion is None:
            if undefined_variable:
                suggestion = f"Variable '{undefined_variable}' is not defined in the prompt context"
            elif "syntax" in message.lower():
                suggestion = (
                    "Check Jinja2 template syntax: ensure {{ }} are balanced "
                    "and filters use | correctly"
                )

        super().__init__(message, suggestion, file_path, line_number)


class ProviderError(CapflowError):
    """Raised when a capability provider or external service fails.

    Providers may raise this from ``execute`` to signal a failed attempt;
    the template classifier raises it for any Anthropic SDK failure.
    """

    # HTTP status codes that SHOULD be retried
    RETRYABLE_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
        line_number: int | None = None,
        status_code: int | None = None,
        provider_type: str | None = None,
        is_retryable: bool | None = None,
    ) -> None:
        """Initialize a ProviderError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the file where the error occurred.
            line_number: Optional line number where the error occurred.
            status_code: Optional HTTP status code from the provider.
            provider_type: Optional provider type that failed.
            is_retryable: Optional override for retryability. If None, determined by status_code.
        """
        self.status_code = status_code
        self.provider_type = provider_type

        if is_retryable is not None:
            self._is_retryable = is_retryable
        elif status_code is not None:
            self._is_retryable = status_code in self.RETRYABLE_CODES
        else:
            self._is_retryable = "connection" in message.lower() or "timeout" in message.lower()

        if suggestion is None:
            if status_code == 401:
                suggestion = "Check your credentials (e.g. ANTHROPIC_API_KEY)"
            elif status_code == 429:
                suggestion = "Rate limit exceeded. Retry later or lower concurrency"
            elif "connection" in message.lower():
                suggestion = "Check your network connection and try again"

        super().__init__(message, suggestion, file_path, line_number)

    @property
    def is_retryable(self) -> bool:
        """Return whether this error should trigger a retry."""
        return self._is_retryable


class ExecutionError(CapflowError):
    """Raised when workflow execution fails.

    Base class for execution-related errors. More specific execution
    errors inherit from this class.
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
        line_number: int | None = None,
        step_id: str | None = None,
    ) -> None:
        """Initialize an ExecutionError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the file where the error occurred.
            line_number: Optional line number where the error occurred.
            step_id: Optional id of the step where the error occurred.
        """
        self.step_id = step_id
        super().__init__(message, suggestion, file_path, line_number)


class StepExecutionError(ExecutionError):
    """Raised when a step has failed after exhausting its retry policy.

    Attributes:
        attempts: Number of provider calls made.
        last_error: The exception raised by the final attempt.
    """

    def __init__(
        self,
        message: str,
        *,
        step_id: str,
        attempts: int,
        last_error: BaseException | None = None,
        suggestion: str | None = None,
    ) -> None:
        """Initialize a StepExecutionError.

        Args:
            message: The error message describing what went wrong.
            step_id: Id of the failed step.
            attempts: Number of provider calls made before giving up.
            last_error: The exception raised by the final attempt.
            suggestion: Optional advice for resolving the error.
        """
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message, suggestion, step_id=step_id)


class ProcessingError(ExecutionError):
    """Raised when a run cannot continue.

    Covers unmet dependencies at dispatch, unavailable required providers,
    escalated step failures, exceeded budgets and planning deadlocks. Fatal
    to the run and never retried by the engine itself.

    Attributes:
        execution_id: Id of the aborted run, when one exists.
        record: The terminal execution record, attached by the engine.
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
        line_number: int | None = None,
        step_id: str | None = None,
        execution_id: str | None = None,
    ) -> None:
        """Initialize a ProcessingError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the file where the error occurred.
            line_number: Optional line number where the error occurred.
            step_id: Optional id of the step that triggered the abort.
            execution_id: Optional id of the aborted run.
        """
        self.execution_id = execution_id
        self.record: ExecutionRecord | None = None
        super().__init__(message, suggestion, file_path, line_number, step_id)


class BudgetExceededError(ProcessingError):
    """Raised when a run exceeds its cost or duration budget.

    Attributes:
        limit_type: Either "cost" or "duration".
        limit: The configured ceiling.
        actual: The observed value when the check tripped.
    """

    def __init__(
        self,
        message: str,
        *,
        limit_type: str,
        limit: float,
        actual: float,
        execution_id: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        """Initialize a BudgetExceededError.

        Args:
            message: The error message describing what went wrong.
            limit_type: Either "cost" or "duration".
            limit: The configured ceiling.
            actual: The observed value when the check tripped.
            execution_id: Optional id of the aborted run.
            suggestion: Optional advice for resolving the error.
        """
        self.limit_type = limit_type
        self.limit = limit
        self.actual = actual

        if suggestion is None:
            if limit_type == "cost":
                suggestion = "Raise max_cost or drop optional steps to reduce provider spend"
            else:
                suggestion = "Raise max_duration or use faster providers"

        super().__init__(message, suggestion, execution_id=execution_id)
