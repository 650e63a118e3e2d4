"""Custom exception hierarchy for shieldQL.

All public errors inherit from :class:`ShieldQLError` so callers can catch the
base class for any shieldQL-specific failure.  Every error carries a stable
machine-readable ``code`` and a ``details`` dict so adapters can turn it into
a structured response without parsing the message.
"""
from __future__ import annotations

from typing import Any

#: Maximum number of characters of a caller-supplied string echoed back in an
#: error message or ``details`` entry.
MAX_ECHO_LENGTH = 64


def truncate(value: Any, limit: int = MAX_ECHO_LENGTH) -> str:
    """Return ``value`` as a string, shortened to ``limit`` characters.

    Candidate injection strings can be arbitrarily long; only a prefix is
    ever reflected back to the caller.
    """
    text = str(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class ShieldQLError(Exception):
    """Base exception for all shieldQL errors.

    Args:
        message: Human-readable description.
        code: Machine-readable error code (e.g. ``ACCESS_DENIED``).
        details: Structured context for programmatic handling.
    """

    default_code = "SHIELDQL_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.details: dict[str, Any] = details or {}

    def to_error_response(self) -> dict[str, Any]:
        """Returns a structured error response suitable for an API layer."""
        return {
            "error": self.code,
            "message": str(self),
            "details": self.details,
        }


class ConfigurationError(ShieldQLError):
    """Raised when an engine configuration is invalid.

    Collects every detected problem rather than stopping at the first one, so
    configuration tooling can report them all at once.

    Args:
        message: Human-readable summary.
        errors: One entry per detected problem.
    """

    default_code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors: list[str] = list(errors or [])
        super().__init__(message, details={"errors": self.errors})

    def __str__(self) -> str:
        text = super().__str__()
        if self.errors:
            lines = "\n".join(f"  - {e}" for e in self.errors)
            text = f"{text}\nValidation errors:\n{lines}"
        return text


class ValidationError(ShieldQLError):
    """Raised when call arguments are missing or malformed."""

    default_code = "VALIDATION_ERROR"


class IdentifierRejectedError(ValidationError):
    """Raised when a table or column name fails identifier validation.

    Args:
        identifier: The rejected identifier (truncated before being stored).
        reason: Why it was rejected.
        table: Table being built against, if any.
        role: Acting role, if any.
    """

    default_code = "IDENTIFIER_REJECTED"

    def __init__(
        self,
        identifier: str,
        reason: str = "invalid identifier",
        table: str | None = None,
        role: str | None = None,
    ) -> None:
        shown = truncate(identifier)
        location = f" on table '{truncate(table)}'" if table else ""
        super().__init__(
            f"Identifier '{shown}' rejected{location}: {reason}.",
            details={
                "identifier": shown,
                "reason": reason,
                "table": truncate(table) if table is not None else None,
                "role": role,
            },
        )
        self.identifier = shown


class AccessDeniedError(ShieldQLError):
    """Raised when a role is explicitly denied access to a resource.

    Raised for predicates on denied fields and on strict code paths; the
    default filtering behaviour is to drop denied fields silently.

    Args:
        resource: Field or table name.
        role: Acting role.
        required_role: Role that would have been required, if known.
        reason: Machine-readable denial reason.
    """

    default_code = "ACCESS_DENIED"

    def __init__(
        self,
        resource: str,
        role: str,
        required_role: str | None = None,
        reason: str | None = None,
    ) -> None:
        message = f"Role '{role}' may not access '{truncate(resource)}'."
        if required_role:
            message = f"{message} Required role: '{required_role}'."
        super().__init__(
            message,
            details={
                "resource": truncate(resource),
                "role": role,
                "required_role": required_role,
                "reason": reason,
            },
        )
        self.resource = resource
        self.role = role
        self.required_role = required_role


class TableAccessDeniedError(AccessDeniedError):
    """Raised when a role may not run an operation against a table."""

    default_code = "TABLE_ACCESS_DENIED"

    def __init__(
        self,
        table: str,
        role: str,
        operation: str,
        required_role: str | None = None,
        allowed_operations: list[str] | None = None,
    ) -> None:
        reason = "operation_not_allowed" if allowed_operations is not None else "table_access_denied"
        super().__init__(table, role, required_role=required_role, reason=reason)
        self.details["operation"] = operation
        if allowed_operations is not None:
            self.details["allowed_operations"] = allowed_operations
        self.operation = operation


class CompilationError(ShieldQLError):
    """Raised when a statement cannot be built.

    Covers builder misuse (clauses before a statement type, a second
    ``build()`` without ``reset()``) and empty projections or value sets.

    Args:
        message: Human-readable description.
        clause: The clause being compiled when the error occurred.
    """

    default_code = "COMPILATION_ERROR"

    def __init__(self, message: str, clause: str | None = None) -> None:
        super().__init__(message, details={"clause": clause})
        self.clause = clause
