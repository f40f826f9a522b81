"""
Application exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="FinancialReport", resource_id=42)
    raise ValidationError("Comment is required", details={"comment": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "FinancialReport").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised on a unique-constraint clash or a lost optimistic-lock race.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None, message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class PermissionDenied(Exception):
    """Raised when the actor's role does not allow the requested action.

    Maps to HTTP 403.
    """

    def __init__(self, action: str, required_role: str, actual_roles=None) -> None:
        self.action = action
        self.required_role = required_role
        self.actual_roles = sorted(actual_roles or [])
        super().__init__(f"Role '{required_role}' is required to {action}")


class ReportTransitionError(Exception):
    """Raised when a workflow action is not allowed from the report's state.

    Maps to HTTP 409.
    """

    def __init__(self, report_id: int | None, action: str, current_status: str, reason: str = "") -> None:
        self.report_id = report_id
        self.action = action
        self.current_status = current_status
        self.reason = reason
        super().__init__(reason or f"Cannot {action} a report in status '{current_status}'")


class SnapshotIntegrityError(Exception):
    """Raised when a stored snapshot no longer matches its checksum.

    Maps to HTTP 409.
    """

    def __init__(self, report_id: int, expected: str | None, actual: str) -> None:
        self.report_id = report_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Snapshot checksum mismatch for report {report_id}")


class PeriodLockedError(ConflictError):
    """Raised when execution data is written for a locked reporting period.

    Maps to HTTP 409.
    """

    def __init__(self, reporting_period_id, project_id, facility_id) -> None:
        self.reporting_period_id = reporting_period_id
        self.project_id = project_id
        self.facility_id = facility_id
        super().__init__(
            "ReportingPeriod", "locked", str(reporting_period_id),
            message=(
                f"Reporting period {reporting_period_id} is locked for "
                f"project {project_id} / facility {facility_id}"
            ),
        )
