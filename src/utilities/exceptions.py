class HelpdeskError(Exception):
    """Base class for business-rule failures reported to the client."""

    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class FieldValidationError(HelpdeskError):
    """
    Malformed or missing input. `errors` holds one entry per failing field:
    ``{"field": "department", "message": "Department is required"}``.
    """

    status_code = 422
    code = "validation_error"

    def __init__(self, errors: list[dict[str, str]], detail: str = "Validation failed"):
        super().__init__(detail)
        self.errors = errors

    @classmethod
    def single(cls, field: str, message: str) -> "FieldValidationError":
        return cls([{"field": field, "message": message}])


class NotFoundError(HelpdeskError):
    # Also raised for records outside the caller's scope, so existence never leaks.
    status_code = 404
    code = "not_found"


class ForbiddenStateError(HelpdeskError):
    status_code = 400
    code = "forbidden_state"


class PermissionDeniedError(HelpdeskError):
    status_code = 403
    code = "permission_denied"


class ConflictError(HelpdeskError):
    """Uniqueness violation; the whole request is safe to resubmit."""

    status_code = 409
    code = "conflict"
