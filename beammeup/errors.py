"""Error taxonomy. Services raise these; main renders them as JSON."""

from typing import Any, Dict, List, Optional


class BeamMeUpError(Exception):
    """Base error with a stable code and HTTP status."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str = "An error occurred") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationError(BeamMeUpError):
    """Malformed input. Optionally carries per-field issues."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[List[Dict[str, str]]] = None,
    ) -> None:
        super().__init__(message)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data


class Unauthorized(BeamMeUpError):
    code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(BeamMeUpError):
    code = "FORBIDDEN"
    status_code = 403


class NotFound(BeamMeUpError):
    code = "NOT_FOUND"
    status_code = 404


class SizeLimitExceeded(BeamMeUpError):
    code = "SIZE_LIMIT_EXCEEDED"
    status_code = 400


class InvalidArchive(BeamMeUpError):
    code = "INVALID_ARCHIVE"
    status_code = 400


class ConfigUnavailable(BeamMeUpError):
    """ServerConfig.toml could not be read, parsed or written."""

    code = "CONFIG_UNAVAILABLE"
    status_code = 500


class ContainerError(BeamMeUpError):
    """The docker CLI failed or is not available."""

    code = "CONTAINER_ERROR"
    status_code = 500
