"""Bridge exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from BridgeError for easy catching.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all Bridge errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code.
    """

    code: str = "bridge_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(BridgeError):
    """Invalid input provided.

    Raised before any state is mutated, for example when a vector has
    the wrong dimension or a recall input is malformed.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class QualityFilterError(ValidationError):
    """A quality filter could not be parsed or evaluated.

    Unlike other validation errors the code is set per instance, one of
    ``EMPTY_FILTER``, ``INVALID_FILTER_VALUE``, ``NO_VALID_FILTERS``,
    ``UNKNOWN_EXPRESSION_TYPE`` or ``EVALUATION_ERROR``.

    Attributes:
        code: Machine-readable filter error code.
        path: Location in the filter specification, if known.
    """

    EMPTY_FILTER = "EMPTY_FILTER"
    INVALID_FILTER_VALUE = "INVALID_FILTER_VALUE"
    NO_VALID_FILTERS = "NO_VALID_FILTERS"
    UNKNOWN_EXPRESSION_TYPE = "UNKNOWN_EXPRESSION_TYPE"
    EVALUATION_ERROR = "EVALUATION_ERROR"

    def __init__(self, code: str, message: str, path: str | None = None) -> None:
        self.code = code
        self.path = path
        super().__init__("qualities", message)
        # Filter messages are shown as-is, without the field prefix
        self.message = message
        self.args = (message,)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        error: dict[str, object] = {
            "code": self.code,
            "field": self.field,
            "message": self.message,
        }
        if self.path is not None:
            error["path"] = self.path
        return {"error": error}


class NotFoundError(BridgeError):
    """Resource not found.

    Raised when a requested pattern or vector doesn't exist.

    Attributes:
        resource_type: Type of resource (e.g., "pattern", "vector").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(BridgeError):
    """Storage operation failed.

    Raised when a record store or snapshot operation fails.
    """

    code: str = "storage_error"


class EmbeddingError(BridgeError):
    """Embedding generation failed."""

    code: str = "embedding_error"


class DiscoveryError(BridgeError):
    """Pattern discovery failed.

    Raised inside discovery algorithms. The pattern manager catches it
    and keeps the previous cache.
    """

    code: str = "discovery_error"


class ConfigurationError(BridgeError):
    """Configuration error.

    Raised when required configuration is missing or invalid.
    """

    code: str = "configuration_error"
