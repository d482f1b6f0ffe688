"""Tests for Bridge exception hierarchy."""

import pytest

from bridge.exceptions import (
    BridgeError,
    ConfigurationError,
    DiscoveryError,
    EmbeddingError,
    NotFoundError,
    QualityFilterError,
    StorageError,
    ValidationError,
)


class TestBridgeError:
    """Tests for the base BridgeError class."""

    def test_error_message(self):
        """Should store and return message."""
        error = BridgeError("Something went wrong")
        assert error.message == "Something went wrong"
        assert str(error) == "Something went wrong"
        assert error.code == "bridge_error"

    def test_to_dict(self):
        """Should convert to API-friendly dict."""
        assert BridgeError("boom").to_dict() == {
            "error": {"code": "bridge_error", "message": "boom"}
        }

    def test_inheritance(self):
        """All custom exceptions should inherit from BridgeError."""
        exceptions = [
            ValidationError("field", "invalid"),
            QualityFilterError(QualityFilterError.EMPTY_FILTER, "Filter cannot be empty"),
            NotFoundError("pattern", "L1-1"),
            StorageError("failed"),
            EmbeddingError("failed"),
            DiscoveryError("failed"),
            ConfigurationError("missing"),
        ]
        for exc in exceptions:
            assert isinstance(exc, BridgeError)

    def test_catch_all(self):
        """Should be able to catch every Bridge error with BridgeError."""
        with pytest.raises(BridgeError):
            raise DiscoveryError("clustering failed")


class TestValidationError:
    """Tests for ValidationError."""

    def test_field_prefix(self):
        """Message should be prefixed with the field."""
        error = ValidationError("created", "Invalid date")
        assert error.field == "created"
        assert str(error) == "created: Invalid date"

    def test_to_dict(self):
        """Should include field in dict."""
        result = ValidationError("query", "bad").to_dict()
        assert result["error"]["code"] == "validation_error"
        assert result["error"]["field"] == "query"


class TestQualityFilterError:
    """Tests for QualityFilterError."""

    def test_code_per_instance(self):
        """The code should be the filter error code given."""
        error = QualityFilterError(QualityFilterError.NO_VALID_FILTERS, "No valid filters found")
        assert error.code == "NO_VALID_FILTERS"
        assert isinstance(error, ValidationError)

    def test_message_without_prefix(self):
        """Filter messages should be shown as-is."""
        error = QualityFilterError(QualityFilterError.EMPTY_FILTER, "Filter cannot be empty")
        assert str(error) == "Filter cannot be empty"
        assert error.message == "Filter cannot be empty"

    def test_to_dict_includes_path(self):
        """Path should appear in the dict when known."""
        error = QualityFilterError(
            QualityFilterError.INVALID_FILTER_VALUE, "Unknown quality: vibe", "root.vibe"
        )
        assert error.to_dict()["error"]["path"] == "root.vibe"

    def test_to_dict_without_path(self):
        """Path should be omitted when unknown."""
        error = QualityFilterError(QualityFilterError.EVALUATION_ERROR, "failed")
        assert "path" not in error.to_dict()["error"]


class TestNotFoundError:
    """Tests for NotFoundError."""

    def test_message(self):
        """Message should name the resource type and id."""
        error = NotFoundError("vector", "exp_1")
        assert str(error) == "vector not found: exp_1"
        assert error.resource_type == "vector"
        assert error.resource_id == "exp_1"

    def test_to_dict(self):
        """Should include resource details."""
        result = NotFoundError("pattern", "L1-9").to_dict()
        assert result["error"]["code"] == "not_found"
        assert result["error"]["resource_id"] == "L1-9"
