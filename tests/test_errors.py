"""
Tests for the error types.
"""

from __future__ import annotations

import pytest

from srcds_autoupdate.errors import (
    ConfigurationError,
    RegistryResponseError,
    UnavailableError,
    UpdaterError,
)


class TestUpdaterError:
    """Tests for the UpdaterError base class."""

    def test_attributes(self) -> None:
        """Test that code, message and details are stored."""
        error = UpdaterError("unavailable", "steamcmd timed out", {"app_id": "232250"})

        assert error.error_code == "unavailable"
        assert error.message == "steamcmd timed out"
        assert error.details == {"app_id": "232250"}
        assert str(error) == "steamcmd timed out"

    def test_details_default_to_empty(self) -> None:
        """Test that details are never None."""
        assert UpdaterError("internal", "boom").details == {}

    def test_to_dict(self) -> None:
        """Test dictionary conversion for structured logs."""
        error = UpdaterError("internal", "boom", {"k": 1})

        assert error.to_dict() == {
            "error_code": "internal",
            "message": "boom",
            "details": {"k": 1},
        }

    def test_repr(self) -> None:
        """Test the detailed representation."""
        assert repr(UpdaterError("internal", "boom")) == (
            "UpdaterError(error_code='internal', message='boom', details={})"
        )


class TestSubclasses:
    """Tests for the domain error subclasses."""

    @pytest.mark.parametrize(
        ("error_class", "code"),
        [
            (ConfigurationError, "invalid_argument"),
            (UnavailableError, "unavailable"),
            (RegistryResponseError, "invalid_response"),
        ],
    )
    def test_error_codes(self, error_class: type[UpdaterError], code: str) -> None:
        """Test that each subclass carries its fixed code."""
        error = error_class("message", details={"x": 1})

        assert isinstance(error, UpdaterError)
        assert error.error_code == code
        assert error.details == {"x": 1}

    def test_can_be_caught_as_base(self) -> None:
        """Test catching a subclass through the base class."""
        with pytest.raises(UpdaterError):
            raise UnavailableError("tmux not available")
