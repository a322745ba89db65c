"""
Tests for the version oracle.

Tests cover:
- Opaque build id comparison
- Up-to-date, drifted and unknown results
- Registry failures downgraded to unknown
"""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import ScriptedRegistry, write_manifest

from srcds_autoupdate.errors import RegistryResponseError, UnavailableError
from srcds_autoupdate.updates.manifest import ManifestStore
from srcds_autoupdate.updates.version import (
    DriftResult,
    DriftStatus,
    PackageRef,
    VersionOracle,
    is_drifted,
)

PACKAGE = PackageRef(app_id="232250", label="TF2 Dedicated Server (base)")


def make_oracle(manifest_dir: Path, responses: list[str | Exception]) -> VersionOracle:
    return VersionOracle(
        ManifestStore([manifest_dir]),
        ScriptedRegistry({PACKAGE.app_id: responses}),
    )


class TestIsDrifted:
    """Tests for build id comparison."""

    @pytest.mark.parametrize(
        ("a", "b"),
        [("100", "101"), ("101", "100"), ("9", "10"), ("abc", "abd")],
    )
    def test_different_ids_drift_both_ways(self, a: str, b: str) -> None:
        """Test that any difference is drift, regardless of order."""
        assert is_drifted(a, b)
        assert is_drifted(b, a)

    def test_equal_ids(self) -> None:
        """Test that identical ids never drift."""
        assert not is_drifted("14023412", "14023412")

    def test_no_numeric_interpretation(self) -> None:
        """Test that ids are compared as tokens, not numbers."""
        assert is_drifted("0100", "100")


class TestDriftResult:
    """Tests for DriftResult."""

    def test_to_dict(self) -> None:
        """Test dictionary conversion."""
        result = DriftResult.drifted(PACKAGE, "1", "2")

        assert result.to_dict() == {
            "app_id": "232250",
            "label": "TF2 Dedicated Server (base)",
            "status": "drifted",
            "local": "1",
            "remote": "2",
            "reason": None,
        }
        assert result.is_drifted

    def test_unknown_is_not_drifted(self) -> None:
        """Test that unknown results never count as drift."""
        assert not DriftResult.unknown(PACKAGE, "timeout").is_drifted


class TestVersionOracle:
    """Tests for VersionOracle.check_drift()."""

    @pytest.mark.asyncio
    async def test_up_to_date(self, manifest_dir: Path) -> None:
        """Test matching local and remote builds."""
        write_manifest(manifest_dir, PACKAGE.app_id, "500")
        oracle = make_oracle(manifest_dir, ["500"])

        result = await oracle.check_drift(PACKAGE)

        assert result.status == DriftStatus.UP_TO_DATE
        assert result.local == result.remote == "500"

    @pytest.mark.asyncio
    async def test_drifted(self, manifest_dir: Path) -> None:
        """Test a newly published build."""
        write_manifest(manifest_dir, PACKAGE.app_id, "500")
        oracle = make_oracle(manifest_dir, ["501"])

        result = await oracle.check_drift(PACKAGE)

        assert result.status == DriftStatus.DRIFTED
        assert result.local == "500"
        assert result.remote == "501"

    @pytest.mark.asyncio
    async def test_rollback_counts_as_drift(self, manifest_dir: Path) -> None:
        """Test that an older remote build also counts as drift."""
        write_manifest(manifest_dir, PACKAGE.app_id, "501")
        oracle = make_oracle(manifest_dir, ["500"])

        assert (await oracle.check_drift(PACKAGE)).is_drifted

    @pytest.mark.asyncio
    async def test_no_local_manifest(self, manifest_dir: Path) -> None:
        """Test that a never-installed package is unknown and skips the registry."""
        registry = ScriptedRegistry({PACKAGE.app_id: ["1"]})
        oracle = VersionOracle(ManifestStore([manifest_dir]), registry)

        result = await oracle.check_drift(PACKAGE)

        assert result.status == DriftStatus.UNKNOWN
        assert result.reason == "no local manifest"
        assert registry.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            UnavailableError("steamcmd timed out after 120.0s"),
            RegistryResponseError("No build id for branch 'public'"),
        ],
    )
    async def test_registry_errors_are_unknown(
        self, manifest_dir: Path, error: Exception
    ) -> None:
        """Test that registry failures become unknown results."""
        write_manifest(manifest_dir, PACKAGE.app_id, "500")
        oracle = make_oracle(manifest_dir, [error])

        result = await oracle.check_drift(PACKAGE)

        assert result.status == DriftStatus.UNKNOWN
        assert result.local == "500"
        assert result.reason == str(error)

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_unknown(self, manifest_dir: Path) -> None:
        """Test that even unexpected registry exceptions do not escape."""
        write_manifest(manifest_dir, PACKAGE.app_id, "500")
        oracle = make_oracle(manifest_dir, [RuntimeError()])

        result = await oracle.check_drift(PACKAGE)

        assert result.status == DriftStatus.UNKNOWN
        assert result.reason == "RuntimeError"

    @pytest.mark.asyncio
    async def test_empty_remote_is_unknown(self, manifest_dir: Path) -> None:
        """Test that a blank registry answer is not treated as drift."""
        write_manifest(manifest_dir, PACKAGE.app_id, "500")
        oracle = make_oracle(manifest_dir, ["  "])

        result = await oracle.check_drift(PACKAGE)

        assert result.status == DriftStatus.UNKNOWN
        assert result.reason == "empty registry response"

    @pytest.mark.asyncio
    async def test_reads_manifest_each_check(self, manifest_dir: Path) -> None:
        """Test that the local build is re-read on every check."""
        write_manifest(manifest_dir, PACKAGE.app_id, "500")
        oracle = make_oracle(manifest_dir, ["501"])
        assert (await oracle.check_drift(PACKAGE)).is_drifted

        write_manifest(manifest_dir, PACKAGE.app_id, "501")

        assert (await oracle.check_drift(PACKAGE)).status == DriftStatus.UP_TO_DATE
