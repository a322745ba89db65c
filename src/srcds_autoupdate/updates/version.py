"""
Version oracle: detects drift between installed and published builds.

Build ids are opaque tokens. Two builds are compared for equality only; the
oracle never assumes a larger id is newer.

Registry failures are not errors here. Every failure becomes an Unknown
result so that the poll loop can tolerate any number of consecutive outages;
only a positive drift detection changes control flow.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from srcds_autoupdate.config import PackageRef
from srcds_autoupdate.errors import UpdaterError
from srcds_autoupdate.logging import get_logger

if TYPE_CHECKING:
    from srcds_autoupdate.updates.manifest import ManifestStore
    from srcds_autoupdate.updates.registry import BuildRegistry

logger = get_logger(__name__)

__all__ = ["DriftResult", "DriftStatus", "PackageRef", "VersionOracle", "is_drifted"]


class DriftStatus(str, Enum):
    """Outcome category of a drift check."""

    UP_TO_DATE = "up_to_date"
    DRIFTED = "drifted"
    UNKNOWN = "unknown"


def is_drifted(local: str, remote: str) -> bool:
    """Return True iff the two build ids differ (opaque token comparison)."""
    return local != remote


class DriftResult:
    """Result of comparing one package's local and remote builds."""

    def __init__(
        self,
        package: PackageRef,
        status: DriftStatus,
        local: str | None = None,
        remote: str | None = None,
        reason: str | None = None,
    ) -> None:
        """
        Initialize the drift result.

        Args:
            package: Package that was checked.
            status: Outcome category.
            local: Installed build id, if known.
            remote: Published build id, if fetched.
            reason: Why the outcome is Unknown.
        """
        self.package = package
        self.status = status
        self.local = local
        self.remote = remote
        self.reason = reason

    @classmethod
    def up_to_date(cls, package: PackageRef, build: str) -> DriftResult:
        return cls(package, DriftStatus.UP_TO_DATE, local=build, remote=build)

    @classmethod
    def drifted(cls, package: PackageRef, local: str, remote: str) -> DriftResult:
        return cls(package, DriftStatus.DRIFTED, local=local, remote=remote)

    @classmethod
    def unknown(
        cls,
        package: PackageRef,
        reason: str,
        local: str | None = None,
    ) -> DriftResult:
        return cls(package, DriftStatus.UNKNOWN, local=local, reason=reason)

    @property
    def is_drifted(self) -> bool:
        return self.status == DriftStatus.DRIFTED

    def to_dict(self) -> dict[str, str | None]:
        """Convert to dictionary."""
        return {
            "app_id": self.package.app_id,
            "label": self.package.label,
            "status": self.status.value,
            "local": self.local,
            "remote": self.remote,
            "reason": self.reason,
        }

    def __repr__(self) -> str:
        return (
            f"DriftResult(app_id={self.package.app_id!r}, status={self.status.value!r}, "
            f"local={self.local!r}, remote={self.remote!r}, reason={self.reason!r})"
        )


class VersionOracle:
    """
    Compares installed builds against the registry.

    Attributes:
        manifests: Reader for local app manifests.
        registry: Source of published build ids.
    """

    def __init__(self, manifests: ManifestStore, registry: BuildRegistry) -> None:
        self.manifests = manifests
        self.registry = registry

    async def check_drift(self, package: PackageRef) -> DriftResult:
        """
        Check one package for drift.

        Never raises; every failure is reported as an Unknown result.

        Args:
            package: Package to check.

        Returns:
            UpToDate, Drifted(remote) or Unknown(reason).
        """
        manifest = self.manifests.read(package.app_id)
        if manifest is None:
            # Never installed through SteamCMD; nothing to compare against
            logger.debug(
                "No local manifest, skipping drift check",
                extra={"app_id": package.app_id},
            )
            return DriftResult.unknown(package, "no local manifest")

        local = manifest.build_id

        try:
            remote = await self.registry.fetch_build_id(package.app_id)
        except UpdaterError as e:
            logger.warning(
                f"Could not reach Steam to check {package.label or package.app_id}, "
                "will retry next cycle",
                extra={"app_id": package.app_id, "error": e.to_dict()},
            )
            return DriftResult.unknown(package, e.message, local=local)
        except Exception as e:
            logger.warning(
                f"Registry query failed for {package.label or package.app_id}: {e}",
                extra={"app_id": package.app_id},
            )
            return DriftResult.unknown(package, str(e) or type(e).__name__, local=local)

        remote = remote.strip() if isinstance(remote, str) else ""
        if not remote:
            return DriftResult.unknown(package, "empty registry response", local=local)

        if is_drifted(local, remote):
            logger.info(
                f"{package.label or package.app_id} update detected! "
                f"(build {local} -> {remote})",
                extra={"app_id": package.app_id, "local_build": local, "remote_build": remote},
            )
            return DriftResult.drifted(package, local, remote)

        logger.debug(
            "Package up to date",
            extra={"app_id": package.app_id, "build": local},
        )
        return DriftResult.up_to_date(package, local)
