"""
Local app manifests written by SteamCMD.

After every successful ``app_update`` SteamCMD records the installed build in
``steamapps/appmanifest_<appid>.acf``. These files are owned by the sync step;
this module only reads them.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from srcds_autoupdate.logging import get_logger
from srcds_autoupdate.updates import keyvalues

logger = get_logger(__name__)

# StateFlags bit set once an app is fully installed
STATE_FULLY_INSTALLED = 4


class AppManifest(BaseModel):
    """The fields of an app manifest the orchestrator cares about."""

    app_id: str = Field(description="Steam application id")
    build_id: str = Field(description="Installed build id (opaque token)")
    state_flags: int = Field(default=0, description="SteamCMD StateFlags bitmask")
    path: str = Field(description="Manifest file the data was read from")

    @property
    def fully_installed(self) -> bool:
        """True if the last sync completed cleanly."""
        return bool(self.state_flags & STATE_FULLY_INSTALLED)


def parse_manifest(text: str, app_id: str, path: Path | str = "") -> AppManifest | None:
    """
    Extract an AppManifest from manifest text.

    Returns:
        The manifest, or None if the text is malformed or has no build id.
    """
    try:
        data = keyvalues.loads(text)
    except keyvalues.KeyValuesError as e:
        logger.warning(f"Malformed app manifest: {e}", extra={"path": str(path)})
        return None

    state = keyvalues.find(data, "AppState")
    if not isinstance(state, dict):
        return None

    build_id = keyvalues.find(state, "buildid")
    if not isinstance(build_id, str) or not build_id.strip():
        return None

    flags_raw = keyvalues.find(state, "StateFlags")
    try:
        state_flags = int(flags_raw) if isinstance(flags_raw, str) else 0
    except ValueError:
        state_flags = 0

    return AppManifest(
        app_id=app_id,
        build_id=build_id.strip(),
        state_flags=state_flags,
        path=str(path),
    )


class ManifestStore:
    """
    Locates and reads app manifests across several steamapps directories.

    SteamCMD keeps manifests in its own steamapps directory when run with
    +force_install_dir, but older installs may have them next to the game, so
    several directories are searched in order and the first hit wins.
    """

    def __init__(self, search_dirs: list[Path | str]) -> None:
        self.search_dirs = [Path(d) for d in search_dirs]

    def locate(self, app_id: str) -> Path | None:
        """Return the first existing manifest path for the app, if any."""
        filename = f"appmanifest_{app_id}.acf"
        for directory in self.search_dirs:
            candidate = directory / filename
            try:
                if candidate.is_file():
                    return candidate
            except OSError as e:
                # Unsearchable directory or unusable path; try the next one
                logger.warning(
                    f"Cannot inspect manifest location: {e}",
                    extra={"path": str(candidate)},
                )
        return None

    def read(self, app_id: str) -> AppManifest | None:
        """
        Read the manifest for an app.

        Returns:
            The parsed manifest, or None if it is missing or unreadable.
        """
        path = self.locate(app_id)
        if path is None:
            return None

        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Cannot read app manifest: {e}", extra={"path": str(path)})
            return None

        return parse_manifest(text, app_id, path)
