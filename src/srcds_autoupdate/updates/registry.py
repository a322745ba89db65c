"""
Remote build registries.

A registry answers one question: which build id is currently published on a
branch of an app. Two transports are provided:

- SteamCmdRegistry runs ``steamcmd +app_info_print`` (what the server image
  already ships with)
- HttpRegistry queries a SteamCMD-compatible JSON API over HTTP

Registries raise UnavailableError or RegistryResponseError on failure; the
version oracle turns those into Unknown results.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from srcds_autoupdate.config import RegistryBackend
from srcds_autoupdate.errors import RegistryResponseError, UnavailableError
from srcds_autoupdate.logging import get_logger
from srcds_autoupdate.updates import keyvalues

if TYPE_CHECKING:
    from srcds_autoupdate.config import SteamConfig

logger = get_logger(__name__)


@runtime_checkable
class BuildRegistry(Protocol):
    """Source of the published build id for an app."""

    async def fetch_build_id(self, app_id: str) -> str:
        """
        Return the published build id of an app.

        Raises:
            UnavailableError: If the registry cannot be reached.
            RegistryResponseError: If the answer is empty or malformed.
        """
        ...


def extract_branch_build_id(app_info: dict[str, Any], branch: str) -> str | None:
    """Return depots.branches.<branch>.buildid from app info data."""
    build_id = keyvalues.find(app_info, "depots", "branches", branch, "buildid")
    if isinstance(build_id, (str, int)) and str(build_id).strip():
        return str(build_id).strip()
    return None


def parse_app_info_output(output: str, app_id: str, branch: str = "public") -> str:
    """
    Extract a branch build id from ``steamcmd +app_info_print`` output.

    SteamCMD prints banner and login chatter before the KeyValues document,
    so parsing starts at the line holding the quoted app id.

    Raises:
        RegistryResponseError: If the document or build id is missing.
    """
    marker = f'"{app_id}"'
    start = output.find(marker)
    if start == -1:
        raise RegistryResponseError(
            "App info missing from steamcmd output",
            details={"app_id": app_id},
        )

    try:
        data = keyvalues.loads(output[start:], first_block_only=True)
    except keyvalues.KeyValuesError as exc:
        raise RegistryResponseError(
            f"Malformed app info: {exc}",
            details={"app_id": app_id},
        ) from exc

    build_id = extract_branch_build_id(keyvalues.find(data, app_id) or {}, branch)
    if build_id is None:
        raise RegistryResponseError(
            f"No build id for branch {branch!r}",
            details={"app_id": app_id, "branch": branch},
        )
    return build_id


class SteamCmdRegistry:
    """
    Registry backed by the SteamCMD client.

    Attributes:
        steamcmd: Path to steamcmd.sh.
        branch: Published branch to read.
        timeout: Seconds before a query is abandoned.
    """

    def __init__(
        self,
        steamcmd: Path | str,
        branch: str = "public",
        timeout: float = 120.0,
    ) -> None:
        self.steamcmd = Path(steamcmd)
        self.branch = branch
        self.timeout = timeout

    async def _run_steamcmd(self, *args: str) -> tuple[int, str]:
        """
        Run steamcmd with the given arguments.

        Returns:
            Tuple of (return_code, stdout).

        Raises:
            UnavailableError: If steamcmd is missing or times out.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                str(self.steamcmd),
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise UnavailableError(
                "steamcmd not available",
                details={"path": str(self.steamcmd)},
            ) from exc

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except TimeoutError as exc:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise UnavailableError(
                f"steamcmd timed out after {self.timeout}s",
                details={"args": args},
            ) from exc

        return proc.returncode or 0, stdout.decode(errors="replace") if stdout else ""

    async def fetch_build_id(self, app_id: str) -> str:
        returncode, stdout = await self._run_steamcmd(
            "+login",
            "anonymous",
            "+app_info_update",
            "1",
            "+app_info_print",
            app_id,
            "+quit",
        )

        if not stdout.strip():
            raise UnavailableError(
                "steamcmd returned no output",
                details={"app_id": app_id, "returncode": returncode},
            )

        return parse_app_info_output(stdout, app_id, self.branch)


class HttpRegistry:
    """
    Registry backed by a JSON app info API.

    The response layout follows api.steamcmd.net:
    ``{"status": "success", "data": {"<app_id>": {"depots": {"branches": ...}}}}``.

    Attributes:
        url_template: URL with an ``{app_id}`` placeholder.
        branch: Published branch to read.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        url_template: str,
        branch: str = "public",
        timeout: float = 30.0,
    ) -> None:
        self.url_template = url_template
        self.branch = branch
        self.timeout = timeout

    async def fetch_build_id(self, app_id: str) -> str:
        url = self.url_template.format(app_id=app_id)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as exc:
            raise UnavailableError(
                f"Registry request failed: {exc}",
                details={"url": url},
            ) from exc
        except ValueError as exc:
            raise RegistryResponseError(
                "Registry returned invalid JSON",
                details={"url": url},
            ) from exc

        if not isinstance(payload, dict) or payload.get("status", "success") != "success":
            raise RegistryResponseError(
                "Registry reported failure",
                details={"url": url},
            )

        app_info = keyvalues.find(payload, "data", app_id)
        if not isinstance(app_info, dict):
            raise RegistryResponseError(
                "App info missing from registry response",
                details={"url": url, "app_id": app_id},
            )

        build_id = extract_branch_build_id(app_info, self.branch)
        if build_id is None:
            raise RegistryResponseError(
                f"No build id for branch {self.branch!r}",
                details={"url": url, "app_id": app_id, "branch": self.branch},
            )
        return build_id


def create_registry(config: SteamConfig) -> BuildRegistry:
    """Build the configured registry."""
    if config.registry == RegistryBackend.HTTP:
        return HttpRegistry(
            url_template=config.registry_url,
            branch=config.branch,
            timeout=config.query_timeout_seconds,
        )
    return SteamCmdRegistry(
        steamcmd=Path(config.steamcmd_dir) / "steamcmd.sh",
        branch=config.branch,
        timeout=config.query_timeout_seconds,
    )
