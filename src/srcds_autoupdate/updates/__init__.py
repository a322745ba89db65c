"""
Update detection and orchestration.

This package implements the update cycle of a supervised game server:
- Reading installed build ids from SteamCMD app manifests
- Querying the published build id from a registry (SteamCMD or HTTP)
- Drift detection through the version oracle
- The graceful restart countdown and its extension signal
- The orchestrator state machine tying them together
"""

from srcds_autoupdate.updates.countdown import (
    CountdownEvent,
    CountdownEventKind,
    CountdownState,
    GraceCountdown,
)
from srcds_autoupdate.updates.manifest import AppManifest, ManifestStore
from srcds_autoupdate.updates.orchestrator import (
    OrchestratorOutcome,
    OrchestratorResult,
    OrchestratorState,
    UpdateMode,
    UpdateOrchestrator,
)
from srcds_autoupdate.updates.registry import (
    BuildRegistry,
    HttpRegistry,
    SteamCmdRegistry,
    create_registry,
)
from srcds_autoupdate.updates.signals import ExtensionSignal, FileMarkerSignal
from srcds_autoupdate.updates.version import (
    DriftResult,
    DriftStatus,
    PackageRef,
    VersionOracle,
)

__all__ = [
    # Manifests
    "AppManifest",
    "ManifestStore",
    # Registries
    "BuildRegistry",
    "SteamCmdRegistry",
    "HttpRegistry",
    "create_registry",
    # Drift detection
    "PackageRef",
    "DriftResult",
    "DriftStatus",
    "VersionOracle",
    # Countdown
    "GraceCountdown",
    "CountdownState",
    "CountdownEvent",
    "CountdownEventKind",
    "ExtensionSignal",
    "FileMarkerSignal",
    # Orchestrator
    "UpdateMode",
    "UpdateOrchestrator",
    "OrchestratorState",
    "OrchestratorOutcome",
    "OrchestratorResult",
]
