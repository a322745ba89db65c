"""
Extension signal for the graceful countdown.

Anyone who wants to delay a pending restart (an operator, a scheduled job,
an in-game vote plugin) raises the signal; the countdown polls it once per
tick and consumes it. Requests arriving within the same tick coalesce into a
single extension.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from srcds_autoupdate.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ExtensionSignal(Protocol):
    """Edge-triggered request to extend a running countdown."""

    def consume(self) -> bool:
        """Return True and clear the signal if it was raised."""
        ...


class FileMarkerSignal:
    """
    ExtensionSignal backed by the presence of a marker file.

    Attributes:
        path: Marker file location.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def raise_signal(self) -> None:
        """Create the marker file (used by the ``extend`` command)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch()

    def consume(self) -> bool:
        """
        Delete the marker if present.

        Returns:
            True if the marker existed and was removed by this call.
        """
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            # A marker we cannot delete would extend the countdown forever
            logger.warning(
                f"Cannot consume extension marker: {e}",
                extra={"path": str(self.path)},
            )
            return False

        logger.debug("Extension marker consumed", extra={"path": str(self.path)})
        return True
