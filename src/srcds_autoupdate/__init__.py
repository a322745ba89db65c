"""
srcds-autoupdate - Background update orchestrator for Source dedicated servers.

This package watches a running game server, polls the Steam build registry for
new builds of the tracked apps, and stops the server (immediately, after a
player-visible countdown, or by operator action) so the host supervisor can
restart it and apply the update.
"""

__version__ = "0.1.0"
