"""Live overlay state and event streaming."""

from rackup_obs.overlay.broadcaster import (
    OverlayBroadcaster,
    OverlayPlayer,
    OverlayState,
    Subscriber,
)

__all__ = ["OverlayBroadcaster", "OverlayPlayer", "OverlayState", "Subscriber"]
