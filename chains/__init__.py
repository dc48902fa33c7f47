"""Star chain builder and the creator's share status tracker."""

from .routes import chains_bp
from .tracker import ShareStatusTracker, close_trackers, tracker_for

__all__ = ["chains_bp", "ShareStatusTracker", "close_trackers", "tracker_for"]
