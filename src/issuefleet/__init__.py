"""issuefleet: parallel coding agents over an issue backlog."""

from issuefleet.config import VERSION as __version__

__all__ = ["__version__"]
