"""Browser action surface."""

from .action_surface import ActionSurface, BrowserActionError

__all__ = [
    "ActionSurface",
    "BrowserActionError",
]
