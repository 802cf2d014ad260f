"""Platform detection and factory."""
import logging
import os
from typing import Optional
from .base import PlatformBase, ActiveWindowProbe, ProcessListProbe, IdleProbe
from .gnome import GNOMEPlatform
from .generic import GenericPlatform

logger = logging.getLogger(__name__)

_platform_instance: Optional[PlatformBase] = None


def detect_platform() -> PlatformBase:
    """
    Detect desktop environment and return appropriate platform instance.

    GNOME gets Mutter idle queries on Wayland; everything else uses the
    generic X11 implementation.
    """
    global _platform_instance

    if _platform_instance is not None:
        return _platform_instance

    desktop = os.environ.get("XDG_CURRENT_DESKTOP", "").lower()

    if "gnome" in desktop or "ubuntu" in desktop:
        _platform_instance = GNOMEPlatform()
    else:
        _platform_instance = GenericPlatform()

    logger.info("Detected platform: %s", _platform_instance.name)
    return _platform_instance


def get_platform() -> PlatformBase:
    """Get current platform instance (cached)."""
    return detect_platform()


__all__ = [
    "PlatformBase", "ActiveWindowProbe", "ProcessListProbe", "IdleProbe",
    "GenericPlatform", "GNOMEPlatform", "get_platform", "detect_platform",
]
