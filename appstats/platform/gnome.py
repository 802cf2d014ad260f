"""GNOME platform implementation."""
import subprocess
from typing import Optional

from ..models import ActiveWindow
from .generic import GenericPlatform


class GNOMEPlatform(GenericPlatform):
    """GNOME-specific implementation."""

    IDLE_COMMANDS = [
        ["xprintidle"],  # X11
        ["gdbus", "call", "--session",
         "--dest", "org.gnome.Mutter.IdleMonitor",
         "--object-path", "/org/gnome/Mutter/IdleMonitor/Core",
         "--method", "org.gnome.Mutter.IdleMonitor.GetIdletime"]  # Wayland
    ]

    @property
    def name(self) -> str:
        return "GNOME"

    def get_idle_ms(self) -> int:
        """
        Try multiple methods:
        1. xprintidle on X11
        2. gdbus query to Mutter (Wayland)
        3. Fallback to 0
        """
        try:
            return int(self._output(self.IDLE_COMMANDS[0]))
        except (FileNotFoundError, subprocess.CalledProcessError, ValueError):
            pass

        # Reply looks like "(uint64 12345,)"
        try:
            result = self._output(self.IDLE_COMMANDS[1])
            return int(result.strip("(),").split()[1])
        except (FileNotFoundError, subprocess.CalledProcessError, ValueError, IndexError):
            pass

        return 0

    def get_active_window(self) -> Optional[ActiveWindow]:
        # GNOME on Wayland doesn't expose window info by default
        if not self._is_x11():
            return None
        return super().get_active_window()
