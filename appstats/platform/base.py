"""Base platform abstraction."""
import os
import subprocess
from abc import ABC, abstractmethod
from typing import Optional, Dict, List

from ..models import ActiveWindow, RunningProcess


class ActiveWindowProbe(ABC):
    """Reports the executable that currently has input focus."""

    @abstractmethod
    def poll(self) -> Optional[ActiveWindow]:
        """Return the focused window, or None if nothing can be determined."""
        pass


class ProcessListProbe(ABC):
    """Reports every running executable."""

    @abstractmethod
    def poll(self) -> List[RunningProcess]:
        pass


class IdleProbe(ABC):
    """Reports time since the last user input."""

    @abstractmethod
    def get_idle_ms(self) -> int:
        pass


class PlatformBase(ABC):
    """Abstract base for platform-specific operations."""

    # Subclasses override these
    IDLE_COMMANDS: List[List[str]] = []
    WINDOW_COMMANDS: Optional[Dict[str, List[str]]] = None

    @abstractmethod
    def get_idle_ms(self) -> int:
        """Return current idle time in milliseconds."""
        pass

    @abstractmethod
    def get_active_window(self) -> Optional[ActiveWindow]:
        """Get the focused window's executable and title."""
        pass

    @abstractmethod
    def list_processes(self) -> List[RunningProcess]:
        """Get all running executables."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Platform name for logging."""
        pass

    @property
    @abstractmethod
    def supports_window_tracking(self) -> bool:
        """Whether platform supports window tracking."""
        pass

    # Probe views used by the scheduler

    def active_window_probe(self) -> ActiveWindowProbe:
        return _PlatformActiveWindowProbe(self)

    def process_list_probe(self) -> ProcessListProbe:
        return _PlatformProcessListProbe(self)

    def idle_probe(self) -> IdleProbe:
        return _PlatformIdleProbe(self)

    # Shared helpers
    def _check_command(self, cmd: str) -> bool:
        """Check if command exists."""
        try:
            subprocess.run(["which", cmd], capture_output=True, check=True)
            return True
        except (subprocess.CalledProcessError, FileNotFoundError):
            return False

    def _output(self, cmd: List[str]) -> str:
        """Run cmd and return stripped stdout; raises on failure."""
        return subprocess.check_output(cmd, stderr=subprocess.DEVNULL).decode().strip()

    def _is_x11(self) -> bool:
        """Check if running on X11."""
        session_type = os.environ.get("XDG_SESSION_TYPE", "").lower()
        return session_type == "x11" or os.environ.get("DISPLAY") is not None


class _PlatformActiveWindowProbe(ActiveWindowProbe):
    def __init__(self, platform: PlatformBase) -> None:
        self.platform = platform

    def poll(self) -> Optional[ActiveWindow]:
        return self.platform.get_active_window()


class _PlatformProcessListProbe(ProcessListProbe):
    def __init__(self, platform: PlatformBase) -> None:
        self.platform = platform

    def poll(self) -> List[RunningProcess]:
        return self.platform.list_processes()


class _PlatformIdleProbe(IdleProbe):
    def __init__(self, platform: PlatformBase) -> None:
        self.platform = platform

    def get_idle_ms(self) -> int:
        return self.platform.get_idle_ms()
