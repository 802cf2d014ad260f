"""Generic X11 implementation."""
import os
import subprocess
from typing import List, Optional

import psutil

from ..models import ActiveWindow, RunningProcess
from .base import PlatformBase

PSUTIL_ERRORS = (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess)


def exe_name_for(exe_path: Optional[str], name: Optional[str]) -> Optional[str]:
    """Lowercased executable basename, or the process name when the path is unreadable."""
    if exe_path:
        return os.path.basename(exe_path).lower()
    return name.lower() if name else None


class GenericPlatform(PlatformBase):
    """Fallback for unknown desktop environments."""

    IDLE_COMMANDS = [["xprintidle"]]
    WINDOW_COMMANDS = {
        "get_id": ["xdotool", "getactivewindow"],
        "get_pid": ["xdotool", "getwindowpid"],
        "get_class": ["xdotool", "getwindowclassname"],
        "get_title": ["xdotool", "getwindowname"]
    }

    @property
    def name(self) -> str:
        return "Generic"

    @property
    def supports_window_tracking(self) -> bool:
        return self._is_x11() and self._check_command("xdotool")

    def get_idle_ms(self) -> int:
        """Try xprintidle, fallback to 0."""
        try:
            return int(self._output(self.IDLE_COMMANDS[0]))
        except (FileNotFoundError, subprocess.CalledProcessError, ValueError):
            return 0

    def get_active_window(self) -> Optional[ActiveWindow]:
        """Only works with xdotool on X11."""
        if not self._is_x11() or not self.WINDOW_COMMANDS:
            return None

        try:
            window_id = self._output(self.WINDOW_COMMANDS["get_id"])
            pid = int(self._output(self.WINDOW_COMMANDS["get_pid"] + [window_id]))
            window_title = self._output(self.WINDOW_COMMANDS["get_title"] + [window_id])
        except (subprocess.CalledProcessError, FileNotFoundError, ValueError):
            return None

        exe_path = self._exe_path(pid)
        fallback = None if exe_path else (self._process_name(pid) or self._window_class(window_id))
        exe_name = exe_name_for(exe_path, fallback)
        if not exe_name:
            return None

        return ActiveWindow(
            exe_name=exe_name,
            exe_path=exe_path,
            window_title=window_title,
            pid=pid,
        )

    def list_processes(self) -> List[RunningProcess]:
        processes: List[RunningProcess] = []
        for proc in psutil.process_iter(["pid", "name", "exe"]):
            try:
                name = exe_name_for(proc.info["exe"], proc.info["name"])
            except PSUTIL_ERRORS:
                continue
            if name:
                processes.append(RunningProcess(exe_name=name, pid=proc.info["pid"]))
        return processes

    def _exe_path(self, pid: int) -> Optional[str]:
        try:
            return psutil.Process(pid).exe() or None
        except PSUTIL_ERRORS:
            return None

    def _process_name(self, pid: int) -> Optional[str]:
        try:
            return psutil.Process(pid).name() or None
        except PSUTIL_ERRORS:
            return None

    def _window_class(self, window_id: str) -> Optional[str]:
        if not self.WINDOW_COMMANDS:
            return None
        try:
            return self._output(self.WINDOW_COMMANDS["get_class"] + [window_id]) or None
        except (subprocess.CalledProcessError, FileNotFoundError):
            return None
