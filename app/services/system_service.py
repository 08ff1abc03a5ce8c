from __future__ import annotations

import os
import platform
import socket
import sys
import time

import psutil

from app.models.api import SystemInfoResponse

_PROCESS_STARTED_AT = time.monotonic()


class SystemService:
    """Host and process facts shown by the home page and `/api/system`.

    Memory and boot time come from psutil; free memory is the "available"
    figure (what can be allocated without swapping), not the kernel's MemFree.
    """

    @staticmethod
    def hostname() -> str:
        return socket.gethostname()

    @staticmethod
    def process_uptime() -> float:
        return time.monotonic() - _PROCESS_STARTED_AT

    @staticmethod
    def platform_name() -> str:
        return sys.platform

    @staticmethod
    def architecture() -> str:
        return platform.machine() or "unknown"

    @staticmethod
    def python_version() -> str:
        return platform.python_version()

    @staticmethod
    def total_memory() -> int:
        return psutil.virtual_memory().total

    @staticmethod
    def free_memory() -> int:
        return psutil.virtual_memory().available

    @staticmethod
    def cpu_count() -> int:
        return psutil.cpu_count() or os.cpu_count() or 0

    @staticmethod
    def host_uptime() -> float:
        return max(time.time() - psutil.boot_time(), 0.0)

    @staticmethod
    def load_average() -> list[float]:
        return list(psutil.getloadavg())

    def system_info(self) -> SystemInfoResponse:
        return SystemInfoResponse(
            hostname=self.hostname(),
            platform=self.platform_name(),
            architecture=self.architecture(),
            total_memory=self.total_memory(),
            free_memory=self.free_memory(),
            cpus=self.cpu_count(),
            uptime=self.host_uptime(),
            loadavg=self.load_average(),
        )
