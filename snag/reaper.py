"""
Find and terminate browser processes started with remote debugging.

Provides:
- find_port_owners(): PIDs listening on a TCP port (socket-to-PID lookup)
- ProcessReaper.kill_on_port(): kill the first listener on one port
- ProcessReaper.kill_all_managed(): kill every debug-enabled process of the
  detected browser family
- ProcessReaper.kill(): dispatch on whether a port was given

DESIGN NOTES:
- A process matches kill_all_managed() only if its command line contains
  BOTH the browser executable name AND --remote-debugging-port, so an
  ordinary browsing session is never touched
- Nothing on the port is success (0 killed), not an error
- Our own PID is always excluded
"""

import logging
import os
from typing import Callable, List, Optional

import psutil

from snag.browser import find_browser_executable
from snag.config import COMMAND_LINE_DISPLAY_LENGTH, PROCESS_EXIT_TIMEOUT
from snag.errors import ProcessKillFailed
from snag.log import success, verbose

logger = logging.getLogger(__name__)

DEBUG_PORT_FLAG = "--remote-debugging-port"


def truncate_command_line(line: str, max_len: int = COMMAND_LINE_DISPLAY_LENGTH) -> str:
    if len(line) <= max_len:
        return line
    return line[:max_len] + "..."


def find_port_owners(port: int) -> List[int]:
    """
    PIDs with a listening TCP socket on ``port``, in discovery order.

    Falls back to a per-process scan where the system-wide table needs
    elevated privileges (macOS).
    """
    pids: List[int] = []

    def _add(pid: Optional[int]) -> None:
        if pid and pid not in pids:
            pids.append(pid)

    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied:
        logger.debug("System-wide socket table denied, scanning processes")
        connections = None

    if connections is not None:
        for conn in connections:
            if conn.laddr and conn.laddr.port == port and conn.status == psutil.CONN_LISTEN:
                _add(conn.pid)
        return pids

    for proc in psutil.process_iter(["pid"]):
        try:
            for conn in proc.net_connections(kind="tcp"):
                if conn.laddr and conn.laddr.port == port and conn.status == psutil.CONN_LISTEN:
                    _add(proc.pid)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return pids


class ProcessReaper:
    """Terminates debug-enabled browser processes by port or globally."""

    def __init__(self, executable_finder: Callable[[], str] = find_browser_executable) -> None:
        self._executable_finder = executable_finder

    def kill(self, port: Optional[int] = None) -> int:
        """Kill on ``port`` when given, otherwise every managed browser."""
        if port:
            return self.kill_on_port(port)
        return self.kill_all_managed()

    def kill_on_port(self, port: int) -> int:
        """
        Force-kill the first process listening on ``port``.

        Returns:
            1 if a process was killed, 0 if nothing owned the port

        Raises:
            ProcessKillFailed: the owner exists but could not be killed
        """
        verbose(logger, f"Checking port {port}...")
        pids = find_port_owners(port)
        if not pids:
            logger.info(f"No browser running on port {port}")
            return 0

        pid = pids[0]
        verbose(logger, f"Found browser process (PID {pid}) on port {port}")
        try:
            proc = psutil.Process(pid)
            proc.kill()
            proc.wait(timeout=PROCESS_EXIT_TIMEOUT)
        except psutil.NoSuchProcess:
            logger.info(f"No browser running on port {port}")
            return 0
        except (psutil.AccessDenied, psutil.TimeoutExpired) as e:
            raise ProcessKillFailed(
                f"failed to kill browser process (PID {pid}): {e}"
            ) from e

        success(logger, f"Killed browser process (PID {pid})")
        return 1

    def kill_all_managed(self) -> int:
        """
        Force-kill every process of the browser family started with remote debugging.

        Raises:
            BrowserNotFound: no browser executable to scope the search by
        """
        verbose(logger, "Killing all browser processes with remote debugging...")
        executable = os.path.basename(self._executable_finder())
        if executable.endswith(".app"):
            executable = executable[: -len(".app")]
        logger.debug(f"Searching for processes matching: {executable} with {DEBUG_PORT_FLAG}")

        own_pid = os.getpid()
        targets: List[psutil.Process] = []
        for proc in psutil.process_iter(["pid", "cmdline"]):
            cmdline = " ".join(proc.info.get("cmdline") or [])
            if executable not in cmdline or DEBUG_PORT_FLAG not in cmdline:
                continue
            if proc.info["pid"] == own_pid:
                continue
            targets.append(proc)
            verbose(logger, f"  Found PID {proc.info['pid']}: {truncate_command_line(cmdline)}")

        if not targets:
            logger.info("No browser processes found")
            return 0

        verbose(logger, f"Killing {len(targets)} process(es)...")
        killed = 0
        for proc in targets:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                logger.debug(f"PID {proc.pid} already exited")
                continue
            except psutil.AccessDenied as e:
                logger.warning(f"Failed to kill PID {proc.pid}: {e}")
                continue
            killed += 1
            logger.debug(f"Killed PID {proc.pid}")

        if killed:
            success(logger, f"Killed {killed} process(es)")
        return killed
