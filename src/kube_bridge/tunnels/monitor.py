"""Background supervision of idle and failed tunnels."""

import threading
from dataclasses import dataclass, field
from typing import Any

from ..common.logging import get_logger
from ..config import BridgeConfig
from .exceptions import TunnelNotFoundError
from .manager import TunnelManager
from .models import TunnelStatus

logger = get_logger(__name__)


@dataclass
class MonitorReport:
    """Tunnel ids affected by one monitor pass."""

    idled: list[str] = field(default_factory=list)
    reactivated: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class IdleMonitor:
    """Periodically walks the open tunnels of a manager.

    For each ``active`` or ``idle`` tunnel, with ``t`` the time since it was
    last touched:

    * ``t >= stop_timeout``: the tunnel is stopped
    * failed liveness probe: ``error`` (never reconnected automatically)
    * ``t >= idle_timeout``: ``active -> idle``
    * otherwise an ``idle`` tunnel that was touched again goes back to ``active``
    """

    def __init__(
        self,
        manager: TunnelManager,
        idle_timeout: float,
        stop_timeout: float,
        interval: float = 30.0,
        health_check: bool = True,
    ):
        """Initialize the monitor.

        Args:
            manager: Tunnel manager to supervise
            idle_timeout: Seconds of inactivity before a tunnel is marked idle
            stop_timeout: Seconds of inactivity before a tunnel is stopped
            interval: Seconds between passes
            health_check: Probe open forwards for transport failures
        """
        if stop_timeout <= idle_timeout:
            raise ValueError("stop_timeout must be greater than idle_timeout")
        self.manager = manager
        self.idle_timeout = idle_timeout
        self.stop_timeout = stop_timeout
        self.interval = interval
        self.health_check = health_check

        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._passes = 0

    @classmethod
    def from_config(cls, manager: TunnelManager, config: BridgeConfig) -> "IdleMonitor":
        return cls(
            manager,
            idle_timeout=config.idle_timeout_seconds,
            stop_timeout=config.stop_timeout_seconds,
            interval=config.monitor_interval_seconds,
            health_check=config.health_check_enabled,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background thread; a no-op if already running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(self._stop_event,), name="idle-monitor", daemon=True
            )
            self._thread.start()
        logger.info("Idle monitor started", interval=self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background thread and wait for it to exit."""
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()

        if thread is not None:
            thread.join(timeout)
            logger.info("Idle monitor stopped")

    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval):
            try:
                self.check()
            except Exception as e:
                logger.error("Idle monitor pass failed", error=str(e))

    # ── Checks ────────────────────────────────────────────────────────────

    def check(self) -> MonitorReport:
        """Run one supervision pass over the open tunnels."""
        report = MonitorReport()
        now = self.manager.now()

        for tunnel in self.manager.list():
            if not tunnel.is_open:
                continue

            idle_for = tunnel.idle_for(now)
            if idle_for >= self.stop_timeout:
                try:
                    self.manager.stop(tunnel.id, reason="idle timeout")
                except TunnelNotFoundError:
                    continue
                report.stopped.append(tunnel.id)
                continue

            if self.health_check:
                problem = self.manager.check_health(tunnel.id)
                if problem is not None:
                    if self.manager.mark_error(tunnel.id, f"Health check failed: {problem}"):
                        report.failed.append(tunnel.id)
                    continue

            if idle_for >= self.idle_timeout:
                if tunnel.status == TunnelStatus.ACTIVE and self.manager.mark_idle(tunnel.id):
                    report.idled.append(tunnel.id)
            elif tunnel.status == TunnelStatus.IDLE and self.manager.mark_active(tunnel.id):
                report.reactivated.append(tunnel.id)

        with self._lock:
            self._passes += 1
        if report.idled or report.reactivated or report.stopped or report.failed:
            logger.info(
                "Idle monitor pass",
                idled=len(report.idled),
                reactivated=len(report.reactivated),
                stopped=len(report.stopped),
                failed=len(report.failed),
            )
        return report

    def stats(self) -> dict[str, Any]:
        """Tunnel counts plus monitor state."""
        stats: dict[str, Any] = dict(self.manager.stats())
        stats["running"] = self.is_running()
        with self._lock:
            stats["passes"] = self._passes
        return stats
