"""Scheduler daemon for periodic scrape runs.

No external scheduler library is required — uses stdlib ``time``,
``signal``, and ``subprocess`` only.

Typical usage via the CLI::

    hero-tracker start-scheduler --interval-hours 24

Or import directly::

    from hero_tracker.scheduler import SchedulerDaemon
    daemon = SchedulerDaemon(db_path="data/db/hero_tracker.db", interval_hours=24)
    daemon.start()  # blocks until Ctrl-C

Each scrape is invoked as a subprocess (the installed CLI), so each run has
its own process, logging, and exit code. A failed run is logged but does
not stop the daemon.
"""

from __future__ import annotations

import logging
import platform
import signal
import subprocess
import sys
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

RUN_TIMEOUT_S = 6 * 3600


def _find_cli_exe() -> str:
    """Locate the ``hero-tracker`` executable inside the active virtual env.

    Adds the ``.exe`` suffix on Windows. Raises ``RuntimeError`` if not found.
    """
    scripts_dir = Path(sys.executable).parent
    name = "hero-tracker.exe" if platform.system() == "Windows" else "hero-tracker"
    candidate = scripts_dir / name
    if candidate.exists():
        return str(candidate)
    raise RuntimeError(
        f"Could not find hero-tracker executable in {scripts_dir}. "
        "Run: pip install -e ."
    )


class SchedulerDaemon:
    """Runs ``hero-tracker scrape`` every ``interval_hours``.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file, forwarded to ``scrape``.
    interval_hours:
        Hours between the *start* of consecutive runs.
    config_path:
        Optional TOML config forwarded as ``--config``.
    skip_initial:
        When *True*, wait one interval before the first run.
    cli_exe:
        Full path to the CLI executable. Auto-detected when *None*.
    tick_s:
        Main loop polling interval in seconds.
    """

    def __init__(
        self,
        db_path: str,
        interval_hours: float = 24.0,
        config_path: Optional[str] = None,
        skip_initial: bool = False,
        cli_exe: Optional[str] = None,
        tick_s: float = 30.0,
    ) -> None:
        self.db_path = db_path
        self.interval = timedelta(hours=interval_hours)
        self.config_path = config_path
        self.skip_initial = skip_initial
        self.cli_exe = cli_exe or _find_cli_exe()
        self.tick_s = tick_s
        self._running = False

    def build_command(self) -> list[str]:
        cmd = [self.cli_exe, "scrape", "--db-path", self.db_path]
        if self.config_path:
            cmd += ["--config", self.config_path]
        return cmd

    def run_once(self) -> bool:
        """Run one scrape subprocess. Returns ``True`` on exit code 0."""
        cmd = self.build_command()
        log.info("=== Scrape starting at %s ===", datetime.now().isoformat(timespec="seconds"))
        log.info("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, timeout=RUN_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            log.error("Scrape timed out after %d s.", RUN_TIMEOUT_S)
            return False
        except OSError as exc:
            log.error("Could not start scrape: %s", exc, exc_info=True)
            return False

        if result.returncode == 0:
            log.info("Scrape completed successfully (exit 0).")
            return True
        log.error("Scrape exited with code %d.", result.returncode)
        return False

    def stop(self) -> None:
        self._running = False

    def start(self) -> None:
        """Start the daemon. Blocks until Ctrl-C (or SIGTERM on Linux/macOS)."""
        next_run = datetime.now() + self.interval if self.skip_initial else datetime.now()
        log.info(
            "Scheduler started.  interval=%s  db=%s  next=%s",
            self.interval, self.db_path, next_run.isoformat(timespec="seconds"),
        )

        self._running = True

        def _shutdown(signum, frame):  # noqa: ANN001
            log.info("Signal %d received — stopping scheduler.", signum)
            self.stop()

        signal.signal(signal.SIGINT, _shutdown)
        if platform.system() != "Windows":
            signal.signal(signal.SIGTERM, _shutdown)

        while self._running:
            if datetime.now() >= next_run:
                started = datetime.now()
                self.run_once()
                next_run = started + self.interval
                log.info("Next scrape scheduled: %s", next_run.isoformat(timespec="seconds"))
            time.sleep(self.tick_s)

        log.info("Scheduler stopped.")
