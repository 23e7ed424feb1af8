"""Refresh scheduling.

AD rotates machine-account passwords every 30 days by default.  Refreshing
every 7 days (roughly a quarter of that) leaves several retry windows before
a failed refresh turns into an expired keytab.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import timedelta

from adkeytab.config.models import REFRESH_LOG
from adkeytab.errors import AdKeytabError, ToolUnavailableError

logger = logging.getLogger(__name__)

MACHINE_PASSWORD_ROTATION = timedelta(days=30)
REFRESH_INTERVAL = timedelta(days=7)
PROGRAM = "adkeytab"
REFRESH_COMMAND = f"{PROGRAM} refresh"


class RefreshScheduler(ABC):
    """Arranges for the keytab refresh to run every ``interval``."""

    @abstractmethod
    def schedule(self, interval: timedelta = REFRESH_INTERVAL) -> None:
        ...


def cron_line(interval: timedelta, command: str, log_file: str = str(REFRESH_LOG)) -> str:
    """Crontab entry running ``command`` at midnight every ``interval`` days."""
    days = max(1, interval.days)
    return f"0 0 */{days} * * {command} >> {log_file} 2>&1"


class CronScheduler(RefreshScheduler):
    """Installs the refresh job into root's crontab.

    Existing entries are kept; a previous refresh entry is replaced, so
    scheduling twice leaves a single job.  The job names the executable by
    absolute path because cron runs with a minimal PATH.

    Args:
        executable: Path of the ``adkeytab`` program; looked up on PATH
            when omitted.
        log_file: File the job's output is appended to.
    """

    def __init__(self, executable: str | None = None, log_file: str = str(REFRESH_LOG)) -> None:
        self.executable = executable
        self.log_file = log_file

    def refresh_command(self) -> str:
        executable = self.executable or shutil.which(PROGRAM)
        if not executable:
            raise ToolUnavailableError(f"{PROGRAM} is not on PATH", step="CRON")
        return f"{os.path.abspath(executable)} refresh"

    def _run(self, cmd: list[str], stdin: str | None = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(cmd, input=stdin, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise ToolUnavailableError("crontab is not installed", step="CRON") from e

    def schedule(self, interval: timedelta = REFRESH_INTERVAL) -> None:
        logger.info("AD: Setting up keytab refresh cron job (every %d days) ...", interval.days)
        command = self.refresh_command()
        current = self._run(["crontab", "-l"])
        # "no crontab for root" exits 1; start from an empty table
        existing = current.stdout.splitlines() if current.returncode == 0 else []
        lines = [line for line in existing if REFRESH_COMMAND not in line]
        lines.append(cron_line(interval, command, self.log_file))

        result = self._run(["crontab", "-"], stdin="\n".join(lines) + "\n")
        if result.returncode != 0:
            raise AdKeytabError(
                f"Failed to install refresh cron job: {result.stderr.strip()}",
                step="CRON",
            )


class PeriodicRunner:
    """Timer-driven loop calling ``task`` every ``interval``.

    A failed run is logged and retried at the next tick; the loop only ends
    when ``stop()`` is called.

    Usage:
        runner = PeriodicRunner(KeytabRefreshTask(config, client).run)
        runner.run_forever()
    """

    def __init__(
        self,
        task: Callable[[], object],
        interval: timedelta = REFRESH_INTERVAL,
        *,
        run_immediately: bool = True,
    ) -> None:
        self.task = task
        self.interval = interval
        self.run_immediately = run_immediately
        self.runs = 0
        self.failures = 0
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def tick(self) -> bool:
        """Run the task once.  Returns False if it failed."""
        self.runs += 1
        try:
            self.task()
        except (AdKeytabError, OSError) as e:
            self.failures += 1
            logger.error("Scheduled refresh failed: %s", e)
            return False
        return True

    def run_forever(self) -> None:
        if not self.run_immediately:
            self._stop.wait(self.interval.total_seconds())
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.interval.total_seconds())
