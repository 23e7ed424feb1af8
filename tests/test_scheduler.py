"""Tests for refresh scheduling: the cron entry and the in-process loop."""

import shutil
import subprocess
from datetime import timedelta

import pytest

from adkeytab.errors import AdKeytabError, KeytabError, ToolUnavailableError
from adkeytab.lifecycle.scheduler import (
    MACHINE_PASSWORD_ROTATION,
    REFRESH_INTERVAL,
    CronScheduler,
    PeriodicRunner,
    cron_line,
)


ADKEYTAB = "/usr/local/bin/adkeytab"
CRON_ENTRY = "0 0 */7 * * /usr/local/bin/adkeytab refresh >> /var/log/keytab-refresh.log 2>&1"


def test_refresh_interval_leaves_retry_margin():
    assert REFRESH_INTERVAL * 4 <= MACHINE_PASSWORD_ROTATION


def test_cron_line():
    assert cron_line(REFRESH_INTERVAL, f"{ADKEYTAB} refresh") == CRON_ENTRY


class TestCronScheduler:
    def _patch(self, monkeypatch, existing="", list_rc=0, install_rc=0, which=ADKEYTAB):
        installed = []

        def fake_run(cmd, input=None, **kwargs):
            if cmd == ["crontab", "-l"]:
                return subprocess.CompletedProcess(cmd, list_rc, stdout=existing, stderr="")
            installed.append(input)
            return subprocess.CompletedProcess(cmd, install_rc, stdout="", stderr="crontab: bad")

        monkeypatch.setattr(subprocess, "run", fake_run)
        monkeypatch.setattr(shutil, "which", lambda name: which if name == "adkeytab" else None)
        return installed

    def test_installs_into_empty_table(self, monkeypatch):
        installed = self._patch(monkeypatch, list_rc=1)

        CronScheduler().schedule()

        assert installed == [CRON_ENTRY + "\n"]

    def test_job_names_program_by_absolute_path(self, monkeypatch):
        """cron's PATH is /usr/bin:/bin, so a bare program name would not be found."""
        installed = self._patch(monkeypatch, list_rc=1)

        CronScheduler().schedule()

        command = installed[0].split()[5]
        assert command.startswith("/")
        assert command.endswith("/adkeytab")

    def test_program_missing_from_path(self, monkeypatch):
        installed = self._patch(monkeypatch, which=None)

        with pytest.raises(ToolUnavailableError):
            CronScheduler().schedule()
        assert installed == []

    def test_explicit_executable(self, monkeypatch):
        installed = self._patch(monkeypatch, list_rc=1, which=None)

        CronScheduler(executable="/opt/venv/bin/adkeytab").schedule()

        assert installed[0].startswith("0 0 */7 * * /opt/venv/bin/adkeytab refresh >> ")

    def test_replaces_previous_entry_and_keeps_others(self, monkeypatch):
        existing = "15 3 * * * /usr/bin/backup\n0 0 */3 * * adkeytab refresh >> /tmp/x 2>&1\n"
        installed = self._patch(monkeypatch, existing=existing)

        CronScheduler().schedule(timedelta(days=7))

        assert installed[0].splitlines() == ["15 3 * * * /usr/bin/backup", CRON_ENTRY]

    def test_scheduling_twice_leaves_one_job(self, monkeypatch):
        installed = self._patch(monkeypatch, existing=CRON_ENTRY + "\n")

        CronScheduler().schedule()

        assert installed[0].splitlines() == [CRON_ENTRY]

    def test_install_failure_raises(self, monkeypatch):
        self._patch(monkeypatch, install_rc=1)

        with pytest.raises(AdKeytabError):
            CronScheduler().schedule()


class TestPeriodicRunner:
    def test_failures_do_not_stop_the_loop(self):
        runner = None
        outcomes = [KeytabError("boom"), None, None]

        def task():
            outcome = outcomes[runner.runs - 1]
            if runner.runs == len(outcomes):
                runner.stop()
            if outcome:
                raise outcome

        runner = PeriodicRunner(task, timedelta(0))
        runner.run_forever()

        assert runner.runs == 3
        assert runner.failures == 1

    def test_tick_reports_result(self):
        def failing():
            raise KeytabError("boom")

        assert PeriodicRunner(lambda: None).tick() is True
        assert PeriodicRunner(failing).tick() is False

    def test_stop_before_first_wait(self):
        calls = []
        runner = PeriodicRunner(lambda: calls.append(1), timedelta(0), run_immediately=False)
        runner.stop()

        runner.run_forever()

        assert calls == []

    def test_lock_file_errors_do_not_stop_the_loop(self):
        def unwritable_state_dir():
            raise PermissionError(13, "Permission denied", "/var/lib/kerberos/lifecycle.lock")

        runner = PeriodicRunner(unwritable_state_dir)

        assert runner.tick() is False
        assert runner.failures == 1
