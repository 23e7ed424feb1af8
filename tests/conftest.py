"""Shared fixtures: a resolved config in a temp dir and a scripted directory."""

from __future__ import annotations

from datetime import timedelta

import pytest

from adkeytab.config.resolver import resolve_config
from adkeytab.directory.scripted import ScriptedDirectoryClient
from adkeytab.lifecycle.scheduler import REFRESH_INTERVAL, RefreshScheduler
from adkeytab.lifecycle.state import MemoryStateStore


class RecordingScheduler(RefreshScheduler):
    """Remembers every schedule() call instead of touching crontab."""

    def __init__(self) -> None:
        self.intervals: list[timedelta] = []

    def schedule(self, interval: timedelta = REFRESH_INTERVAL) -> None:
        self.intervals.append(interval)


@pytest.fixture
def environ(tmp_path):
    """A minimal valid environment with every file under tmp_path."""
    etc = tmp_path / "etc"
    return {
        "KERBEROS_ADMIN_USER": "Administrator",
        "KERBEROS_ADMIN_PASSWORD": "Passw0rd!",
        "KERBEROS_REALM": "EXAMPLE.COM",
        "KRB5_CONFIG": str(etc / "krb5.conf"),
        "KRB5_KTNAME": f"FILE:{etc / 'krb5.keytab'}",
        "KERBEROS_SMB_CONF": str(etc / "samba" / "smb.conf"),
    }


@pytest.fixture
def config(environ):
    return resolve_config(environ)


@pytest.fixture
def client():
    return ScriptedDirectoryClient(realm="EXAMPLE.COM")


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def scheduler():
    return RecordingScheduler()
