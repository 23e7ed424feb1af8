"""Lifecycle — one-time join, membership verification and keytab refresh."""

from adkeytab.lifecycle.machine import JoinStep, LifecycleStateMachine
from adkeytab.lifecycle.refresh import KeytabRefreshTask, RefreshReport
from adkeytab.lifecycle.scheduler import (
    REFRESH_INTERVAL,
    CronScheduler,
    PeriodicRunner,
    RefreshScheduler,
)
from adkeytab.lifecycle.state import (
    FileStateStore,
    LifecycleState,
    MemoryStateStore,
    StateStore,
)

__all__ = [
    "LifecycleStateMachine",
    "JoinStep",
    "KeytabRefreshTask",
    "RefreshReport",
    "RefreshScheduler",
    "CronScheduler",
    "PeriodicRunner",
    "REFRESH_INTERVAL",
    "LifecycleState",
    "StateStore",
    "FileStateStore",
    "MemoryStateStore",
]
