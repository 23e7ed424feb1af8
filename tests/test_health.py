"""Tests for the health probe."""

from adkeytab.health import HealthProbe
from adkeytab.lifecycle.machine import LifecycleStateMachine


def test_healthy_after_join(config, client, store, scheduler):
    LifecycleStateMachine(config, client, store, scheduler).run()

    report = HealthProbe(config, client).check()

    assert report.healthy
    assert report.principals == 4
    assert report.detail == ""


def test_missing_keytab_is_unhealthy(config, client):
    client.domain_joined = True

    report = HealthProbe(config, client).check()

    assert not report.healthy
    assert report.keytab_ok is False
    assert report.membership_ok is True
    assert "not listable" in report.detail


def test_rejected_machine_account_is_unhealthy(config, client, store, scheduler):
    LifecycleStateMachine(config, client, store, scheduler).run()
    client.member = False

    report = HealthProbe(config, client).check()

    assert not report.healthy
    assert report.keytab_ok is True
    assert "membership test" in report.detail
