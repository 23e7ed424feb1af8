"""Tests for the keytab refresh task."""

import pytest

from adkeytab.config.resolver import resolve_config
from adkeytab.errors import ConfigurationError, KeytabError, PrincipalError
from adkeytab.lifecycle.machine import LifecycleStateMachine
from adkeytab.lifecycle.refresh import KeytabRefreshTask


@pytest.fixture
def joined(config, client, store, scheduler):
    """A directory the lifecycle has already joined."""
    LifecycleStateMachine(config, client, store, scheduler).run()
    client.calls.clear()
    return client


def test_refresh_regenerates_keytab(config, joined, store):
    report = KeytabRefreshTask(config, joined, store).run()

    assert report.reregistered == []
    assert "cifs/files01@EXAMPLE.COM" in report.principals
    assert joined.calls == ["list_principals", "create_keytab", "list_keytab"]


def test_refresh_is_idempotent(config, joined):
    task = KeytabRefreshTask(config, joined)

    first = task.run()
    second = task.run()

    assert first.principals == second.principals
    assert joined.calls.count("create_keytab") == 2


def test_removed_spn_is_reregistered(config, joined):
    """Both cifs forms are registered again when one disappeared from AD."""
    joined.remove_spn("cifs/files01")

    report = KeytabRefreshTask(config, joined).run()

    assert report.reregistered == ["cifs/files01.example.com", "cifs/files01"]
    assert "cifs/files01" in joined.spns
    assert "cifs/files01@EXAMPLE.COM" in report.principals


def test_reregistration_failure(config, joined):
    joined.remove_spn("cifs/files01")
    joined.fail("register_principal", "Failed to add SPN")

    with pytest.raises(PrincipalError) as exc:
        KeytabRefreshTask(config, joined).run()

    assert exc.value.step == "REFRESH"
    assert "Failed to add SPN" in exc.value.diagnostics


def test_keytab_without_cifs_fails(config, joined):
    joined.keytab_omits = {"cifs/files01.example.com"}

    with pytest.raises(PrincipalError):
        KeytabRefreshTask(config, joined).run()


def test_keytab_create_failure(config, joined):
    joined.fail("create_keytab", "kerberos_kt_add failed")

    with pytest.raises(KeytabError):
        KeytabRefreshTask(config, joined).run()


def test_cifs_disabled_skips_spn_check(environ, joined):
    config = resolve_config({**environ, "KERBEROS_CIFS_ENABLED": "false"})

    report = KeytabRefreshTask(config, joined).run()

    assert "list_principals" not in joined.calls
    assert report.reregistered == []


def test_missing_credentials(environ, joined):
    env = {k: v for k, v in environ.items() if k != "KERBEROS_ADMIN_USER"}
    config = resolve_config(env, require_credentials=False)

    with pytest.raises(ConfigurationError) as exc:
        KeytabRefreshTask(config, joined).run()

    assert exc.value.field == "KERBEROS_ADMIN_USER"
    assert joined.calls == []


def test_refresh_before_join_is_incomplete(config, client):
    """Without a domain join the host principals never show up."""
    with pytest.raises(KeytabError) as exc:
        KeytabRefreshTask(config, client).run()

    assert "host/files01.example.com" in str(exc.value)
