"""Tests for the subprocess directory client and its output parsers."""

import subprocess

import pytest

from adkeytab.config.models import AdminCredentials
from adkeytab.directory.models import JoinOutcome
from adkeytab.directory.net_ads import (
    SubprocessDirectoryClient,
    is_already_joined,
    parse_keytab_listing,
    parse_nameservers,
    parse_realm_configured,
    parse_spn_list,
)
from adkeytab.errors import ToolUnavailableError

REALM_LIST = """\
example.com
  type: kerberos
  realm-name: EXAMPLE.COM
  domain-name: example.com
  configured: kerberos-member
  server-software: active-directory
"""

SETSPN_LIST = """\
Registered SPNs for CN=FILES01,CN=Computers,DC=example,DC=com
	HOST/files01.example.com
	HOST/FILES01
	cifs/files01.example.com
	cifs/files01
"""

KLIST_K = """\
Keytab name: FILE:/etc/krb5.keytab
KVNO Principal
---- --------------------------------------------------------------------------
   2 FILES01$@EXAMPLE.COM
   2 FILES01$@EXAMPLE.COM
   2 host/files01.example.com@EXAMPLE.COM
   2 cifs/files01@EXAMPLE.COM
"""


class TestParsers:
    def test_realm_configured(self):
        assert parse_realm_configured(REALM_LIST) == "kerberos-member"
        assert parse_realm_configured("example.com\n  type: kerberos\n") is None

    def test_spn_list_skips_header(self):
        assert parse_spn_list(SETSPN_LIST) == [
            "HOST/files01.example.com",
            "HOST/FILES01",
            "cifs/files01.example.com",
            "cifs/files01",
        ]

    def test_keytab_listing_deduplicates(self):
        assert parse_keytab_listing(KLIST_K) == [
            "FILES01$@EXAMPLE.COM",
            "host/files01.example.com@EXAMPLE.COM",
            "cifs/files01@EXAMPLE.COM",
        ]

    def test_nameservers(self):
        resolv = "search example.com\nnameserver 10.0.0.10\n# nameserver 1.1.1.1\nnameserver 10.0.0.11\n"
        assert parse_nameservers(resolv) == ["10.0.0.10", "10.0.0.11"]

    def test_already_joined(self):
        assert is_already_joined("realm: Already joined to this domain")
        assert not is_already_joined("realm: Couldn't join realm")


@pytest.fixture
def credentials():
    return AdminCredentials(user="Administrator", password="Passw0rd!")


@pytest.fixture
def runner(monkeypatch):
    """Replaces subprocess.run; scripted replies are keyed by the command prefix."""

    class Runner:
        def __init__(self):
            self.calls = []
            self.replies = {}

        def reply(self, prefix, returncode=0, output=""):
            self.replies[prefix] = (returncode, output)

        def __call__(self, cmd, **kwargs):
            self.calls.append((cmd, kwargs))
            for prefix, (rc, output) in self.replies.items():
                if tuple(cmd[: len(prefix)]) == prefix:
                    return subprocess.CompletedProcess(cmd, rc, stdout=output)
            return subprocess.CompletedProcess(cmd, 0, stdout="")

    fake = Runner()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


def test_environment_points_at_generated_files(config, runner):
    SubprocessDirectoryClient(config).domain_info()

    cmd, kwargs = runner.calls[0]
    assert cmd == ["net", "ads", "info"]
    assert kwargs["env"]["KRB5_CONFIG"] == str(config.krb5_config_path)
    assert kwargs["env"]["KRB5_KTNAME"] == config.keytab_name


def test_password_never_in_argv(config, runner, credentials):
    client = SubprocessDirectoryClient(config)

    client.join_domain(credentials)
    client.validate_credentials("EXAMPLE.COM", credentials)

    for cmd, _ in runner.calls:
        assert "Passw0rd!" not in " ".join(cmd)
    join_cmd, join_kwargs = runner.calls[0]
    assert join_cmd == ["net", "ads", "join", "-U", "Administrator"]
    assert join_kwargs["env"]["PASSWD"] == "Passw0rd!"
    kinit_cmd, kinit_kwargs = runner.calls[1]
    assert kinit_cmd == ["kinit", "Administrator@EXAMPLE.COM"]
    assert kinit_kwargs["input"] == "Passw0rd!\n"


def test_realm_join_already_joined(config, runner, credentials):
    runner.reply(("realm",), 1, "realm: Already joined to this domain")

    result = SubprocessDirectoryClient(config).join_realm("EXAMPLE.COM", credentials)

    assert result.outcome is JoinOutcome.ALREADY_JOINED
    assert result.succeeded


def test_realm_join_failure(config, runner, credentials):
    runner.reply(("realm",), 1, "realm: Couldn't join realm: Insufficient permissions")

    result = SubprocessDirectoryClient(config).join_realm("EXAMPLE.COM", credentials)

    assert result.outcome is JoinOutcome.FAILURE
    assert result.returncode == 1


def test_realm_status(config, runner):
    runner.reply(("realm",), 0, REALM_LIST)

    status = SubprocessDirectoryClient(config).realm_status("EXAMPLE.COM")

    assert status.is_configured


def test_host_mode_dns_registration_arguments(config, runner, credentials):
    SubprocessDirectoryClient(config).register_dns(credentials, "docker01.example.com", "10.0.0.50")

    assert runner.calls[0][0] == [
        "net", "ads", "dns", "register", "docker01.example.com", "10.0.0.50", "-U", "Administrator",
    ]


def test_list_keytab(config, runner):
    runner.reply(("klist",), 0, KLIST_K)

    listing = SubprocessDirectoryClient(config).list_keytab(config.keytab_path)

    assert listing.ok
    assert "cifs/files01@EXAMPLE.COM" in listing.principals
    assert runner.calls[0][0] == ["klist", "-k", str(config.keytab_path)]


def test_local_hostnames(config, runner):
    runner.reply(("hostname", "-f"), 0, "files01.example.com\n")
    runner.reply(("hostname", "-s"), 0, "files01\n")

    names = SubprocessDirectoryClient(config).local_hostnames()

    assert (names.fqdn, names.short) == ("files01.example.com", "files01")


def test_missing_tool(config, monkeypatch):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    client = SubprocessDirectoryClient(config)

    with pytest.raises(ToolUnavailableError):
        client.domain_info()
    assert client.test_membership() is False
