"""Production directory client — drives realmd, Samba's net, MIT krb5 and DNS tools.

All parsing of tool output lives in this module.  The lifecycle only sees
the typed results from ``adkeytab.directory.models``.

Tools used:
    realm       realmd discovery, realm join and status
    net         net ads join / info / testjoin / setspn / dns / keytab
    kinit       credential validation (kdestroy discards the ticket)
    klist       keytab listing
    nslookup    forward DNS verification
    journalctl  realmd log tail for join diagnostics
    hostname    fully-qualified and short host name
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import socket
import subprocess
from pathlib import Path

from adkeytab.config.models import AdminCredentials, KerberosConfig
from adkeytab.directory.base import DirectoryClient
from adkeytab.directory.models import (
    CommandResult,
    HostNames,
    JoinOutcome,
    JoinResult,
    KeytabListing,
    RealmStatus,
)
from adkeytab.errors import ToolUnavailableError

logger = logging.getLogger(__name__)

RESOLV_CONF = Path("/etc/resolv.conf")
ALREADY_JOINED = "Already joined"

_CONFIGURED = re.compile(r"^\s*configured:\s*(.*?)\s*$", re.MULTILINE)
_KEYTAB_ENTRY = re.compile(r"^\s*\d+\s+(\S+@\S+)")
_NAMESERVER = re.compile(r"^\s*nameserver\s+(\S+)", re.MULTILINE)


# ---------------------------------------------------------------------------
# Output parsers
# ---------------------------------------------------------------------------


def is_already_joined(output: str) -> bool:
    """realm join exits non-zero when the host is already a member."""
    return ALREADY_JOINED in output


def parse_realm_configured(output: str) -> str | None:
    """Value of the ``configured:`` line of ``realm list``, if any."""
    match = _CONFIGURED.search(output)
    return match.group(1) if match else None


def parse_spn_list(output: str) -> list[str]:
    """SPNs from ``net ads setspn list``.

    The listing starts with a header naming the account's DN; every SPN is
    on its own indented line in ``service/host`` form.
    """
    spns = []
    for line in output.splitlines():
        entry = line.strip()
        if not entry or " " in entry or "/" not in entry:
            continue
        spns.append(entry)
    return spns


def parse_keytab_listing(output: str) -> list[str]:
    """Principals from ``klist -k``, duplicates (one per enctype/kvno) removed."""
    principals: list[str] = []
    for line in output.splitlines():
        match = _KEYTAB_ENTRY.match(line)
        if match and match.group(1) not in principals:
            principals.append(match.group(1))
    return principals


def parse_nameservers(resolv_conf: str) -> list[str]:
    return _NAMESERVER.findall(resolv_conf)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SubprocessDirectoryClient(DirectoryClient):
    """Runs the system tools as subprocesses.

    The generated krb5.conf and keytab locations are exported to every
    child through KRB5_CONFIG / KRB5_KTNAME.  Administrator passwords go
    through stdin or the PASSWD variable, never through argv.

    Usage:
        client = SubprocessDirectoryClient(config)
        client.join_realm(config.realm, config.credentials())
    """

    def __init__(self, config: KerberosConfig) -> None:
        self.config = config
        self.env = dict(
            os.environ,
            KRB5_CONFIG=str(config.krb5_config_path),
            KRB5_KTNAME=config.keytab_name,
        )

    def _run(
        self,
        cmd: list[str],
        *,
        stdin: str | None = None,
        credentials: AdminCredentials | None = None,
    ) -> CommandResult:
        env = self.env
        if credentials is not None:
            env = dict(env, PASSWD=credentials.password.get_secret_value())

        logger.debug("Running: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                env=env,
                check=False,
            )
        except FileNotFoundError as e:
            raise ToolUnavailableError(f"{cmd[0]} is not installed") from e

        return CommandResult(returncode=proc.returncode, output=proc.stdout or "")

    def _net(self, *args: str, credentials: AdminCredentials | None = None) -> CommandResult:
        cmd = ["net", *args]
        if credentials is not None:
            cmd.extend(["-U", credentials.user])
        return self._run(cmd, credentials=credentials)

    # Discovery -----------------------------------------------------------

    def discover(self, realm: str) -> CommandResult:
        return self._run(["realm", "--install", "/", "-v", "discover", realm])

    def resolve(self, name: str) -> CommandResult:
        return self._run(["nslookup", name])

    def nameservers(self) -> list[str]:
        try:
            return parse_nameservers(RESOLV_CONF.read_text())
        except OSError:
            return []

    def local_hostnames(self) -> HostNames:
        fqdn = self._run(["hostname", "-f"])
        short = self._run(["hostname", "-s"])
        if fqdn.ok and short.ok and fqdn.output.strip() and short.output.strip():
            return HostNames(fqdn=fqdn.output.strip(), short=short.output.strip())

        logger.debug("hostname failed, falling back to the socket module")
        name = socket.getfqdn()
        return HostNames(fqdn=name, short=name.split(".", 1)[0])

    # Credentials and joins -----------------------------------------------

    def validate_credentials(self, realm: str, credentials: AdminCredentials) -> CommandResult:
        result = self._run(
            ["kinit", credentials.principal(realm)],
            stdin=credentials.password.get_secret_value() + "\n",
        )
        if result.ok:
            cleanup = self._run(["kdestroy"])
            if not cleanup.ok:
                logger.debug("Note: No credential cache to clean up (this is fine)")
        return result

    def join_realm(self, realm: str, credentials: AdminCredentials) -> JoinResult:
        result = self._run(
            ["realm", "--install", "/", "-v", "join", realm, "-U", credentials.user],
            stdin=credentials.password.get_secret_value() + "\n",
        )
        if result.ok:
            return JoinResult(JoinOutcome.SUCCESS, result.output)
        if is_already_joined(result.output):
            return JoinResult(JoinOutcome.ALREADY_JOINED, result.output, result.returncode)
        return JoinResult(JoinOutcome.FAILURE, result.output, result.returncode)

    def realm_status(self, realm: str) -> RealmStatus:
        result = self._run(["realm", "--install", "/", "list", realm])
        if not result.ok:
            return RealmStatus(configured=None, output=result.output)
        return RealmStatus(configured=parse_realm_configured(result.output), output=result.output)

    def join_domain(self, credentials: AdminCredentials) -> CommandResult:
        return self._net("ads", "join", credentials=credentials)

    def domain_info(self) -> CommandResult:
        return self._net("ads", "info")

    def test_membership(self) -> bool:
        try:
            return self._net("ads", "testjoin").ok
        except ToolUnavailableError:
            logger.debug("net is not installed", exc_info=True)
            return False

    # Registration --------------------------------------------------------

    def register_principal(self, spn: str, credentials: AdminCredentials) -> CommandResult:
        return self._net("ads", "setspn", "add", spn, credentials=credentials)

    def list_principals(self, account: str, credentials: AdminCredentials) -> list[str]:
        result = self._net("ads", "setspn", "list", account, credentials=credentials)
        if not result.ok:
            logger.warning("AD: Cannot list SPNs for %s: %s", account, result.output.strip())
            return []
        return parse_spn_list(result.output)

    def register_dns(
        self,
        credentials: AdminCredentials,
        hostname: str | None = None,
        address: str | None = None,
    ) -> CommandResult:
        args = ["ads", "dns", "register"]
        if hostname and address:
            args.extend([hostname, address])
        return self._net(*args, credentials=credentials)

    # Keytab --------------------------------------------------------------

    def create_keytab(self, credentials: AdminCredentials) -> CommandResult:
        return self._net("ads", "keytab", "create", credentials=credentials)

    def list_keytab(self, path: Path) -> KeytabListing:
        result = self._run(["klist", "-k", str(path)])
        principals = parse_keytab_listing(result.output) if result.ok else []
        return KeytabListing(returncode=result.returncode, principals=principals, output=result.output)

    # Diagnostics ---------------------------------------------------------

    def service_log_tail(self, unit: str, lines: int = 20) -> str:
        if shutil.which("journalctl") is None:
            return "(journalctl not available in this container)"
        result = self._run(["journalctl", "-u", unit, "--no-pager", "-n", str(lines)])
        if not result.ok:
            return f"({unit} logs unavailable)"
        return result.output
