"""Scripted directory — an in-memory stand-in for Active Directory.

Keeps just enough state (realm membership, domain membership, registered
SPNs, keytab contents) to answer every DirectoryClient call realistically,
so the lifecycle can be exercised end-to-end without a domain controller.
One instance plays the role of the directory; several lifecycle runs against
the same instance behave like several containers against one AD.
"""

from __future__ import annotations

from pathlib import Path

from adkeytab.config.models import AdminCredentials
from adkeytab.directory.base import DirectoryClient
from adkeytab.directory.models import (
    CommandResult,
    HostNames,
    JoinOutcome,
    JoinResult,
    KeytabListing,
    RealmStatus,
)


class ScriptedDirectoryClient(DirectoryClient):
    """Simulated directory client.

    Usage:
        client = ScriptedDirectoryClient(realm="EXAMPLE.COM")
        client.fail("create_keytab", "ERROR: kerberos keytab create failed")
        ...
        assert client.calls[0] == "discover"

    Args:
        realm: Realm appended to keytab principals.
        hostnames: Names reported for this host.
        nameservers: Resolver nameservers reported for diagnostics.
    """

    def __init__(
        self,
        realm: str = "EXAMPLE.COM",
        hostnames: HostNames | None = None,
        nameservers: list[str] | None = None,
    ) -> None:
        self.realm = realm
        self.hostnames = hostnames or HostNames(fqdn="files01.example.com", short="files01")
        self._nameservers = nameservers if nameservers is not None else ["10.0.0.10"]

        self.realm_joined = False
        self.domain_joined = False
        self.member = True
        self.spns: list[str] = []
        self.keytab: list[str] | None = None
        self.keytab_omits: set[str] = set()
        self.dns_registrations: list[tuple[str | None, str | None]] = []

        self.calls: list[str] = []
        self.failures: dict[str, str] = {}

    # Scripting -----------------------------------------------------------

    def fail(self, operation: str, output: str = "simulated failure") -> None:
        """Make ``operation`` return a failure with ``output``."""
        self.failures[operation] = output

    def remove_spn(self, spn: str) -> None:
        """Drop an SPN out-of-band, as another admin tool might."""
        self.spns = [s for s in self.spns if s.lower() != spn.lower()]

    def _record(self, operation: str) -> CommandResult | None:
        self.calls.append(operation)
        if operation in self.failures:
            return CommandResult(returncode=1, output=self.failures[operation])
        return None

    def _host_spns(self) -> list[str]:
        if not self.domain_joined:
            return []
        return [
            f"HOST/{self.hostnames.fqdn}",
            f"HOST/{self.hostnames.short.upper()}",
        ]

    # Discovery -----------------------------------------------------------

    def discover(self, realm: str) -> CommandResult:
        return self._record("discover") or CommandResult(
            0, f"{realm.lower()}\n  type: kerberos\n  realm-name: {realm}\n  configured: no\n"
        )

    def resolve(self, name: str) -> CommandResult:
        return self._record("resolve") or CommandResult(
            0, f"Server:\t\t10.0.0.10\nAddress:\t10.0.0.10#53\n\nName:\t{name}\nAddress: 10.0.0.11\n"
        )

    def nameservers(self) -> list[str]:
        return list(self._nameservers)

    def local_hostnames(self) -> HostNames:
        return self.hostnames

    # Credentials and joins -----------------------------------------------

    def validate_credentials(self, realm: str, credentials: AdminCredentials) -> CommandResult:
        return self._record("validate_credentials") or CommandResult(0)

    def join_realm(self, realm: str, credentials: AdminCredentials) -> JoinResult:
        failed = self._record("join_realm")
        if failed:
            return JoinResult(JoinOutcome.FAILURE, failed.output, failed.returncode)
        if self.realm_joined:
            return JoinResult(JoinOutcome.ALREADY_JOINED, "realm: Already joined to this domain", 1)
        self.realm_joined = True
        return JoinResult(JoinOutcome.SUCCESS, f" * Successfully enrolled machine in realm {realm}")

    def realm_status(self, realm: str) -> RealmStatus:
        failed = self._record("realm_status")
        if failed:
            return RealmStatus(configured=None, output=failed.output)
        configured = "kerberos-member" if self.realm_joined else "no"
        return RealmStatus(configured=configured, output=f"{realm.lower()}\n  configured: {configured}\n")

    def join_domain(self, credentials: AdminCredentials) -> CommandResult:
        failed = self._record("join_domain")
        if failed:
            return failed
        self.domain_joined = True
        return CommandResult(0, f"Joined '{self.hostnames.short.upper()}' to dns domain '{self.realm.lower()}'")

    def domain_info(self) -> CommandResult:
        failed = self._record("domain_info")
        if failed:
            return failed
        if not self.domain_joined:
            return CommandResult(1, "Didn't find the ldap server!")
        return CommandResult(0, f"Realm: {self.realm}\nBind Path: dc={self.realm.lower().replace('.', ',dc=')}\n")

    def test_membership(self) -> bool:
        if self._record("test_membership"):
            return False
        return self.domain_joined and self.member

    # Registration --------------------------------------------------------

    def register_principal(self, spn: str, credentials: AdminCredentials) -> CommandResult:
        failed = self._record("register_principal")
        if failed:
            return failed
        if spn.lower() not in (s.lower() for s in self.spns):
            self.spns.append(spn)
        return CommandResult(0, f"Successfully added {spn}")

    def list_principals(self, account: str, credentials: AdminCredentials) -> list[str]:
        if self._record("list_principals"):
            return []
        return self._host_spns() + list(self.spns)

    def register_dns(
        self,
        credentials: AdminCredentials,
        hostname: str | None = None,
        address: str | None = None,
    ) -> CommandResult:
        failed = self._record("register_dns")
        if failed:
            return failed
        self.dns_registrations.append((hostname, address))
        return CommandResult(0, "Successfully registered hostname with DNS")

    # Keytab --------------------------------------------------------------

    def create_keytab(self, credentials: AdminCredentials) -> CommandResult:
        failed = self._record("create_keytab")
        if failed:
            return failed
        principals = [*self._host_spns(), *self.spns]
        self.keytab = [
            f"{spn}@{self.realm}"
            for spn in principals
            if spn.lower() not in self.keytab_omits
        ]
        return CommandResult(0)

    def list_keytab(self, path: Path) -> KeytabListing:
        failed = self._record("list_keytab")
        if failed:
            return KeytabListing(returncode=failed.returncode, output=failed.output)
        if self.keytab is None:
            return KeytabListing(
                returncode=1,
                output=f"klist: Key table file '{path}' not found while starting keytab scan",
            )
        return KeytabListing(returncode=0, principals=list(self.keytab))

    # Diagnostics ---------------------------------------------------------

    def service_log_tail(self, unit: str, lines: int = 20) -> str:
        return f"-- No entries for {unit} --"
