"""Base class for all directory clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from adkeytab.config.models import AdminCredentials
from adkeytab.directory.models import (
    CommandResult,
    HostNames,
    JoinResult,
    KeytabListing,
    RealmStatus,
)


class DirectoryClient(ABC):
    """Capability interface over the external directory tooling.

    The lifecycle, refresh task and health probe only talk to the directory
    service through these methods.  Each implementation must implement
    every operation below; ``SubprocessDirectoryClient`` runs the real
    tools and ``ScriptedDirectoryClient`` keeps an in-memory directory.
    """

    # Discovery -----------------------------------------------------------

    @abstractmethod
    def discover(self, realm: str) -> CommandResult:
        """Check that domain controllers for ``realm`` can be found."""
        ...

    @abstractmethod
    def resolve(self, name: str) -> CommandResult:
        """Forward DNS lookup of ``name``."""
        ...

    @abstractmethod
    def nameservers(self) -> list[str]:
        """Nameservers the resolver is configured with."""
        ...

    @abstractmethod
    def local_hostnames(self) -> HostNames:
        ...

    # Credentials and joins -----------------------------------------------

    @abstractmethod
    def validate_credentials(self, realm: str, credentials: AdminCredentials) -> CommandResult:
        """Obtain a ticket for the administrator and discard it right away."""
        ...

    @abstractmethod
    def join_realm(self, realm: str, credentials: AdminCredentials) -> JoinResult:
        ...

    @abstractmethod
    def realm_status(self, realm: str) -> RealmStatus:
        ...

    @abstractmethod
    def join_domain(self, credentials: AdminCredentials) -> CommandResult:
        ...

    @abstractmethod
    def domain_info(self) -> CommandResult:
        ...

    @abstractmethod
    def test_membership(self) -> bool:
        """Non-mutating check that the machine account is still accepted."""
        ...

    # Registration --------------------------------------------------------

    @abstractmethod
    def register_principal(self, spn: str, credentials: AdminCredentials) -> CommandResult:
        ...

    @abstractmethod
    def list_principals(self, account: str, credentials: AdminCredentials) -> list[str]:
        """Service principal names registered on ``account``."""
        ...

    @abstractmethod
    def register_dns(
        self,
        credentials: AdminCredentials,
        hostname: str | None = None,
        address: str | None = None,
    ) -> CommandResult:
        """Register a DNS entry; without arguments the local identity is used."""
        ...

    # Keytab --------------------------------------------------------------

    @abstractmethod
    def create_keytab(self, credentials: AdminCredentials) -> CommandResult:
        ...

    @abstractmethod
    def list_keytab(self, path: Path) -> KeytabListing:
        ...

    # Diagnostics ---------------------------------------------------------

    def service_log_tail(self, unit: str, lines: int = 20) -> str:
        """Recent log lines of a system service, empty when unavailable."""
        return ""
