"""Error taxonomy and process exit codes.

Every failure of the join sequence maps to one small-integer exit code so
that supervisors can tell a DNS problem from a bad password without reading
logs.  The codes are part of the external contract:

    0  success
    1  unknown error
    2  required configuration missing
    3  realm discovery or DNS verification failed
    4  credential validation or realm join failed
    5  domain join failed
    6  DNS registration failed
    7  keytab creation failed
    8  service principal registration or verification failed
"""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes of the entrypoint."""

    SUCCESS = 0
    UNKNOWN = 1
    MISSING_CONFIGURATION = 2
    DISCOVERY_FAILED = 3
    CREDENTIAL_OR_REALM_JOIN_FAILED = 4
    DOMAIN_JOIN_FAILED = 5
    DNS_REGISTRATION_FAILED = 6
    KEYTAB_CREATION_FAILED = 7
    PRINCIPAL_FAILED = 8


class AdKeytabError(Exception):
    """Base class for every failure the lifecycle can report.

    Args:
        message: One-line description of what went wrong.
        step: Short label of the step that failed, e.g. ``"AD"``.
        diagnostics: Captured tool output or log tail, shown after the message.
    """

    exit_code: ExitCode = ExitCode.UNKNOWN

    def __init__(self, message: str, *, step: str = "AD", diagnostics: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.step = step
        self.diagnostics = diagnostics

    def __str__(self) -> str:
        return f"{self.step}: {self.message}"


class ConfigurationError(AdKeytabError):
    """A required value is missing or an override is malformed."""

    exit_code = ExitCode.MISSING_CONFIGURATION

    def __init__(self, field: str, reason: str = "must be defined") -> None:
        super().__init__(f"{field} {reason}", step="CONFIG")
        self.field = field


class GenerationError(AdKeytabError):
    """A generated configuration file came out empty or missing."""

    exit_code = ExitCode.UNKNOWN

    def __init__(self, path: str) -> None:
        super().__init__(f"Generated {path} is empty or missing", step="CONFIG")
        self.path = path


class ToolUnavailableError(AdKeytabError):
    """An external command could not be executed at all."""

    exit_code = ExitCode.UNKNOWN


class DiscoveryError(AdKeytabError):
    exit_code = ExitCode.DISCOVERY_FAILED


class CredentialError(AdKeytabError):
    exit_code = ExitCode.CREDENTIAL_OR_REALM_JOIN_FAILED


class RealmJoinError(AdKeytabError):
    exit_code = ExitCode.CREDENTIAL_OR_REALM_JOIN_FAILED


class DomainJoinError(AdKeytabError):
    exit_code = ExitCode.DOMAIN_JOIN_FAILED


class DnsRegistrationError(AdKeytabError):
    exit_code = ExitCode.DNS_REGISTRATION_FAILED


class KeytabError(AdKeytabError):
    exit_code = ExitCode.KEYTAB_CREATION_FAILED


class PrincipalError(AdKeytabError):
    """A service principal could not be registered, or is absent after registration."""

    exit_code = ExitCode.PRINCIPAL_FAILED


class ProxyStartupError(AdKeytabError):
    """The winbind socket did not appear before the startup deadline."""

    exit_code = ExitCode.UNKNOWN
