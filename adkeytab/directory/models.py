"""Result types returned by DirectoryClient implementations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class CommandResult:
    """Exit status and combined output of one external call."""

    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class JoinOutcome(str, Enum):
    """How a realm join ended."""

    SUCCESS = "success"
    ALREADY_JOINED = "already_joined"
    FAILURE = "failure"


@dataclass(frozen=True)
class JoinResult:
    """Tagged result of a realm join.

    "Already joined" is reported by the join tool as a failure; the client
    turns it into its own variant so callers never inspect output text.
    """

    outcome: JoinOutcome
    detail: str = ""
    returncode: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome is not JoinOutcome.FAILURE


@dataclass(frozen=True)
class RealmStatus:
    """Parsed ``realm list`` entry for one realm."""

    configured: str | None
    output: str = ""

    @property
    def is_configured(self) -> bool:
        return self.configured not in (None, "", "no")


@dataclass(frozen=True)
class HostNames:
    """Fully-qualified and short name of this host."""

    fqdn: str
    short: str


@dataclass(frozen=True)
class KeytabListing:
    """Principals found in a keytab, in listing order."""

    returncode: int
    principals: list[str] = field(default_factory=list)
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0
