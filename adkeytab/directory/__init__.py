"""Directory clients — the only boundary to the external AD tooling."""

from adkeytab.directory.base import DirectoryClient
from adkeytab.directory.models import (
    CommandResult,
    HostNames,
    JoinOutcome,
    JoinResult,
    KeytabListing,
    RealmStatus,
)
from adkeytab.directory.net_ads import SubprocessDirectoryClient
from adkeytab.directory.scripted import ScriptedDirectoryClient

__all__ = [
    "DirectoryClient",
    "SubprocessDirectoryClient",
    "ScriptedDirectoryClient",
    "CommandResult",
    "HostNames",
    "JoinOutcome",
    "JoinResult",
    "KeytabListing",
    "RealmStatus",
]
