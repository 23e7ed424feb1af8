"""Keytab Refresh Task — regenerates the keytab ahead of password rotation.

Safe to run any number of times and independent of the initialization
marker.  Each run:

    1. checks the administrator credentials are configured
    2. re-registers the cifs SPNs if something removed them from AD
    3. regenerates the keytab unconditionally (current password epoch)
    4. verifies the keytab holds every required principal
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from adkeytab.config.models import KerberosConfig
from adkeytab.directory.base import DirectoryClient
from adkeytab.errors import KeytabError, PrincipalError
from adkeytab.lifecycle.principals import (
    CIFS_SERVICE,
    cifs_principals,
    missing_principals,
    required_principals,
)
from adkeytab.lifecycle.state import StateStore

logger = logging.getLogger(__name__)


@dataclass
class RefreshReport:
    """What one refresh run did."""

    reregistered: list[str] = field(default_factory=list)
    principals: list[str] = field(default_factory=list)


class KeytabRefreshTask:
    """One refresh of the keytab.

    Usage:
        task = KeytabRefreshTask(config, SubprocessDirectoryClient(config))
        report = task.run()

    Args:
        config: Resolved configuration.
        client: Directory client.
        store: When given, the run holds the store's lifecycle lock so it
            cannot interleave with a join in progress.
    """

    def __init__(
        self,
        config: KerberosConfig,
        client: DirectoryClient,
        store: StateStore | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.store = store

    def run(self) -> RefreshReport:
        if self.store is None:
            return self._refresh()
        with self.store.lock():
            return self._refresh()

    def _refresh(self) -> RefreshReport:
        logger.info("Starting keytab refresh")
        credentials = self.config.credentials()
        hostnames = self.client.local_hostnames()
        report = RefreshReport()

        if self.config.cifs_enabled:
            registered = self.client.list_principals(hostnames.short, credentials)
            missing = missing_principals(cifs_principals(hostnames), registered)
            if missing:
                logger.warning("CIFS SPNs missing from AD, re-registering: %s", ", ".join(missing))
                # Re-register both forms, not only the missing one
                for spn in cifs_principals(hostnames):
                    result = self.client.register_principal(spn, credentials)
                    if not result.ok:
                        raise PrincipalError(
                            f"Failed to re-register CIFS SPN ({spn}).",
                            step="REFRESH",
                            diagnostics=result.output,
                        )
                    report.reregistered.append(spn)

                registered = self.client.list_principals(hostnames.short, credentials)
                still_missing = missing_principals(cifs_principals(hostnames), registered)
                if still_missing:
                    raise PrincipalError(
                        f"CIFS SPNs still missing after re-registration: {', '.join(still_missing)}",
                        step="REFRESH",
                    )

        result = self.client.create_keytab(credentials)
        if not result.ok:
            raise KeytabError("Failed to refresh keytab", step="REFRESH", diagnostics=result.output)

        listing = self.client.list_keytab(self.config.keytab_path)
        if not listing.ok:
            raise KeytabError(
                f"Cannot list keytab {self.config.keytab_path}",
                step="REFRESH",
                diagnostics=listing.output,
            )

        missing = missing_principals(
            required_principals(hostnames, self.config.cifs_enabled),
            listing.principals,
        )
        if any(p.startswith(f"{CIFS_SERVICE}/") for p in missing):
            raise PrincipalError(
                f"CIFS principals missing from refreshed keytab: {', '.join(missing)}",
                step="REFRESH",
            )
        if missing:
            raise KeytabError(
                f"Refreshed keytab is missing principals: {', '.join(missing)}",
                step="REFRESH",
            )

        report.principals = listing.principals
        logger.info("Keytab refreshed successfully")
        for principal in listing.principals:
            logger.info("   %s", principal)
        return report
