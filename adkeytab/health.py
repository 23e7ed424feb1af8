"""Health Probe — is the keytab listable and the machine account accepted?

Cheap enough to be run repeatedly by a container health check.  The probe
has no start-up grace of its own; the supervisor's start period covers the
time the join sequence needs.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from adkeytab.config.models import KerberosConfig
from adkeytab.directory.base import DirectoryClient
from adkeytab.errors import AdKeytabError


class HealthReport(BaseModel):
    """Result of one probe."""

    keytab_ok: bool = False
    membership_ok: bool = False
    principals: int = Field(default=0, description="Distinct principals in the keytab")
    detail: str = ""

    @property
    def healthy(self) -> bool:
        return self.keytab_ok and self.membership_ok


class HealthProbe:
    """Point-in-time health check.

    Usage:
        report = HealthProbe(config, client).check()
        sys.exit(0 if report.healthy else 1)
    """

    def __init__(self, config: KerberosConfig, client: DirectoryClient) -> None:
        self.config = config
        self.client = client

    def check(self) -> HealthReport:
        report = HealthReport()
        problems = []

        try:
            listing = self.client.list_keytab(self.config.keytab_path)
            report.keytab_ok = listing.ok and bool(listing.principals)
            report.principals = len(listing.principals)
            if not report.keytab_ok:
                problems.append(f"keytab {self.config.keytab_path} is not listable")
        except AdKeytabError as e:
            problems.append(str(e))

        try:
            report.membership_ok = self.client.test_membership()
            if not report.membership_ok:
                problems.append("machine account failed the membership test")
        except AdKeytabError as e:
            problems.append(str(e))

        report.detail = "; ".join(problems)
        return report
