"""Lifecycle State Machine — joins AD exactly once, then only verifies.

First start (no marker):

    UNINITIALIZED -> JOINING -> INITIALIZED

    1. validate configuration          8. join domain + info query
    2. discover realm                  9. register / verify cifs SPNs
    3. verify forward DNS             10. register DNS entry
    4. validate admin credentials     11. create + verify keytab
    5. join realm (already joined ok) 12. schedule refresh
    6. confirm realm configured       13. write marker
    7. generate smb.conf

Every step aborts the sequence on failure.  The marker is written last, so
any failure leaves the machine UNINITIALIZED and the next start retries the
whole sequence.

Later starts (marker present):

    INITIALIZED -> INITIALIZED | DEGRADED

Only the membership test runs.  A failure is logged and reported as
DEGRADED but never blocks the hand-off to long-running services.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from adkeytab.config.generator import write_smb_conf
from adkeytab.config.models import AdminCredentials, KerberosConfig
from adkeytab.directory.base import DirectoryClient
from adkeytab.directory.models import JoinOutcome
from adkeytab.errors import (
    AdKeytabError,
    CredentialError,
    DiscoveryError,
    DnsRegistrationError,
    DomainJoinError,
    KeytabError,
    PrincipalError,
    RealmJoinError,
)
from adkeytab.lifecycle.principals import (
    CIFS_SERVICE,
    cifs_principals,
    missing_principals,
    required_principals,
)
from adkeytab.lifecycle.scheduler import REFRESH_INTERVAL, RefreshScheduler
from adkeytab.lifecycle.state import LifecycleState, StateStore

logger = logging.getLogger(__name__)


class JoinStep(str, Enum):
    """Ordered steps of the first-start join sequence."""

    VALIDATE_CONFIGURATION = "validate_configuration"
    DISCOVER_REALM = "discover_realm"
    VERIFY_DNS = "verify_dns"
    VALIDATE_CREDENTIALS = "validate_credentials"
    JOIN_REALM = "join_realm"
    VERIFY_REALM = "verify_realm"
    GENERATE_JOIN_CONFIG = "generate_join_config"
    JOIN_DOMAIN = "join_domain"
    REGISTER_PRINCIPALS = "register_principals"
    REGISTER_DNS = "register_dns"
    CREATE_KEYTAB = "create_keytab"
    SCHEDULE_REFRESH = "schedule_refresh"
    MARK_INITIALIZED = "mark_initialized"


def _indent(text: str, prefix: str = "       ") -> str:
    return "\n".join(prefix + line for line in text.splitlines())


class LifecycleStateMachine:
    """Runs the join sequence or the membership check, depending on the marker.

    Usage:
        machine = LifecycleStateMachine(config, SubprocessDirectoryClient(config),
                                        FileStateStore(), CronScheduler())
        state = machine.run()
    """

    def __init__(
        self,
        config: KerberosConfig,
        client: DirectoryClient,
        store: StateStore,
        scheduler: RefreshScheduler,
    ) -> None:
        self.config = config
        self.client = client
        self.store = store
        self.scheduler = scheduler
        self.state = LifecycleState.UNINITIALIZED
        self.completed_steps: list[JoinStep] = []
        self._credentials: AdminCredentials | None = None

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> LifecycleState:
        """Advance the lifecycle for this process start.

        Raises:
            AdKeytabError: a join step failed; the marker was not written.
        """
        if self.store.is_initialized():
            return self._verify_membership()

        with self.store.lock():
            # Another instance may have finished joining while we waited
            if self.store.is_initialized():
                return self._verify_membership()

            logger.info("CONTAINER: starting initialization")
            self.state = LifecycleState.JOINING
            try:
                for step, action in self._steps():
                    action()
                    self.completed_steps.append(step)
            except AdKeytabError:
                self.state = LifecycleState.UNINITIALIZED
                raise

        self.state = LifecycleState.INITIALIZED
        return self.state

    def _steps(self) -> list[tuple[JoinStep, Callable[[], None]]]:
        return [
            (JoinStep.VALIDATE_CONFIGURATION, self.validate_configuration),
            (JoinStep.DISCOVER_REALM, self.discover_realm),
            (JoinStep.VERIFY_DNS, self.verify_dns),
            (JoinStep.VALIDATE_CREDENTIALS, self.validate_credentials),
            (JoinStep.JOIN_REALM, self.join_realm),
            (JoinStep.VERIFY_REALM, self.verify_realm),
            (JoinStep.GENERATE_JOIN_CONFIG, self.generate_join_config),
            (JoinStep.JOIN_DOMAIN, self.join_domain),
            (JoinStep.REGISTER_PRINCIPALS, self.register_principals),
            (JoinStep.REGISTER_DNS, self.register_dns),
            (JoinStep.CREATE_KEYTAB, self.create_keytab),
            (JoinStep.SCHEDULE_REFRESH, self.schedule_refresh),
            (JoinStep.MARK_INITIALIZED, self.mark_initialized),
        ]

    def _verify_membership(self) -> LifecycleState:
        logger.info("CONTAINER: Already initialized - verifying AD membership")
        try:
            member = self.client.test_membership()
        except AdKeytabError as e:
            logger.debug("Membership test could not run: %s", e)
            member = False

        if member:
            logger.info("AD: Membership verified")
            self.state = LifecycleState.INITIALIZED
        else:
            logger.warning("AD membership test failed - container may need re-initialization")
            self.state = LifecycleState.DEGRADED
        return self.state

    @property
    def credentials(self) -> AdminCredentials:
        if self._credentials is None:
            self._credentials = self.config.credentials()
        return self._credentials

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def validate_configuration(self) -> None:
        self._credentials = self.config.credentials()

    def discover_realm(self) -> None:
        realm = self.config.realm
        logger.info("AD: Checking if the %s realm can be discovered ...", realm)
        result = self.client.discover(realm)
        if not result.ok:
            raise DiscoveryError(
                f"Failed to discover the {realm} realm.",
                diagnostics=result.output,
            )

    def verify_dns(self) -> None:
        realm = self.config.realm
        logger.info("AD: Verifying DNS resolution for %s ...", realm)
        result = self.client.resolve(realm)
        if result.ok:
            logger.info("   Resolved successfully")
            for line in result.output.splitlines():
                if line.startswith(("Name:", "Address:")):
                    logger.info("   %s", line)
            return

        nameservers = self.client.nameservers()
        servers = "\n".join(f"nameserver {ns}" for ns in nameservers) or "(none found)"
        raise DiscoveryError(
            f"Cannot resolve {realm} via DNS",
            diagnostics=(
                "DNS lookup output:\n"
                f"{_indent(result.output)}\n\n"
                "Configured DNS servers:\n"
                f"{_indent(servers)}"
            ),
        )

    def validate_credentials(self) -> None:
        logger.info("AD: Validating credentials with Kerberos KDC ...")
        result = self.client.validate_credentials(self.config.realm, self.credentials)
        if not result.ok:
            raise CredentialError(
                "Credential validation failed",
                diagnostics=(
                    f"Kerberos error: {result.output.strip()}\n"
                    "Check that KERBEROS_ADMIN_USER and KERBEROS_ADMIN_PASSWORD are correct"
                ),
            )
        logger.info("AD: Credentials validated successfully")

    def join_realm(self) -> None:
        realm = self.config.realm
        logger.info("AD: Joining the %s realm ...", realm)
        result = self.client.join_realm(realm, self.credentials)

        if result.outcome is JoinOutcome.SUCCESS:
            logger.info("AD: Realm join succeeded")
            return
        if result.outcome is JoinOutcome.ALREADY_JOINED:
            logger.info("AD: Already joined to realm (continuing)")
            return

        raise RealmJoinError(
            f"Realm join failed (exit code {result.returncode})",
            diagnostics=(
                f"Realm join output:\n{result.detail}\n\n"
                f"Recent realmd logs:\n{self.client.service_log_tail('realmd')}"
            ),
        )

    def verify_realm(self) -> None:
        logger.info("AD: Verifying realm configuration ...")
        status = self.client.realm_status(self.config.realm)
        if status.configured is None:
            raise RealmJoinError("Cannot query realm configuration", diagnostics=status.output)
        if not status.is_configured:
            raise RealmJoinError(
                "Realm is not configured",
                diagnostics=f"Full realm status:\n{status.output}",
            )
        logger.info("AD: Realm configuration verified (configured: %s)", status.configured)

    def generate_join_config(self) -> None:
        write_smb_conf(self.config)

    def join_domain(self) -> None:
        logger.info("AD: Joining the %s domain ...", self.config.domain)
        result = self.client.join_domain(self.credentials)
        if not result.ok:
            raise DomainJoinError(
                f"Failed to join the {self.config.realm} domain.",
                diagnostics=result.output,
            )
        info = self.client.domain_info()
        if not info.ok:
            raise DomainJoinError(
                f"Failed to join the {self.config.realm} domain.",
                diagnostics=info.output,
            )

    def register_principals(self) -> None:
        hostnames = self.client.local_hostnames()
        if self.config.cifs_enabled:
            logger.info("AD: Registering CIFS service principals ...")
            for spn in cifs_principals(hostnames):
                result = self.client.register_principal(spn, self.credentials)
                if not result.ok:
                    raise PrincipalError(
                        f"Failed to register CIFS SPN ({spn}).",
                        diagnostics=result.output,
                    )
                logger.info("   Registered: %s", spn)

        logger.info("AD: Verifying registered SPNs ...")
        registered = self.client.list_principals(hostnames.short, self.credentials)
        for spn in registered:
            logger.info("   %s", spn)

        if self.config.cifs_enabled:
            missing = missing_principals(cifs_principals(hostnames), registered)
            if missing:
                raise PrincipalError(
                    f"CIFS SPNs not registered on the machine account: {', '.join(missing)}"
                )

    def register_dns(self) -> None:
        identity = self.config.host_identity
        if identity:
            hostname, address = identity
            logger.info("AD: Registering host DNS entry: %s -> %s", hostname, address)
            result = self.client.register_dns(self.credentials, hostname, address)
            if not result.ok:
                raise DnsRegistrationError(
                    f"Failed to register DNS entry for host ({hostname} -> {address}) "
                    "to Active Directory.",
                    diagnostics=result.output,
                )
            return

        if self.config.host_identity_partial:
            logger.warning(
                "AD: HOST_IP and HOST_HOSTNAME must both be set or both be unset. "
                "Falling back to container DNS registration."
            )
        logger.info("AD: Registering container DNS entry")
        result = self.client.register_dns(self.credentials)
        if not result.ok:
            raise DnsRegistrationError(
                "Failed to register DNS entry for the container to Active Directory.",
                diagnostics=result.output,
            )

    def create_keytab(self) -> None:
        logger.info("AD: Creating Kerberos keytab ...")
        result = self.client.create_keytab(self.credentials)
        if not result.ok:
            raise KeytabError("Failed to create Kerberos keytab.", diagnostics=result.output)

        logger.info("AD: Verifying keytab contents ...")
        listing = self.client.list_keytab(self.config.keytab_path)
        if not listing.ok:
            raise KeytabError(
                f"Cannot list keytab {self.config.keytab_path}",
                diagnostics=listing.output,
            )
        for principal in listing.principals:
            logger.info("   %s", principal)

        hostnames = self.client.local_hostnames()
        missing = missing_principals(
            required_principals(hostnames, self.config.cifs_enabled),
            listing.principals,
        )
        missing_cifs = [p for p in missing if p.startswith(f"{CIFS_SERVICE}/")]
        if missing_cifs:
            raise PrincipalError(
                "CIFS principals missing from keytab after registration: "
                + ", ".join(missing_cifs)
            )
        if missing:
            raise KeytabError(f"Keytab is missing principals: {', '.join(missing)}")
        if self.config.cifs_enabled:
            logger.info("   CIFS principals found in keytab")

    def schedule_refresh(self) -> None:
        self.scheduler.schedule(REFRESH_INTERVAL)

    def mark_initialized(self) -> None:
        logger.info("AD: Successfully configured")
        self.store.mark_initialized()
