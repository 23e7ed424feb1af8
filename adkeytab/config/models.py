"""Pydantic models for the resolved configuration.

``KerberosConfig`` is built once at startup by the resolver and handed to
every component.  Nothing downstream reads the process environment.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr

from adkeytab.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Fixed locations
# ---------------------------------------------------------------------------

STATE_DIR = Path("/var/lib/kerberos")
INITIALIZED_MARKER = STATE_DIR / "initialized"
LIFECYCLE_LOCK = STATE_DIR / "lifecycle.lock"
REFRESH_LOG = Path("/var/log/keytab-refresh.log")
WINBIND_SOCKET = Path("/var/run/samba/winbindd/pipe")

DEFAULT_KRB5_CONFIG = Path("/etc/krb5.conf")
DEFAULT_KEYTAB = "FILE:/etc/krb5.keytab"
DEFAULT_SMB_CONFIG = Path("/etc/samba/smb.conf")
DEFAULT_PROXY_PORT = 9999


class AdminCredentials(BaseModel):
    """Administrator identity used for every privileged directory operation."""

    model_config = {"frozen": True}

    user: str
    password: SecretStr

    def principal(self, realm: str) -> str:
        """Return ``user@REALM``."""
        return f"{self.user}@{realm}"


class KerberosConfig(BaseModel):
    """Fully resolved configuration for one machine identity.

    Usage:
        config = resolve_config(os.environ)
        write_krb5_conf(config)
    """

    model_config = {"frozen": True}

    # Realm identity
    realm: str = Field(min_length=1, description="Kerberos realm, e.g. 'EXAMPLE.COM'")
    domain: str = Field(description="DNS domain, defaults to lower(realm)")
    workgroup: str = Field(description="NetBIOS workgroup, defaults to first realm label")
    kdc_servers: list[str] = Field(
        default_factory=list,
        description="Explicit KDCs; empty means auto-discovery through DNS",
    )
    ticket_lifetime: str = Field(default="24h")
    renew_lifetime: str = Field(default="7d")
    dns_lookup_kdc: bool = Field(default=True)
    dns_lookup_realm: bool = Field(default=False)
    forwardable: bool = Field(default=True)
    rdns: bool = Field(default=False)

    # Administrator
    admin_user: str | None = Field(default=None)
    admin_password: SecretStr | None = Field(default=None)

    # Features
    cifs_enabled: bool = Field(
        default=True,
        description="Register and verify cifs/ service principals",
    )

    # Locations
    krb5_config_path: Path = Field(default=DEFAULT_KRB5_CONFIG)
    keytab_path: Path = Field(default=Path("/etc/krb5.keytab"))
    smb_config_path: Path = Field(default=DEFAULT_SMB_CONFIG)

    # DNS registration in host-identity mode
    host_ip: str | None = Field(default=None)
    host_hostname: str | None = Field(default=None)

    # Credential proxy
    proxy_port: int = Field(default=DEFAULT_PROXY_PORT, ge=1, le=65535)

    @property
    def keytab_name(self) -> str:
        """Keytab location in KRB5_KTNAME form."""
        return f"FILE:{self.keytab_path}"

    @property
    def host_identity(self) -> tuple[str, str] | None:
        """(hostname, address) when both halves of the host identity are set."""
        if self.host_hostname and self.host_ip:
            return self.host_hostname, self.host_ip
        return None

    @property
    def host_identity_partial(self) -> bool:
        """True when exactly one of HOST_IP / HOST_HOSTNAME is set."""
        return bool(self.host_ip) != bool(self.host_hostname)

    def credentials(self) -> AdminCredentials:
        """Return the administrator credentials or fail naming the missing value."""
        if not self.admin_password:
            raise ConfigurationError("KERBEROS_ADMIN_PASSWORD")
        if not self.admin_user:
            raise ConfigurationError("KERBEROS_ADMIN_USER")
        return AdminCredentials(user=self.admin_user, password=self.admin_password)
