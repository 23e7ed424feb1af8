"""Configuration Resolver — turns an environment mapping into a KerberosConfig.

Precedence is first-defined-wins: an explicit, non-empty value beats the
computed default.  The workgroup default is the first label of the realm,
which is known to be wrong for some multi-label realms
(``CHILD.PARENT.COM`` yields ``CHILD`` even where the NetBIOS name is
``PARENT``).  Operators override with KERBEROS_WORKGROUP.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path

from pydantic import ValidationError

from adkeytab.config.models import (
    DEFAULT_KEYTAB,
    DEFAULT_KRB5_CONFIG,
    DEFAULT_PROXY_PORT,
    DEFAULT_SMB_CONFIG,
    KerberosConfig,
)
from adkeytab.errors import ConfigurationError

KEYTAB_PREFIX = "FILE:"
_STORAGE_TYPE = re.compile(r"^[A-Z][A-Z0-9_]*:")

# Model field -> environment variable
ENV_NAMES: dict[str, str] = {
    "realm": "KERBEROS_REALM",
    "domain": "KERBEROS_DOMAIN",
    "workgroup": "KERBEROS_WORKGROUP",
    "kdc_servers": "KERBEROS_KDC_SERVERS",
    "ticket_lifetime": "KERBEROS_TICKET_LIFETIME",
    "renew_lifetime": "KERBEROS_RENEW_LIFETIME",
    "dns_lookup_kdc": "KERBEROS_DNS_LOOKUP_KDC",
    "dns_lookup_realm": "KERBEROS_DNS_LOOKUP_REALM",
    "forwardable": "KERBEROS_FORWARDABLE",
    "rdns": "KERBEROS_RDNS",
    "admin_user": "KERBEROS_ADMIN_USER",
    "admin_password": "KERBEROS_ADMIN_PASSWORD",
    "cifs_enabled": "KERBEROS_CIFS_ENABLED",
    "krb5_config_path": "KRB5_CONFIG",
    "keytab_path": "KRB5_KTNAME",
    "smb_config_path": "KERBEROS_SMB_CONF",
    "host_ip": "HOST_IP",
    "host_hostname": "HOST_HOSTNAME",
    "proxy_port": "WINBIND_PROXY_PORT",
}

_VERBATIM = frozenset({"admin_password"})

_DEFAULTS: dict[str, str] = {
    "ticket_lifetime": "24h",
    "renew_lifetime": "7d",
    "dns_lookup_kdc": "true",
    "dns_lookup_realm": "false",
    "forwardable": "true",
    "rdns": "false",
    "cifs_enabled": "true",
    "krb5_config_path": str(DEFAULT_KRB5_CONFIG),
    "keytab_path": DEFAULT_KEYTAB,
    "smb_config_path": str(DEFAULT_SMB_CONFIG),
    "proxy_port": str(DEFAULT_PROXY_PORT),
}


def default_domain(realm: str) -> str:
    """EXAMPLE.COM -> example.com"""
    return realm.lower()


def default_workgroup(realm: str) -> str:
    """First label of the realm: EXAMPLE.COM -> EXAMPLE, CHILD.PARENT.COM -> CHILD."""
    return realm.split(".", 1)[0]


def keytab_path_from_name(name: str) -> Path:
    """Strip the ``FILE:`` storage prefix from a KRB5_KTNAME value.

    Only file-backed keytabs are supported.  A bare path is accepted as-is,
    any other storage type (``MEMORY:``, ``KEYRING:`` ...) is rejected.
    """
    if name.startswith(KEYTAB_PREFIX):
        name = name[len(KEYTAB_PREFIX):]
    elif _STORAGE_TYPE.match(name):
        raise ConfigurationError(
            ENV_NAMES["keytab_path"],
            f"must use the {KEYTAB_PREFIX} storage type (got {name.split(':', 1)[0]}:)",
        )
    if not name:
        raise ConfigurationError(ENV_NAMES["keytab_path"], "names an empty path")
    return Path(name)


def _lookup(environ: Mapping[str, str], field: str) -> str | None:
    value = environ.get(ENV_NAMES[field], "")
    if not value.strip():
        return _DEFAULTS.get(field)
    # Secrets are passed through byte-for-byte
    if field in _VERBATIM:
        return value
    return value.strip()


def resolve_config(
    environ: Mapping[str, str],
    *,
    require_credentials: bool = True,
) -> KerberosConfig:
    """Build a validated KerberosConfig from ``environ``.

    Args:
        environ: Name -> value mapping, normally ``os.environ``.
        require_credentials: Also fail when the administrator user or
            password is missing.  Commands that never act as the
            administrator pass False; the lifecycle checks again itself.

    Raises:
        ConfigurationError: naming the first missing or malformed variable.
    """
    realm = _lookup(environ, "realm")
    if not realm:
        raise ConfigurationError(ENV_NAMES["realm"])

    values: dict[str, object] = {
        field: value
        for field in ENV_NAMES
        if (value := _lookup(environ, field)) is not None
    }
    values["realm"] = realm
    values.setdefault("domain", default_domain(realm))
    values.setdefault("workgroup", default_workgroup(realm))
    values["kdc_servers"] = str(values.get("kdc_servers", "")).split()
    values["keytab_path"] = keytab_path_from_name(str(values["keytab_path"]))

    try:
        config = KerberosConfig.model_validate(values)
    except ValidationError as e:
        field = str(e.errors()[0]["loc"][0])
        raise ConfigurationError(ENV_NAMES.get(field, field), "is invalid") from e

    if require_credentials:
        config.credentials()
    return config
