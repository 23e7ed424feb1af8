"""Config File Generator — renders krb5.conf and smb.conf.

Both files are generated output.  krb5.conf is overwritten on every process
start so it always tracks the environment; smb.conf is only written right
before the domain join (and again by the credential proxy when it applies
its access allow-list).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from adkeytab.config.models import KerberosConfig
from adkeytab.errors import GenerationError

logger = logging.getLogger(__name__)

WINBIND_LOCATOR = "/usr/lib/x86_64-linux-gnu/samba/krb5/winbind_krb5_locator.so"
FILE_MODE = 0o644


def _flag(value: bool) -> str:
    return "true" if value else "false"


def render_krb5_conf(config: KerberosConfig) -> str:
    """Render the Kerberos client configuration.

    The ``[realms]`` section is only emitted when KDC servers were given
    explicitly.  Without it, the locator plugin and DNS SRV records are
    used to find KDCs.
    """
    lines = [
        "[domain_realm]",
        f".{config.domain} = {config.realm}",
        f"{config.domain} = {config.realm}",
        "",
        "[libdefaults]",
        "default_ccache_name = FILE:/tmp/krb5cc_%{uid}",
        f"default_realm = {config.realm}",
        f"dns_lookup_kdc = {_flag(config.dns_lookup_kdc)}",
        f"dns_lookup_realm = {_flag(config.dns_lookup_realm)}",
        f"forwardable = {_flag(config.forwardable)}",
        "pkinit_anchors = FILE:/etc/ssl/certs/ca-certificates.crt",
        f"rdns = {_flag(config.rdns)}",
        f"renew_lifetime = {config.renew_lifetime}",
        "spake_preauth_groups = edwards25519",
        f"ticket_lifetime = {config.ticket_lifetime}",
        "udp_preference_limit = 0",
        "",
        "[logging]",
        "admin_server = FILE:/var/log/kadmind.log",
        "default = FILE:/var/log/krb5libs.log",
        "kdc = FILE:/var/log/krb5kdc.log",
        "",
        "[plugins]",
        "localauth = {",
        "\tenable_only = winbind",
        f"\tmodule = winbind:{WINBIND_LOCATOR}",
        "}",
    ]

    if config.kdc_servers:
        lines.extend([
            "",
            "[realms]",
            f"{config.realm} = {{",
            f"\tdefault_domain = {config.domain}",
        ])
        lines.extend(f"\tkdc = {kdc}" for kdc in config.kdc_servers)
        lines.append("}")

    return "\n".join(lines) + "\n"


def render_smb_conf(
    config: KerberosConfig,
    allow_list: Sequence[str] | None = None,
) -> str:
    """Render the domain-join configuration.

    Args:
        config: Resolved configuration.
        allow_list: Networks allowed to reach the identity daemon.  When
            given, a ``hosts allow`` directive is added; winbind enforces it.
    """
    lines = [
        "[global]",
        f"   workgroup = {config.workgroup}",
        f"   realm = {config.realm}",
        "   security = ads",
        "   kerberos method = system keytab",
    ]
    if allow_list:
        lines.append(f"   hosts allow = {' '.join(allow_list)}")
    return "\n".join(lines) + "\n"


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(FILE_MODE)

    if not path.exists() or path.stat().st_size == 0:
        raise GenerationError(str(path))
    return path


def write_krb5_conf(config: KerberosConfig) -> Path:
    """Overwrite the Kerberos client configuration file."""
    logger.info("Generating %s from environment variables", config.krb5_config_path)
    path = _write(config.krb5_config_path, render_krb5_conf(config))
    logger.info("%s generated successfully", path)
    return path


def write_smb_conf(
    config: KerberosConfig,
    allow_list: Sequence[str] | None = None,
) -> Path:
    """Overwrite the domain-join configuration file."""
    logger.info("AD: Generating %s for domain join ...", config.smb_config_path)
    path = _write(config.smb_config_path, render_smb_conf(config, allow_list))
    logger.info("   Workgroup: %s", config.workgroup)
    logger.info("   Realm: %s", config.realm)
    return path
