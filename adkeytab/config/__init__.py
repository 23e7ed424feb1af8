"""Configuration — resolution from the environment and generated config files."""

from adkeytab.config.generator import (
    render_krb5_conf,
    render_smb_conf,
    write_krb5_conf,
    write_smb_conf,
)
from adkeytab.config.models import AdminCredentials, KerberosConfig
from adkeytab.config.resolver import resolve_config

__all__ = [
    "AdminCredentials",
    "KerberosConfig",
    "resolve_config",
    "render_krb5_conf",
    "render_smb_conf",
    "write_krb5_conf",
    "write_smb_conf",
]
