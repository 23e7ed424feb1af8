"""Service Principal Set — which principals the machine account must carry.

The generic ``host/`` principals come with the domain join; the ``cifs/``
principals (short and fully-qualified) are registered explicitly when file
sharing is enabled.  Comparison ignores case and the ``@REALM`` suffix,
because AD and klist report host names in whatever case they were stored.
"""

from __future__ import annotations

from collections.abc import Iterable

from adkeytab.directory.models import HostNames

HOST_SERVICE = "host"
CIFS_SERVICE = "cifs"


def service_principals(service: str, hostnames: HostNames) -> list[str]:
    """``service/fqdn`` and ``service/short``."""
    return [f"{service}/{hostnames.fqdn}", f"{service}/{hostnames.short}"]


def cifs_principals(hostnames: HostNames) -> list[str]:
    return service_principals(CIFS_SERVICE, hostnames)


def required_principals(hostnames: HostNames, cifs_enabled: bool) -> list[str]:
    """The minimum principal set for this host."""
    required = service_principals(HOST_SERVICE, hostnames)
    if cifs_enabled:
        required.extend(cifs_principals(hostnames))
    return required


def _normalize(principal: str) -> str:
    return principal.split("@", 1)[0].lower()


def missing_principals(required: Iterable[str], present: Iterable[str]) -> list[str]:
    """Entries of ``required`` that do not appear in ``present``."""
    have = {_normalize(p) for p in present}
    return [p for p in required if _normalize(p) not in have]
