"""Network Topology Classifier — which local networks are isolated.

For every non-loopback IPv4 interface, the network address is computed from
address and prefix length, and a ping to a well-known external address is
sent through that interface.  Interfaces that cannot reach it are isolated;
their networks, plus loopback, form the allow-list for the identity proxy.

Nothing is cached: container networks change between restarts.  If the
probe itself cannot run, no interface is reported isolated (fail closed).
"""

from __future__ import annotations

import ipaddress
import logging
import re
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from adkeytab.errors import AdKeytabError

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"
PROBE_TARGET = "8.8.8.8"
PROBE_TIMEOUT = 2

_IP_ADDR_LINE = re.compile(r"^\d+:\s+(\S+)\s+inet\s+(\d+\.\d+\.\d+\.\d+)/(\d+)")
_FULL_MASK = 0xFFFFFFFF


class ProbeUnavailableError(AdKeytabError):
    """The reachability probe could not be executed."""


class Reachability(str, Enum):
    EXTERNAL = "external"
    ISOLATED = "isolated"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class InterfaceAddress:
    """One IPv4 address assigned to a local interface."""

    name: str
    address: str
    prefix_length: int

    @property
    def network(self) -> str:
        return network_address(self.address, self.prefix_length)

    @property
    def cidr(self) -> str:
        return f"{self.network}/{self.prefix_length}"

    @property
    def is_loopback(self) -> bool:
        return self.name == "lo" or ipaddress.IPv4Address(self.address).is_loopback


@dataclass(frozen=True)
class InterfaceClassification:
    interface: InterfaceAddress
    reachability: Reachability

    @property
    def isolated(self) -> bool:
        return self.reachability is Reachability.ISOLATED


def network_address(address: str, prefix_length: int) -> str:
    """Mask ``address`` down to its network address.

    >>> network_address("172.20.13.7", 20)
    '172.20.0.0'
    """
    if not 0 <= prefix_length <= 32:
        raise ValueError(f"Invalid IPv4 prefix length: {prefix_length}")
    mask = (_FULL_MASK << (32 - prefix_length)) & _FULL_MASK
    return str(ipaddress.IPv4Address(int(ipaddress.IPv4Address(address)) & mask))


def parse_ip_addr(output: str) -> list[InterfaceAddress]:
    """Parse ``ip -o -4 addr show`` output."""
    interfaces = []
    for line in output.splitlines():
        match = _IP_ADDR_LINE.match(line)
        if not match:
            continue
        name, address, prefix = match.groups()
        # veth peers show up as eth0@if12
        interfaces.append(InterfaceAddress(name.split("@", 1)[0], address, int(prefix)))
    return interfaces


def list_interfaces() -> list[InterfaceAddress]:
    """Non-loopback IPv4 interfaces with an assigned address."""
    try:
        proc = subprocess.run(
            ["ip", "-o", "-4", "addr", "show"],
            capture_output=True, text=True, check=False,
        )
    except FileNotFoundError as e:
        raise AdKeytabError("ip is not installed", step="Winbind Proxy") from e
    if proc.returncode != 0:
        raise AdKeytabError(f"Cannot list interfaces: {proc.stderr.strip()}", step="Winbind Proxy")
    return [i for i in parse_ip_addr(proc.stdout) if not i.is_loopback]


class PingProbe:
    """Sends one ICMP echo to ``target`` through a given interface."""

    def __init__(self, target: str = PROBE_TARGET, timeout: int = PROBE_TIMEOUT) -> None:
        self.target = target
        self.timeout = timeout

    def __call__(self, interface: InterfaceAddress) -> bool:
        cmd = ["ping", "-c", "1", "-W", str(self.timeout), "-I", interface.name, self.target]
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except (FileNotFoundError, PermissionError) as e:
            raise ProbeUnavailableError(f"ping cannot run: {e}", step="Winbind Proxy") from e

        if proc.returncode == 0:
            return True
        output = (proc.stdout + proc.stderr).lower()
        if proc.returncode == 1 or "unreachable" in output:
            return False
        # e.g. "Operation not permitted" without CAP_NET_RAW
        raise ProbeUnavailableError(
            f"ping failed unexpectedly: {output.strip()}",
            step="Winbind Proxy",
        )


class NetworkTopologyClassifier:
    """Classifies local networks as isolated or externally reachable.

    Usage:
        classifier = NetworkTopologyClassifier()
        allow = classifier.allow_list()   # ['127.0.0.1', '172.18.0.0/16']

    Args:
        interfaces: Callable returning the interfaces to classify.
        probe: Callable telling whether an interface reaches the outside.
    """

    def __init__(
        self,
        interfaces: Callable[[], list[InterfaceAddress]] = list_interfaces,
        probe: Callable[[InterfaceAddress], bool] | None = None,
    ) -> None:
        self.interfaces = interfaces
        self.probe = probe or PingProbe()

    def classify(self) -> list[InterfaceClassification]:
        results = []
        probe_ok = True
        for interface in self.interfaces():
            if interface.is_loopback:
                continue
            verdict = Reachability.UNKNOWN
            if probe_ok:
                try:
                    verdict = Reachability.EXTERNAL if self.probe(interface) else Reachability.ISOLATED
                except ProbeUnavailableError as e:
                    logger.warning("Winbind Proxy: reachability probe unavailable (%s); "
                                   "no network will be treated as isolated", e.message)
                    probe_ok = False

            logger.debug("%s %s -> %s", interface.name, interface.cidr, verdict.value)
            results.append(InterfaceClassification(interface, verdict))

        if not probe_ok:
            return [InterfaceClassification(r.interface, Reachability.UNKNOWN) for r in results]
        return results

    def allow_list(self, classified: list[InterfaceClassification] | None = None) -> list[str]:
        """Loopback followed by every isolated network, in interface order."""
        if classified is None:
            classified = self.classify()
        allow = [LOOPBACK]
        for entry in classified:
            if entry.isolated and entry.interface.cidr not in allow:
                allow.append(entry.interface.cidr)
        return allow
