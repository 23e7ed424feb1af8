"""Network — topology classification and the winbind credential proxy."""

from adkeytab.network.proxy import CredentialProxyGateway, wait_for_socket
from adkeytab.network.topology import (
    InterfaceAddress,
    InterfaceClassification,
    NetworkTopologyClassifier,
    PingProbe,
    Reachability,
    network_address,
)

__all__ = [
    "CredentialProxyGateway",
    "wait_for_socket",
    "NetworkTopologyClassifier",
    "InterfaceAddress",
    "InterfaceClassification",
    "PingProbe",
    "Reachability",
    "network_address",
]
