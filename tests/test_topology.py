"""Tests for network classification and the proxy allow-list."""

import subprocess

import pytest

from adkeytab.network.topology import (
    InterfaceAddress,
    NetworkTopologyClassifier,
    PingProbe,
    ProbeUnavailableError,
    Reachability,
    network_address,
    parse_ip_addr,
)

IP_ADDR_OUTPUT = """\
1: lo    inet 127.0.0.1/8 scope host lo\\       valid_lft forever preferred_lft forever
24: eth0@if25    inet 10.0.5.4/24 brd 10.0.5.255 scope global eth0\\       valid_lft forever
26: eth1@if27    inet 172.18.0.5/16 brd 172.18.255.255 scope global eth1\\       valid_lft forever
"""

ETH0 = InterfaceAddress("eth0", "10.0.5.4", 24)
ETH1 = InterfaceAddress("eth1", "172.18.0.5", 16)


@pytest.mark.parametrize(
    "address, prefix, expected",
    [
        ("10.1.2.3", 8, "10.0.0.0"),
        ("172.16.5.4", 16, "172.16.0.0"),
        ("192.168.1.77", 24, "192.168.1.0"),
        ("172.20.13.7", 20, "172.20.0.0"),
        ("10.1.2.3", 32, "10.1.2.3"),
        ("10.1.2.3", 0, "0.0.0.0"),
    ],
)
def test_network_address(address, prefix, expected):
    assert network_address(address, prefix) == expected


def test_network_address_rejects_bad_prefix():
    with pytest.raises(ValueError):
        network_address("10.0.0.1", 33)


def test_parse_ip_addr():
    interfaces = parse_ip_addr(IP_ADDR_OUTPUT)

    assert [i.name for i in interfaces] == ["lo", "eth0", "eth1"]
    assert interfaces[1] == ETH0
    assert interfaces[2].cidr == "172.18.0.0/16"
    assert interfaces[0].is_loopback


class TestClassifier:
    def test_isolated_networks_are_allowed(self):
        """eth0 reaches the outside, eth1 does not; only eth1 joins loopback."""
        classifier = NetworkTopologyClassifier(
            interfaces=lambda: [ETH0, ETH1],
            probe=lambda iface: iface.name == "eth0",
        )

        classified = classifier.classify()

        assert [c.reachability for c in classified] == [Reachability.EXTERNAL, Reachability.ISOLATED]
        assert classifier.allow_list(classified) == ["127.0.0.1", "172.18.0.0/16"]

    def test_unavailable_probe_fails_closed(self):
        def probe(_iface):
            raise ProbeUnavailableError("ping cannot run")

        classifier = NetworkTopologyClassifier(interfaces=lambda: [ETH0, ETH1], probe=probe)

        assert {c.reachability for c in classifier.classify()} == {Reachability.UNKNOWN}
        assert classifier.allow_list() == ["127.0.0.1"]

    def test_probe_failure_midway_discards_earlier_verdicts(self):
        def probe(iface):
            if iface.name == "eth1":
                raise ProbeUnavailableError("ping cannot run")
            return False

        classifier = NetworkTopologyClassifier(interfaces=lambda: [ETH0, ETH1], probe=probe)

        assert classifier.allow_list() == ["127.0.0.1"]

    def test_loopback_is_skipped(self):
        probed = []
        classifier = NetworkTopologyClassifier(
            interfaces=lambda: [InterfaceAddress("lo", "127.0.0.1", 8), ETH1],
            probe=lambda iface: probed.append(iface.name) or False,
        )

        assert classifier.allow_list() == ["127.0.0.1", "172.18.0.0/16"]
        assert probed == ["eth1"]

    def test_duplicate_networks_listed_once(self):
        twin = InterfaceAddress("eth2", "172.18.0.9", 16)
        classifier = NetworkTopologyClassifier(interfaces=lambda: [ETH1, twin], probe=lambda _i: False)

        assert classifier.allow_list() == ["127.0.0.1", "172.18.0.0/16"]


class TestPingProbe:
    def _patch(self, monkeypatch, returncode, output=""):
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            return subprocess.CompletedProcess(cmd, returncode, stdout=output, stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        return calls

    def test_reachable(self, monkeypatch):
        calls = self._patch(monkeypatch, 0)

        assert PingProbe("8.8.8.8", timeout=2)(ETH0) is True
        assert calls == [["ping", "-c", "1", "-W", "2", "-I", "eth0", "8.8.8.8"]]

    def test_no_reply_is_isolated(self, monkeypatch):
        self._patch(monkeypatch, 1, "1 packets transmitted, 0 received, 100% packet loss")

        assert PingProbe()(ETH1) is False

    def test_unreachable_network_is_isolated(self, monkeypatch):
        self._patch(monkeypatch, 2, "connect: Network is unreachable")

        assert PingProbe()(ETH1) is False

    def test_permission_problem_is_unavailable(self, monkeypatch):
        self._patch(monkeypatch, 2, "ping: socket: Operation not permitted")

        with pytest.raises(ProbeUnavailableError):
            PingProbe()(ETH1)

    def test_missing_binary_is_unavailable(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(subprocess, "run", fake_run)

        with pytest.raises(ProbeUnavailableError):
            PingProbe()(ETH1)
