"""Credential Proxy Gateway — exposes the winbind socket over TCP.

Peers on isolated networks cannot reach AD themselves; they query it
through winbind via this proxy.  The gateway forwards bytes only.  Who may
connect is decided by winbind through the ``hosts allow`` directive the
proxy command writes into smb.conf, not here.
"""

from __future__ import annotations

import logging
import selectors
import socket
import socketserver
import stat
import time
from pathlib import Path

from adkeytab.config.models import DEFAULT_PROXY_PORT, WINBIND_SOCKET
from adkeytab.errors import ProxyStartupError

logger = logging.getLogger(__name__)

STARTUP_TIMEOUT = 60.0
BUFFER_SIZE = 65536


def wait_for_socket(
    path: Path,
    timeout: float = STARTUP_TIMEOUT,
    poll_interval: float = 1.0,
) -> None:
    """Block until ``path`` is a Unix socket, or raise after ``timeout`` seconds."""
    logger.info("Winbind Proxy: Waiting for winbind socket to be created ...")
    deadline = time.monotonic() + timeout
    while True:
        try:
            if stat.S_ISSOCK(path.stat().st_mode):
                logger.info("Winbind Proxy: Winbind socket found at %s", path)
                return
        except FileNotFoundError:
            pass
        if time.monotonic() >= deadline:
            raise ProxyStartupError(
                f"Winbind socket not found after {timeout:g}s",
                step="Winbind Proxy",
            )
        time.sleep(poll_interval)


def forward(client: socket.socket, upstream: socket.socket) -> int:
    """Copy bytes both ways until both sides have closed.  Returns bytes moved.

    EOF in one direction is passed on as a half-close (``SHUT_WR``) to the
    other socket; the opposite direction keeps flowing, so a peer that
    shuts down its write side after a request still receives the reply.
    """
    moved = 0
    with selectors.DefaultSelector() as selector:
        selector.register(client, selectors.EVENT_READ, upstream)
        selector.register(upstream, selectors.EVENT_READ, client)
        while selector.get_map():
            for key, _ in selector.select():
                source: socket.socket = key.fileobj  # type: ignore[assignment]
                data = source.recv(BUFFER_SIZE)
                if data:
                    key.data.sendall(data)
                    moved += len(data)
                    continue
                selector.unregister(source)
                key.data.shutdown(socket.SHUT_WR)
    return moved


class _ForwardingHandler(socketserver.BaseRequestHandler):
    """One forwarding session per accepted connection."""

    server: _GatewayServer

    def handle(self) -> None:
        peer = "%s:%s" % self.client_address[:2]
        try:
            upstream = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            upstream.connect(str(self.server.socket_path))
        except OSError as e:
            logger.warning("Winbind Proxy: %s: cannot reach winbind: %s", peer, e)
            return

        with upstream:
            try:
                moved = forward(self.request, upstream)
            except OSError as e:
                logger.debug("Winbind Proxy: %s: session ended: %s", peer, e)
                return
        logger.debug("Winbind Proxy: %s: closed after %d bytes", peer, moved)


class _GatewayServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address: tuple[str, int], socket_path: Path) -> None:
        self.socket_path = socket_path
        super().__init__(address, _ForwardingHandler)


class CredentialProxyGateway:
    """TCP listener bridging every connection to the winbind Unix socket.

    Usage:
        gateway = CredentialProxyGateway(port=9999)
        gateway.start()          # waits for the socket, then binds
        gateway.serve_forever()

    Args:
        socket_path: winbind's privileged pipe.
        port: TCP port to listen on; 0 picks a free port.
        host: Address to bind.
        startup_timeout: Seconds to wait for ``socket_path`` to appear.
    """

    def __init__(
        self,
        socket_path: Path = WINBIND_SOCKET,
        port: int = DEFAULT_PROXY_PORT,
        host: str = "0.0.0.0",
        startup_timeout: float = STARTUP_TIMEOUT,
        poll_interval: float = 1.0,
    ) -> None:
        self.socket_path = socket_path
        self.port = port
        self.host = host
        self.startup_timeout = startup_timeout
        self.poll_interval = poll_interval
        self._server: _GatewayServer | None = None

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port); only valid after start()."""
        if self._server is None:
            raise RuntimeError("gateway is not started")
        return self._server.server_address[:2]

    def start(self) -> None:
        wait_for_socket(self.socket_path, self.startup_timeout, self.poll_interval)
        logger.info("Winbind Proxy: Starting TCP proxy on port %d ...", self.port)
        self._server = _GatewayServer((self.host, self.port), self.socket_path)

    def serve_forever(self) -> None:
        if self._server is None:
            self.start()
        assert self._server is not None
        self._server.serve_forever()

    def shutdown(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
