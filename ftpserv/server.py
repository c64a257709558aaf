"""The FTP server: listens on a port and runs a control connection per client."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
import ssl
from typing import Callable, Optional, Set, Union

from ftpserv.control import ControlConnection
from ftpserv.dataconnection import PortRange
from ftpserv.tls import set_ssl_context

log = logging.getLogger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
PeerCallback = Callable[[str], None]


def _as_network(subnet: Union[str, Network, None]) -> Optional[Network]:
    if subnet is None:
        return None
    network = ipaddress.ip_network(subnet, strict=False)
    return network if network.prefixlen else None


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass


class FtpServer:
    """Listens for clients and starts a control connection for each of them.

    ``root_path`` works like a chroot: clients see nothing outside it. With an
    empty password any user name and password are accepted. A ``subnet``
    whose prefix length is zero is ignored. With ``only_one_ip_allowed`` the
    first IP that connects is remembered and every other IP is refused.
    """

    def __init__(
        self,
        root_path: str,
        port: int = 21,
        user_name: str = "",
        password: str = "",
        read_only: bool = False,
        only_one_ip_allowed: bool = False,
        *,
        host: str = "0.0.0.0",
        port_range: PortRange = (0, 0),
        subnet: Union[str, Network, None] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
        on_new_peer_ip: Optional[PeerCallback] = None,
    ) -> None:
        self.root_path = root_path
        self.port = port
        self.user_name = user_name
        self.password = password
        self.read_only = read_only
        self.only_one_ip_allowed = only_one_ip_allowed
        self.host = host
        self.port_range = port_range
        self.subnet = _as_network(subnet)
        self.on_new_peer_ip = on_new_peer_ip
        self.encountered_ips: Set[str] = set()
        self._server: Optional[asyncio.AbstractServer] = None
        if ssl_context is not None:
            set_ssl_context(ssl_context)

    @property
    def is_listening(self) -> bool:
        """Whether the server is accepting connections."""
        return self._server is not None and self._server.is_serving()

    @property
    def listening_port(self) -> Optional[int]:
        """The port actually bound, or ``None`` when not listening."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Start listening; raises :class:`OSError` if the port cannot be bound."""
        self.close()
        log.debug("starting FTP server on port %s", self.port)
        self._server = await asyncio.start_server(
            self._handle_client, self.host, self.port
        )

    def close(self) -> None:
        """Stop listening. Connections already made keep running."""
        if self._server is not None:
            self._server.close()
            self._server = None

    async def serve_forever(self) -> None:
        """Start listening if needed and serve until cancelled."""
        if not self.is_listening:
            await self.start()
        try:
            await self._server.serve_forever()
        finally:
            self.close()

    def _accepts(self, peer_ip: str) -> bool:
        if self.subnet is not None:
            try:
                in_subnet = ipaddress.ip_address(peer_ip) in self.subnet
            except ValueError:
                in_subnet = False
            if not in_subnet:
                log.info("IP is not in the subnet: %s", peer_ip)
                return False
        if peer_ip not in self.encountered_ips:
            if self.only_one_ip_allowed and self.encountered_ips:
                return False
            if self.on_new_peer_ip is not None:
                self.on_new_peer_ip(peer_ip)
            self.encountered_ips.add(peer_ip)
        return True

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peername = writer.get_extra_info("peername")
        peer_ip = str(peername[0]) if peername else ""
        log.info("new connection from %s", peer_ip)
        if not self._accepts(peer_ip):
            await _close_writer(writer)
            return
        connection = ControlConnection(
            reader,
            writer,
            self.root_path,
            self.user_name,
            self.password,
            self.read_only,
            self.port_range,
        )
        await connection.serve()


def lan_ip() -> str:
    """Return the first IPv4 address of this host other than 127.0.0.1, or ""."""
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError:
        return ""
    for family, _type, _proto, _name, sockaddr in infos:
        if family == socket.AF_INET and sockaddr[0] != "127.0.0.1":
            return sockaddr[0]
    return ""