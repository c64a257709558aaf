"""The single data connection that belongs to an FTP control connection.

A data connection is opened either passively (PASV: the server listens and
the client connects) or actively (PORT: the server connects to the client).
Once the connection exists, is encrypted if required, and a command that
uses it has been set, the command runs over it.
"""

from __future__ import annotations

import asyncio
import random
import ssl
from typing import Optional, Tuple

from ftpserv.commands import DataCommand
from ftpserv.tls import get_ssl_context

PortRange = Tuple[int, int]


class TlsNotConfiguredError(RuntimeError):
    """An encrypted data connection was requested but no TLS context is set."""


def _tls_context() -> ssl.SSLContext:
    context = get_ssl_context()
    if context is None:
        raise TlsNotConfiguredError("no server TLS context has been installed")
    return context


class DataConnection:
    """Passive or active data connection for one control connection.

    There is at most one data connection at a time; starting a new passive
    one aborts whatever was using the previous one.
    """

    def __init__(self, listen_host: str = "0.0.0.0") -> None:
        self.listen_host = listen_host
        self.port_range: PortRange = (0, 0)
        self._server: Optional[asyncio.AbstractServer] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._command: Optional[DataCommand] = None
        self._command_task: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._socket_ready = False
        self._waiting_for_command = False
        self._encrypt = False
        self._context: Optional[ssl.SSLContext] = None
        self._active = False
        self._host_name = ""
        self._port = 0

    def set_port_range(self, port_range: PortRange) -> None:
        """Restrict passive listening ports to ``[first, second)``.

        A first port of zero lets the system choose any free port.
        """
        first, second = port_range
        self.port_range = (int(first), int(second))

    def schedule_connect_to_host(self, host_name: str, port: int, encrypt: bool) -> None:
        """Prepare an active connection to ``host_name:port``.

        The connection is made once a command is set with
        :meth:`set_ftp_command`.
        """
        self._context = _tls_context() if encrypt else None
        self._encrypt = encrypt
        self._drop_socket()
        self._close_server()
        self._host_name = host_name
        self._port = port
        self._socket_ready = False
        self._waiting_for_command = True
        self._active = True

    async def listen(self, encrypt: bool) -> int:
        """Listen for a passive data connection and return the port.

        Any existing data connection or command is aborted. Returns 0 if
        the server could not listen.
        """
        self._context = _tls_context() if encrypt else None
        self._encrypt = encrypt
        self._drop_socket()
        self._abort_command()
        self._socket_ready = False
        self._waiting_for_command = True
        self._active = False
        self._close_server()

        first, second = self.port_range
        port = random.randrange(first, second) if first > 0 else 0
        try:
            self._server = await asyncio.start_server(
                self._accept, self.listen_host, port, ssl=self._context
            )
        except OSError:
            self._server = None
            return 0
        return self._server.sockets[0].getsockname()[1]

    def set_ftp_command(self, command: DataCommand) -> bool:
        """Set the command to run over the data connection.

        Only one command may be set after each :meth:`listen` or
        :meth:`schedule_connect_to_host`; otherwise ``False`` is returned.
        """
        if not self._waiting_for_command:
            return False
        self._waiting_for_command = False
        self._command = command
        if self._active:
            self._connect_task = asyncio.get_running_loop().create_task(self._connect())
        else:
            self._start_command()
        return True

    def ftp_command(self) -> Optional[DataCommand]:
        """Return the command if it is running and not yet finished."""
        command = self._command
        if self._socket_ready and command is not None and not command.finished.is_set():
            return command
        return None

    def close(self) -> None:
        """Stop listening and abort any connection or command."""
        self._close_server()
        self._drop_socket()
        self._abort_command()
        self._waiting_for_command = False
        self._socket_ready = False

    def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self._socket_ready or self._writer is not None:
            writer.close()
            return
        self._reader, self._writer = reader, writer
        self._close_server()
        self._socket_ready = True
        self._start_command()

    async def _connect(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        try:
            transport, _ = await loop.create_connection(
                lambda: protocol, self._host_name, self._port
            )
        except OSError:
            return
        if self._encrypt and self._context is not None:
            try:
                transport = await loop.start_tls(
                    transport, protocol, self._context, server_side=True
                )
            except OSError:
                transport.close()
                return
        self._reader = reader
        self._writer = asyncio.StreamWriter(transport, protocol, reader, loop)
        self._socket_ready = True
        self._start_command()

    def _start_command(self) -> None:
        if self._command is None or not self._socket_ready or self._writer is None:
            return
        reader, writer = self._reader, self._writer
        self._reader = self._writer = None
        self._command_task = asyncio.get_running_loop().create_task(
            self._command.start(reader, writer)
        )

    def _drop_socket(self) -> None:
        if self._writer is not None:
            self._writer.close()
        self._reader = self._writer = None

    def _abort_command(self) -> None:
        for task in (self._connect_task, self._command_task):
            if task is not None and not task.done():
                task.cancel()
        self._connect_task = None
        self._command_task = None
        self._command = None

    def _close_server(self) -> None:
        if self._server is not None:
            self._server.close()
            self._server = None