"""The FTP control connection: reads commands, checks them and replies."""

from __future__ import annotations

import asyncio
import os
import posixpath
import re
from typing import Awaitable, Callable, Dict, Optional, Tuple

from ftpserv.commands import DataCommand, RetrCommand, StorCommand
from ftpserv.dataconnection import DataConnection, PortRange, TlsNotConfiguredError
from ftpserv.listing import ListCommand
from ftpserv.tls import get_ssl_context

REPLY_WELCOME = "220 Welcome to QFtpServer."
REPLY_OK = "200 Command okay."
REPLY_NOT_IMPLEMENTED = "502 Command not implemented."
REPLY_LOGIN_FIRST = "530 You must log in first."
REPLY_READ_ONLY = "550 Can't do that in read-only mode."
REPLY_UNAVAILABLE = "550 Requested action not taken; file unavailable."
REPLY_COMPLETED = "250 Requested file action okay, completed."
REPLY_PENDING = "350 Requested file action pending further information."
REPLY_NO_DATA_CONNECTION = "425 Can't open data connection."
REPLY_LOGGED_IN = "230 You are logged in."
REPLY_BAD_LOGIN = "530 User name or password was incorrect."
REPLY_QUITTING = "221 Quitting..."
REPLY_FEATURES = "211-Features:\r\n UTF8\r\n211 End\r\n"

COMMANDS_REQUIRING_AUTH = frozenset({
    "PWD", "CWD", "TYPE", "PORT", "PASV", "LIST", "RETR", "REST",
    "NLST", "SIZE", "SYST", "PROT", "CDUP", "OPTS", "PBSZ", "NOOP",
    "STOR", "MKD", "RMD", "DELE", "RNFR", "RNTO", "APPE",
})

COMMANDS_REQUIRING_WRITE = frozenset({
    "STOR", "MKD", "RMD", "DELE", "RNFR", "RNTO", "APPE",
})

_PORT_PATTERN = re.compile(r"\s*(\d+,\d+,\d+,\d+),(\d+),(\d+)")
_INTEGER_PATTERN = re.compile(r"\s*([+-]?\d+)")

Handler = Callable[[str], Awaitable[None]]


def parse_command(entire_command: str) -> Tuple[str, str]:
    """Split a command line into the upper-cased command and its parameters."""
    command, sep, parameters = entire_command.partition(" ")
    if not sep:
        return entire_command.strip().upper(), ""
    return command.strip().upper(), parameters.strip()


def strip_flag_l(file_name: str) -> str:
    """Drop a leading ``-L`` flag that some clients send with LIST and NLST."""
    upper = file_name.upper()
    if upper == "-L":
        return ""
    if upper.startswith("-L "):
        return file_name[3:]
    return file_name


def parse_port_argument(address_and_port: str) -> Tuple[str, int]:
    """Parse a PORT argument ``h1,h2,h3,h4,p1,p2`` into host and port.

    An argument that does not match gives an empty host and port 0.
    """
    match = _PORT_PATTERN.search(address_and_port)
    if match is None:
        return "", 0
    host = match.group(1).replace(",", ".")
    return host, int(match.group(2)) * 256 + int(match.group(3))


def _clean_path(path: str) -> str:
    if not path:
        return ""
    cleaned = posixpath.normpath(path.replace("\\", "/"))
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _leading_integer(text: str) -> int:
    match = _INTEGER_PATTERN.match(text)
    return int(match.group(1)) if match else 0


class ControlConnection:
    """One client session on the FTP control channel.

    Commands that need a data connection are handed to a
    :class:`DataConnection`; everything else is handled here.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        root_path: str,
        user_name: str = "",
        password: str = "",
        read_only: bool = False,
        port_range: PortRange = (0, 0),
    ) -> None:
        self._reader = reader
        self._writer = writer
        self.root_path = root_path
        self.user_name = user_name
        self.password = password
        self.read_only = read_only
        self.current_directory = "/"
        self.last_processed_command = ""
        self.logged_in = False
        self.encrypt_data_connection = False
        self._quitting = False
        self.data_connection = DataConnection()
        self.data_connection.set_port_range(port_range)
        self._handlers: Dict[str, Handler] = {
            "USER": self._user,
            "PASS": self._pass,
            "QUIT": self._quit,
            "AUTH": self._auth,
            "FEAT": self._feat,
            "PWD": self._pwd,
            "CWD": self._cwd,
            "TYPE": self._ok,
            "PORT": self._port,
            "PASV": self._pasv,
            "LIST": self._list,
            "RETR": self._retr,
            "REST": self._pending,
            "NLST": self._nlst,
            "SIZE": self._size,
            "SYST": self._syst,
            "PROT": self._prot,
            "CDUP": self._cdup,
            "OPTS": self._opts,
            "PBSZ": self._pbsz,
            "NOOP": self._ok,
            "STOR": self._stor,
            "MKD": self._mkd,
            "RMD": self._rmd,
            "DELE": self._dele,
            "RNFR": self._pending,
            "RNTO": self._rnto,
            "APPE": self._appe,
        }
        self.reply(REPLY_WELCOME)

    # -- public interface -------------------------------------------------

    def to_local_path(self, file_name: str) -> str:
        """Map a client path to a path below the root directory.

        ``..`` and ``.`` are resolved before the root is prepended, so a
        client cannot climb out of the root.
        """
        local_path = file_name.replace("\\", "/")
        if not local_path.startswith("/"):
            local_path = f"{self.current_directory}/{local_path}"
        components: list = []
        for component in filter(None, local_path.split("/")):
            if component == "..":
                if components:
                    components.pop()
            elif component != ".":
                components.append(component)
        return _clean_path(f"{self.root_path}/{'/'.join(components)}")

    def reply(self, reply_code: str) -> None:
        """Send one reply line to the client."""
        self._write_raw(f"{reply_code}\r\n")

    async def process_command(self, entire_command: str) -> None:
        """Parse and execute a single command line."""
        command, parameters = parse_command(entire_command)
        if not self.logged_in and command in COMMANDS_REQUIRING_AUTH:
            self.reply(REPLY_LOGIN_FIRST)
            return
        if self.read_only and command in COMMANDS_REQUIRING_WRITE:
            self.reply(REPLY_READ_ONLY)
            return
        handler = self._handlers.get(command)
        if handler is None:
            self.reply(REPLY_NOT_IMPLEMENTED)
        else:
            await handler(parameters)
        self.last_processed_command = entire_command

    async def serve(self) -> None:
        """Read and execute commands until the client quits or disconnects."""
        try:
            while not self._quitting:
                try:
                    line = await self._reader.readline()
                except ValueError:
                    break
                if not line.endswith(b"\n"):
                    break
                await self.process_command(line.decode("utf-8", "replace").strip())
            if self._quitting:
                running = self.data_connection.ftp_command()
                if running is not None:
                    await running.finished.wait()
        except ConnectionError:
            pass
        finally:
            self.data_connection.close()
            await self._disconnect()

    # -- helpers ----------------------------------------------------------

    def _write_raw(self, text: str) -> None:
        if self._writer.is_closing():
            return
        self._writer.write(text.encode("utf-8"))

    async def _disconnect(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (OSError, asyncio.CancelledError):
            pass

    def _last_command(self) -> Tuple[str, str]:
        return parse_command(self.last_processed_command)

    def _seek_to(self) -> int:
        command, parameters = self._last_command()
        return _leading_integer(parameters) if command == "REST" else 0

    def _start_data_command(self, command: DataCommand) -> None:
        if not self.data_connection.set_ftp_command(command):
            self.reply(REPLY_NO_DATA_CONNECTION)

    # -- command handlers -------------------------------------------------

    async def _ok(self, parameters: str) -> None:
        self.reply(REPLY_OK)

    async def _pending(self, parameters: str) -> None:
        self.reply(REPLY_PENDING)

    async def _user(self, parameters: str) -> None:
        self.reply("331 User name OK, need password.")

    async def _pass(self, password: str) -> None:
        command, parameters = self._last_command()
        if not self.password or (
            command == "USER"
            and self.user_name == parameters
            and self.password == password
        ):
            self.reply(REPLY_LOGGED_IN)
            self.logged_in = True
        else:
            self.reply(REPLY_BAD_LOGIN)

    async def _quit(self, parameters: str) -> None:
        self.reply(REPLY_QUITTING)
        self._quitting = True

    async def _auth(self, parameters: str) -> None:
        context = get_ssl_context()
        if parameters.upper() != "TLS" or context is None:
            self.reply(REPLY_NOT_IMPLEMENTED)
            return
        self.reply("234 Initializing SSL connection.")
        await self._writer.drain()
        if hasattr(self._writer, "start_tls"):
            await self._writer.start_tls(context)
            return
        loop = asyncio.get_running_loop()
        protocol = self._writer.transport.get_protocol()
        transport = await loop.start_tls(
            self._writer.transport, protocol, context, server_side=True
        )
        self._writer = asyncio.StreamWriter(transport, protocol, self._reader, loop)

    async def _feat(self, parameters: str) -> None:
        self._write_raw(REPLY_FEATURES)

    async def _pwd(self, parameters: str) -> None:
        self.reply(f'257 "{self.current_directory}"')

    async def _cwd(self, directory: str) -> None:
        if os.path.isdir(self.to_local_path(directory)):
            if directory.startswith("/"):
                self.current_directory = _clean_path(directory)
            else:
                self.current_directory = _clean_path(
                    f"{self.current_directory}/{directory}"
                )
            self.reply(REPLY_COMPLETED)
        else:
            self.reply(REPLY_UNAVAILABLE)

    async def _cdup(self, parameters: str) -> None:
        if self.current_directory == "/":
            self.reply(REPLY_COMPLETED)
        else:
            await self._cwd("..")

    async def _port(self, parameters: str) -> None:
        host, port = parse_port_argument(parameters)
        try:
            self.data_connection.schedule_connect_to_host(
                host, port, self.encrypt_data_connection
            )
        except TlsNotConfiguredError:
            self.reply(REPLY_NO_DATA_CONNECTION)
            return
        self.reply(REPLY_OK)

    async def _pasv(self, parameters: str) -> None:
        try:
            port = await self.data_connection.listen(self.encrypt_data_connection)
        except TlsNotConfiguredError:
            self.reply(REPLY_NO_DATA_CONNECTION)
            return
        sockname: Optional[tuple] = self._writer.get_extra_info("sockname")
        address = str(sockname[0]) if sockname else "0.0.0.0"
        self.reply(
            f"227 Entering Passive Mode ({address.replace('.', ',')},"
            f"{port // 256},{port % 256})."
        )

    async def _list(self, parameters: str) -> None:
        path = self.to_local_path(strip_flag_l(parameters))
        self._start_data_command(ListCommand(self.reply, path, False))

    async def _nlst(self, parameters: str) -> None:
        path = self.to_local_path(strip_flag_l(parameters))
        self._start_data_command(ListCommand(self.reply, path, True))

    async def _retr(self, parameters: str) -> None:
        path = self.to_local_path(parameters)
        self._start_data_command(RetrCommand(self.reply, path, self._seek_to()))

    async def _stor(self, parameters: str) -> None:
        path = self.to_local_path(parameters)
        self._start_data_command(StorCommand(self.reply, path, False, self._seek_to()))

    async def _appe(self, parameters: str) -> None:
        path = self.to_local_path(parameters)
        self._start_data_command(StorCommand(self.reply, path, True, self._seek_to()))

    async def _size(self, parameters: str) -> None:
        path = self.to_local_path(parameters)
        if not os.path.exists(path) or os.path.isdir(path):
            self.reply(REPLY_UNAVAILABLE)
        else:
            self.reply(f"213 {os.path.getsize(path)}")

    async def _syst(self, parameters: str) -> None:
        self.reply("215 UNIX")

    async def _prot(self, parameters: str) -> None:
        level = parameters.upper()
        if level == "C":
            self.encrypt_data_connection = False
        elif level == "P":
            self.encrypt_data_connection = True
        else:
            self.reply(REPLY_NOT_IMPLEMENTED)
            return
        self.reply(REPLY_OK)

    async def _opts(self, parameters: str) -> None:
        self.reply(REPLY_OK if parameters.upper() == "UTF8 ON" else REPLY_NOT_IMPLEMENTED)

    async def _pbsz(self, parameters: str) -> None:
        self.reply(REPLY_OK if parameters.upper() == "0" else REPLY_NOT_IMPLEMENTED)

    async def _mkd(self, parameters: str) -> None:
        path = self.to_local_path(parameters)
        try:
            os.mkdir(path)
        except OSError:
            self.reply(REPLY_UNAVAILABLE)
            return
        self.reply(f'257 "{path}" created.')

    async def _rmd(self, parameters: str) -> None:
        try:
            os.rmdir(self.to_local_path(parameters))
        except OSError:
            self.reply(REPLY_UNAVAILABLE)
            return
        self.reply(REPLY_COMPLETED)

    async def _dele(self, parameters: str) -> None:
        try:
            os.remove(self.to_local_path(parameters))
        except OSError:
            self.reply(REPLY_UNAVAILABLE)
            return
        self.reply(REPLY_COMPLETED)

    async def _rnto(self, parameters: str) -> None:
        target = self.to_local_path(parameters)
        command, source_name = self._last_command()
        if command == "RNFR" and not os.path.exists(target):
            try:
                os.rename(self.to_local_path(source_name), target)
            except OSError:
                pass
            else:
                self.reply(REPLY_COMPLETED)
                return
        self.reply(REPLY_UNAVAILABLE)