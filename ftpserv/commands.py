"""FTP commands that move file contents over a data connection."""

from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from typing import Callable, Union

ReplyCallback = Callable[[str], None]
PathArg = Union[str, "os.PathLike[str]"]

CHUNK_SIZE = 128 * 1024

REPLY_OPENING = "150 File status okay; about to open data connection."
REPLY_CLOSING = "226 Closing data connection."
REPLY_FILE_UNAVAILABLE = "550 Requested action not taken; file unavailable."
REPLY_LOCAL_ERROR = "451 Requested action aborted: local error in processing."
REPLY_WRITE_FAILED = "451 Requested action aborted. Could not write data to file."


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass


class DataCommand(ABC):
    """Base class for commands that need a data connection.

    Progress messages go through the ``reply`` callback, which the control
    connection forwards to the client. ``finished`` is set once the command
    has closed its data connection and sent its final reply.
    """

    def __init__(self, reply: ReplyCallback) -> None:
        self._reply = reply
        self.started = False
        self.finished = asyncio.Event()

    async def start(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Run the command over an established data connection."""
        self.started = True
        try:
            await self._run(reader, writer)
        except ConnectionError:
            pass
        finally:
            await _close_writer(writer)
            self._on_finished()
            self.finished.set()

    @abstractmethod
    async def _run(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Transfer data; the connection is closed afterwards."""

    def _on_finished(self) -> None:
        """Send the final reply once the data connection is closed."""


class RetrCommand(DataCommand):
    """RETR: send a file to the client, optionally from an offset."""

    def __init__(self, reply: ReplyCallback, file_name: PathArg, seek_to: int = 0) -> None:
        super().__init__(reply)
        self.file_name = os.fspath(file_name)
        self.seek_to = seek_to
        self._sent_all = False

    async def _run(self, reader, writer) -> None:
        try:
            file = open(self.file_name, "rb")
        except OSError:
            return
        with file:
            self._reply(REPLY_OPENING)
            if self.seek_to:
                file.seek(self.seek_to)
            while chunk := file.read(CHUNK_SIZE):
                writer.write(chunk)
                await writer.drain()
            self._sent_all = True

    def _on_finished(self) -> None:
        self._reply(REPLY_CLOSING if self._sent_all else REPLY_FILE_UNAVAILABLE)


class StorCommand(DataCommand):
    """STOR and APPE: receive a file from the client."""

    def __init__(
        self,
        reply: ReplyCallback,
        file_name: PathArg,
        append_mode: bool = False,
        seek_to: int = 0,
    ) -> None:
        super().__init__(reply)
        self.file_name = os.fspath(file_name)
        self.append_mode = append_mode
        self.seek_to = seek_to
        self._success = False

    async def _run(self, reader, writer) -> None:
        try:
            file = open(self.file_name, "ab" if self.append_mode else "wb")
        except OSError:
            return
        self._success = True
        with file:
            self._reply(REPLY_OPENING)
            if self.seek_to:
                file.seek(self.seek_to)
            while block := await reader.read(CHUNK_SIZE):
                try:
                    written = file.write(block)
                except OSError:
                    written = -1
                if written != len(block):
                    self._reply(REPLY_WRITE_FAILED)
                    return

    def _on_finished(self) -> None:
        self._reply(REPLY_CLOSING if self._success else REPLY_LOCAL_ERROR)