"""Directory listings in the ``ls -l`` style that FTP clients expect."""

from __future__ import annotations

import asyncio
import os
import stat
from datetime import datetime
from itertools import islice
from typing import Iterable, Iterator, List, Optional, Union

from ftpserv.commands import REPLY_CLOSING, REPLY_OPENING, DataCommand, ReplyCallback

try:
    import grp
    import pwd
except ImportError:  # not available on every platform
    grp = None
    pwd = None

PathArg = Union[str, "os.PathLike[str]"]

BATCH_SIZE = 10
BATCH_INTERVAL = 0.5

REPLY_NOT_READABLE = "425 File or directory is not readable or doesn't exist."

# Month names are fixed English abbreviations; clients do not parse others.
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_PERMISSION_BITS = (
    (stat.S_IRUSR, "r"), (stat.S_IWUSR, "w"), (stat.S_IXUSR, "x"),
    (stat.S_IRGRP, "r"), (stat.S_IWGRP, "w"), (stat.S_IXGRP, "x"),
    (stat.S_IROTH, "r"), (stat.S_IWOTH, "w"), (stat.S_IXOTH, "x"),
)


def padded(text: str, width: int) -> str:
    """Pad ``text`` on the left with spaces to at least ``width`` characters."""
    return text.rjust(width)


def _owner_name(uid: int) -> str:
    if pwd is None:
        return "unknown"
    try:
        return pwd.getpwuid(uid).pw_name or "unknown"
    except KeyError:
        return "unknown"


def _group_name(gid: int) -> str:
    if grp is None:
        return "unknown"
    try:
        return grp.getgrgid(gid).gr_name or "unknown"
    except KeyError:
        return "unknown"


def _format_date(modified: datetime, now: datetime) -> str:
    month = _MONTHS[modified.month - 1]
    if modified.year != now.year:
        return f"{month} {modified.day:02d}  {modified.year:04d}"
    return f"{month} {modified.day:02d} {modified.hour:02d}:{modified.minute:02d}"


def format_entry(
    path: PathArg, name_list_only: bool = False, now: Optional[datetime] = None
) -> str:
    """Return one listing line, terminated by CRLF, for ``path``.

    With ``name_list_only`` the line holds just the file name.
    """
    path = os.fspath(path)
    name = os.path.basename(path)
    if name_list_only:
        return f" {name}\r\n"

    if now is None:
        now = datetime.now()
    link_info = os.lstat(path)
    try:
        info = os.stat(path)
    except OSError:
        info = link_info

    if stat.S_ISLNK(link_info.st_mode):
        kind = "l"
    elif stat.S_ISDIR(info.st_mode):
        kind = "d"
    else:
        kind = "-"
    permissions = "".join(
        letter if info.st_mode & bit else "-" for bit, letter in _PERMISSION_BITS
    )
    owner = padded(_owner_name(info.st_uid), 10)
    group = padded(_group_name(info.st_gid), 10)
    size = padded(str(info.st_size), 14)
    date = _format_date(datetime.fromtimestamp(info.st_mtime), now)
    return f"{kind}{permissions} {owner} {group} {size} {date} {name}\r\n"


def _is_hidden(name: str) -> bool:
    return name.startswith(".") and name not in (".", "..")


def _directory_entries(directory: str) -> List[str]:
    names = [".", ".."] + [name for name in os.listdir(directory) if not _is_hidden(name)]
    names.sort(key=lambda name: (name.lower(), name))
    return [os.path.join(directory, name) for name in names]


def _batches(items: Iterable[str], size: int) -> Iterator[List[str]]:
    iterator = iter(items)
    while batch := list(islice(iterator, size)):
        yield batch


class ListCommand(DataCommand):
    """LIST and NLST: send a listing of a directory or a single file.

    Entries are sent in batches of ten, one batch per ``batch_interval``
    seconds, so a large directory does not hog the event loop.
    """

    def __init__(
        self,
        reply: ReplyCallback,
        list_directory: PathArg,
        name_list_only: bool = False,
        *,
        batch_interval: float = BATCH_INTERVAL,
    ) -> None:
        super().__init__(reply)
        self.list_directory = os.fspath(list_directory)
        self.name_list_only = name_list_only
        self.batch_interval = batch_interval

    async def _run(self, reader, writer) -> None:
        if not os.access(self.list_directory, os.R_OK):
            self._reply(REPLY_NOT_READABLE)
            return
        self._reply(REPLY_OPENING)

        if os.path.isdir(self.list_directory):
            entries = _directory_entries(self.list_directory)
        else:
            entries = [self.list_directory]

        for batch in _batches(entries, BATCH_SIZE):
            await asyncio.sleep(self.batch_interval)
            now = datetime.now()
            writer.write("".join(self._lines(batch, now)).encode("utf-8"))
            await writer.drain()

    def _lines(self, paths: Iterable[str], now: datetime) -> Iterator[str]:
        for path in paths:
            try:
                yield format_entry(path, self.name_list_only, now)
            except OSError:
                continue

    def _on_finished(self) -> None:
        self._reply(REPLY_CLOSING)