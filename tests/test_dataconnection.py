import asyncio
import socket

import pytest

from ftpserv.commands import DataCommand
from ftpserv.dataconnection import DataConnection, TlsNotConfiguredError
from ftpserv.tls import set_ssl_context

HOST = "127.0.0.1"


class PayloadCommand(DataCommand):
    def __init__(self, payload=b"payload", gate=None):
        self.replies = []
        super().__init__(self.replies.append)
        self.payload = payload
        self.gate = gate

    async def _run(self, reader, writer):
        if self.gate is not None:
            await self.gate.wait()
        writer.write(self.payload)
        await writer.drain()

    def _on_finished(self):
        self._reply("done")


def _free_port():
    with socket.socket() as sock:
        sock.bind((HOST, 0))
        return sock.getsockname()[1]


async def _read_all(reader):
    return await asyncio.wait_for(reader.read(), 5)


@pytest.mark.asyncio
async def test_passive_command_set_after_connect():
    dc = DataConnection(HOST)
    port = await dc.listen(False)
    assert port > 0
    reader, writer = await asyncio.open_connection(HOST, port)
    await asyncio.sleep(0.05)
    command = PayloadCommand()
    assert dc.set_ftp_command(command) is True
    assert await _read_all(reader) == b"payload"
    await asyncio.wait_for(command.finished.wait(), 5)
    assert command.replies == ["done"]
    writer.close()
    dc.close()


@pytest.mark.asyncio
async def test_passive_command_set_before_connect():
    dc = DataConnection(HOST)
    port = await dc.listen(False)
    command = PayloadCommand(b"early")
    assert dc.set_ftp_command(command) is True
    reader, writer = await asyncio.open_connection(HOST, port)
    assert await _read_all(reader) == b"early"
    writer.close()
    dc.close()


@pytest.mark.asyncio
async def test_command_can_be_set_only_once():
    dc = DataConnection(HOST)
    await dc.listen(False)
    assert dc.set_ftp_command(PayloadCommand()) is True
    assert dc.set_ftp_command(PayloadCommand()) is False
    dc.close()


@pytest.mark.asyncio
async def test_set_command_without_listen_fails():
    dc = DataConnection(HOST)
    assert dc.set_ftp_command(PayloadCommand()) is False


@pytest.mark.asyncio
async def test_ftp_command_only_while_running():
    dc = DataConnection(HOST)
    port = await dc.listen(False)
    gate = asyncio.Event()
    command = PayloadCommand(gate=gate)
    dc.set_ftp_command(command)
    assert dc.ftp_command() is None
    reader, writer = await asyncio.open_connection(HOST, port)
    await asyncio.sleep(0.05)
    assert dc.ftp_command() is command
    gate.set()
    assert await _read_all(reader) == b"payload"
    await asyncio.wait_for(command.finished.wait(), 5)
    assert dc.ftp_command() is None
    writer.close()
    dc.close()


@pytest.mark.asyncio
async def test_listen_uses_port_range():
    free = _free_port()
    dc = DataConnection(HOST)
    dc.set_port_range((free, free + 1))
    assert dc.port_range == (free, free + 1)
    assert await dc.listen(False) == free
    dc.close()


@pytest.mark.asyncio
async def test_listen_returns_zero_when_port_busy():
    busy = socket.socket()
    busy.bind((HOST, 0))
    busy.listen()
    port = busy.getsockname()[1]
    try:
        dc = DataConnection(HOST)
        dc.set_port_range((port, port + 1))
        assert await dc.listen(False) == 0
    finally:
        busy.close()


@pytest.mark.asyncio
async def test_only_first_connection_is_accepted():
    dc = DataConnection(HOST)
    port = await dc.listen(False)
    assert port > 0
    reader, writer = await asyncio.open_connection(HOST, port)
    await asyncio.sleep(0.05)
    with pytest.raises(ConnectionRefusedError):
        await asyncio.open_connection(HOST, port)
    command = PayloadCommand(b"first")
    assert dc.set_ftp_command(command) is True
    assert await _read_all(reader) == b"first"
    await asyncio.wait_for(command.finished.wait(), 5)
    assert command.replies == ["done"]
    writer.close()
    dc.close()


@pytest.mark.asyncio
async def test_new_listen_stops_previous_listener():
    dc = DataConnection(HOST)
    first = await dc.listen(False)
    second = await dc.listen(False)
    assert second > 0
    with pytest.raises(ConnectionRefusedError):
        await asyncio.open_connection(HOST, first)
    dc.close()


@pytest.mark.asyncio
async def test_active_connection_sends_to_client():
    received = asyncio.get_running_loop().create_future()

    async def client(reader, writer):
        received.set_result(await reader.read())
        writer.close()

    client_server = await asyncio.start_server(client, HOST, 0)
    port = client_server.sockets[0].getsockname()[1]
    dc = DataConnection(HOST)
    dc.schedule_connect_to_host(HOST, port, False)
    command = PayloadCommand(b"active")
    assert dc.set_ftp_command(command) is True
    assert await asyncio.wait_for(received, 5) == b"active"
    await asyncio.wait_for(command.finished.wait(), 5)
    assert command.replies == ["done"]
    client_server.close()
    dc.close()


@pytest.mark.asyncio
async def test_active_connection_refused_never_starts_command():
    dc = DataConnection(HOST)
    dc.schedule_connect_to_host(HOST, _free_port(), False)
    command = PayloadCommand()
    assert dc.set_ftp_command(command) is True
    await asyncio.sleep(0.1)
    assert command.started is False
    assert dc.ftp_command() is None
    dc.close()


@pytest.mark.asyncio
async def test_encryption_requires_tls_context():
    set_ssl_context(None)
    dc = DataConnection(HOST)
    with pytest.raises(TlsNotConfiguredError):
        await dc.listen(True)
    with pytest.raises(TlsNotConfiguredError):
        dc.schedule_connect_to_host(HOST, 2121, True)


@pytest.mark.asyncio
async def test_close_aborts_running_command():
    dc = DataConnection(HOST)
    port = await dc.listen(False)
    command = PayloadCommand(gate=asyncio.Event())
    dc.set_ftp_command(command)
    reader, writer = await asyncio.open_connection(HOST, port)
    await asyncio.sleep(0.05)
    dc.close()
    await asyncio.wait_for(command.finished.wait(), 5)
    assert command.replies == ["done"]
    assert await _read_all(reader) == b""
    writer.close()


@pytest.mark.asyncio
async def test_listen_aborts_previous_command():
    dc = DataConnection(HOST)
    port = await dc.listen(False)
    command = PayloadCommand(gate=asyncio.Event())
    dc.set_ftp_command(command)
    reader, writer = await asyncio.open_connection(HOST, port)
    await asyncio.sleep(0.05)
    await dc.listen(False)
    await asyncio.wait_for(command.finished.wait(), 5)
    assert command.replies == ["done"]
    assert dc.ftp_command() is None
    writer.close()
    dc.close()