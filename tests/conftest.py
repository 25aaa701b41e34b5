import asyncio
import socket
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from nutdash.nut.models import ServerEndpoint


def pytest_addoption(parser):
    parser.addoption("--integration", action="store_true", default=False, help="Run integration tests")


def pytest_collection_modifyitems(config, items):
    if not config.getoption("--integration"):
        skip_integration = pytest.mark.skip(reason="need --integration option to run")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_integration)


BUSY_LINE = "ERR Other communication still running"


def _quoted(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class FakeNUTServer:
    """
    A minimal upsd speaking enough of the NUT protocol for tests.

    Attributes:
        devices: ``{device name: {variable: value}}`` served by LIST UPS / LIST VAR.
        busy: ``{device name: n}`` answers the next n LIST VAR with the busy error.
        responses: Raw reply lines keyed by exact command, checked first.
        delay: Seconds to wait before answering any LIST command.
        credentials: ``(username, password)`` required by the handshake, if set.
    """

    def __init__(self, devices: Optional[Dict[str, Dict[str, str]]] = None):
        self.devices = devices if devices is not None else {}
        self.busy: Dict[str, int] = {}
        self.responses: Dict[str, List[str]] = {}
        self.delay = 0.0
        self.credentials = None
        self.connections = 0
        self.commands: List[str] = []
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: set = set()
        self.host = "127.0.0.1"
        self.port = 0

    @property
    def endpoint(self) -> ServerEndpoint:
        return ServerEndpoint(id=1, host=self.host, port=self.port)

    async def start(self) -> "FakeNUTServer":
        self._server = await asyncio.start_server(self._handle, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            for writer in list(self._writers):
                writer.close()
            await asyncio.wait_for(self._server.wait_closed(), timeout=5)

    async def drop_clients(self) -> None:
        """Hang up on every connected client but keep listening."""
        for writer in list(self._writers):
            writer.close()
        # Let the clients' transports see the EOF.
        await asyncio.sleep(0.1)

    def _reply(self, command: str, state: dict) -> List[str]:
        if command in self.responses:
            return self.responses[command]
        words = command.split(" ")
        if words[0] == "USERNAME":
            state["username"] = words[1]
            return ["OK"]
        if words[0] == "PASSWORD":
            if self.credentials and (state.get("username"), words[1]) != self.credentials:
                return ["ERR ACCESS-DENIED"]
            return ["OK"]
        if command == "LOGOUT":
            return ["OK Goodbye"]
        if command == "LIST UPS":
            if self.credentials and "username" not in state:
                return ["ERR USERNAME-REQUIRED"]
            return (
                ["BEGIN LIST UPS"]
                + [f'UPS {name} "Fake UPS {name}"' for name in self.devices]
                + ["END LIST UPS"]
            )
        if words[:2] == ["LIST", "VAR"] and len(words) == 3:
            name = words[2]
            if name not in self.devices:
                return ["ERR UNKNOWN-UPS"]
            if self.busy.get(name, 0) > 0:
                self.busy[name] -= 1
                return [BUSY_LINE]
            return (
                [f"BEGIN LIST VAR {name}"]
                + [f"VAR {name} {var} {_quoted(value)}"
                   for var, value in self.devices[name].items()]
                + [f"END LIST VAR {name}"]
            )
        return ["ERR UNKNOWN-COMMAND"]

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        state: dict = {}
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                command = raw.decode().rstrip("\r\n")
                self.commands.append(command)
                if command.startswith("LIST") and self.delay:
                    await asyncio.sleep(self.delay)
                    if writer.is_closing():
                        break
                for line in self._reply(command, state):
                    writer.write(f"{line}\n".encode())
                await writer.drain()
                if command == "LOGOUT":
                    break
        except (ConnectionError, asyncio.CancelledError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()


@pytest_asyncio.fixture
async def nut_server():
    server = FakeNUTServer(
        devices={
            "ups1": {
                "battery.charge": "87",
                "battery.runtime": "1800",
                "battery.voltage": "13.5",
                "device.mfr": "CyberPower",
                "device.model": "CP1500",
                "ups.status": "OL",
                "ups.load": "25",
            },
            "ups2": {
                "battery.charge": "100",
                "ups.status": "OB DISCHRG",
                "ups.id": "Rack B",
            },
        }
    )
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def unused_endpoint() -> ServerEndpoint:
    """An endpoint nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return ServerEndpoint(id=99, host="127.0.0.1", port=port)
