"""Server settings, their validation, and the ``ftpserv`` command."""

from __future__ import annotations

import argparse
import asyncio
import ipaddress
import logging
import os
import re
import sys
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

from ftpserv.config import ConfigError, ConfigList, Param, ParamType, Settings, load_values
from ftpserv.dataconnection import PortRange
from ftpserv.server import FtpServer, lan_ip
from ftpserv.tls import make_server_context

log = logging.getLogger(__name__)

APP_NAME = "ftpserv"
SETTINGS_GROUP = "public"

DEFAULT_PORT = 2121
DEFAULT_SUBNET = "192.168.1.0/24"
DEFAULT_SSL_KEY_PATH = ""
DEFAULT_SSL_CERT_PATH = ""

MIN_PORT = 1024
MAX_PORT = 65535

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_INTEGER = re.compile(r"\s*([+-]?\d+)")


def setup_params() -> List[Param]:
    """Return the server's configuration parameters with their defaults."""
    return [
        Param("Port for listen", "port", ParamType.NUMBER, DEFAULT_PORT),
        Param("Username", "userName", ParamType.STRING, ""),
        Param("Password", "passw", ParamType.STRING, ""),
        Param("Root path", "rootPath", ParamType.DIR, ""),
        Param("Enable anonymous", "anonEnable", ParamType.BOOL, False),
        Param("Read only", "readOnly", ParamType.BOOL, False),
        Param("Only one IP", "oneIp", ParamType.BOOL, True),
        Param("Data port range", "portRange", ParamType.STRING, ""),
        Param("Subnet", "subnet", ParamType.STRING, DEFAULT_SUBNET,
              comment="CIDR notation"),
        Param("SSL key file", "sslKeyPath", ParamType.FILE, DEFAULT_SSL_KEY_PATH,
              comment="You can/must make your own. See Openssl."),
        Param("SSL certificate file", "sslCertPath", ParamType.FILE,
              DEFAULT_SSL_CERT_PATH),
    ]


def parse_port_range(text: str) -> PortRange:
    """Read two whitespace-separated integers; missing or bad ones read as 0."""
    values = []
    pos = 0
    for _ in range(2):
        match = _INTEGER.match(text or "", pos)
        if match is None:
            break
        values.append(int(match.group(1)))
        pos = match.end()
    values += [0] * (2 - len(values))
    return values[0], values[1]


def parse_subnet(text: str) -> Optional[Network]:
    """Parse a subnet such as ``192.168.1.0/24``; return ``None`` if invalid."""
    try:
        return ipaddress.ip_network((text or "").strip(), strict=False)
    except ValueError:
        return None


def _param_value(config_list: ConfigList, name: str) -> Any:
    param = config_list.param(name)
    if param is None:
        raise KeyError(name)
    return param.value


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _port_ok(port: int) -> bool:
    return MIN_PORT <= port <= MAX_PORT


def validate_params(config_list: ConfigList) -> Network:
    """Check the edited settings and return the parsed subnet.

    Raises :class:`ConfigError` with a message for the first problem found.
    """
    if not _port_ok(_as_int(_param_value(config_list, "port"))):
        raise ConfigError("Port number must be between 1024 and 65535.")

    root_path = str(_param_value(config_list, "rootPath") or "")
    if not os.path.isdir(root_path or "."):
        raise ConfigError("Directory not exists. [Root path]")

    first, second = parse_port_range(str(_param_value(config_list, "portRange") or ""))
    if first >= second or not _port_ok(first) or not _port_ok(second):
        raise ConfigError(
            "Port range must be from min to max, port number between 1024 and 65535."
        )

    subnet_text = str(_param_value(config_list, "subnet") or "")
    subnet = parse_subnet(subnet_text)
    if subnet is None or subnet.prefixlen == 0:
        raise ConfigError("Parse subnet error:  " + subnet_text)
    return subnet


@dataclass
class ServerOptions:
    """The settings the server is started with."""

    port: int = DEFAULT_PORT
    user_name: str = ""
    password: str = ""
    root_path: str = ""
    anon_enable: bool = False
    read_only: bool = False
    one_ip: bool = True
    ssl_key_path: str = DEFAULT_SSL_KEY_PATH
    ssl_cert_path: str = DEFAULT_SSL_CERT_PATH
    port_range: PortRange = (0, 0)
    subnet: Optional[Network] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServerOptions":
        """Read options from ``settings``, using defaults for missing keys."""
        params = setup_params()
        load_values(params, settings)
        values = {param.name: param.value for param in params}
        return cls(
            port=values["port"],
            user_name=values["userName"],
            password=values["passw"],
            root_path=values["rootPath"],
            anon_enable=values["anonEnable"],
            read_only=values["readOnly"],
            one_ip=values["oneIp"],
            ssl_key_path=values["sslKeyPath"],
            ssl_cert_path=values["sslCertPath"],
            port_range=parse_port_range(values["portRange"]),
            subnet=parse_subnet(values["subnet"]),
        )


def _default_config_path() -> str:
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(
        os.path.expanduser("~"), ".config"
    )
    return os.path.join(base, APP_NAME, f"{APP_NAME}.conf")


def _split_assignment(text: str) -> Tuple[str, str]:
    name, sep, value = text.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {text!r}")
    return name.strip(), value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="A small FTP server.")
    parser.add_argument(
        "--config", default=None, help="settings file (INI format)"
    )
    parser.add_argument(
        "--set",
        dest="assignments",
        metavar="NAME=VALUE",
        action="append",
        type=_split_assignment,
        default=[],
        help="change a setting, check all settings and save them, then exit",
    )
    return parser


def _update_settings(path: str, assignments: Sequence[Tuple[str, str]]) -> int:
    settings = Settings(path, SETTINGS_GROUP)
    params = setup_params()
    load_values(params, settings)
    config_list = ConfigList(params)
    try:
        for name, value in assignments:
            config_list.edit_value(name, value)
        validate_params(config_list)
    except KeyError as exc:
        print(f"{APP_NAME}: unknown setting {exc.args[0]!r}", file=sys.stderr)
        return 2
    except ConfigError as exc:
        print(f"{APP_NAME}: {exc}", file=sys.stderr)
        return 2
    config_list.save_values(settings)
    settings.sync()
    return 0


def _make_server(options: ServerOptions) -> FtpServer:
    ssl_context = None
    if options.ssl_cert_path and options.ssl_key_path:
        try:
            ssl_context = make_server_context(options.ssl_cert_path, options.ssl_key_path)
        except OSError as exc:
            log.warning("TLS disabled, cannot load certificate or key: %s", exc)
    subnet = options.subnet if options.subnet is not None and options.subnet.prefixlen else None
    return FtpServer(
        options.root_path,
        options.port,
        options.user_name,
        options.password,
        options.read_only,
        options.one_ip,
        port_range=options.port_range,
        subnet=subnet,
        ssl_context=ssl_context,
        on_new_peer_ip=lambda ip: log.info("New peer IP:  %s", ip),
    )


async def _serve(server: FtpServer, port: int) -> None:
    await server.start()
    log.info("Listening at %s %s", lan_ip(), port)
    await server.serve_forever()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the server from the settings file, or update the settings."""
    args = _build_parser().parse_args(argv)
    config_path = args.config or _default_config_path()

    if args.assignments:
        return _update_settings(config_path, args.assignments)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    options = ServerOptions.from_settings(Settings(config_path, SETTINGS_GROUP))
    server = _make_server(options)
    try:
        asyncio.run(_serve(server, options.port))
    except OSError as exc:
        print(f"{APP_NAME}: cannot start server: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        log.info("Stop listening")
    finally:
        server.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())