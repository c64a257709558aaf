# ftpserv

A small FTP server built on asyncio, with optional explicit TLS (FTPS).

It serves one directory tree as its virtual root; `..` in client paths is
resolved before the root is prepended, so clients cannot climb out of it.
It can also:

- accept any user name and password when no password is configured, or
  require one user name and password;
- run in read-only mode, which refuses `STOR`, `APPE`, `MKD`, `RMD`, `DELE`,
  `RNFR` and `RNTO`;
- accept connections only from one subnet, given in CIDR notation;
- remember the first client IP and refuse every other IP;
- take passive-mode data ports from a configured range;
- encrypt the control connection with `AUTH TLS` and data connections with
  `PROT P`, once a certificate and key are configured.

Supported commands: `USER`, `PASS`, `QUIT`, `AUTH TLS`, `FEAT`, `PWD`, `CWD`,
`CDUP`, `TYPE`, `PORT`, `PASV`, `LIST`, `NLST`, `RETR`, `REST`, `STOR`,
`APPE`, `SIZE`, `SYST`, `PROT`, `PBSZ 0`, `OPTS UTF8 ON`, `NOOP`, `MKD`,
`RMD`, `DELE`, `RNFR`, `RNTO`. Anything else gets `502`.

## Installation

```
pip install .
```

## Running

```
ftpserv
```

The server reads its settings from the `public` section of an INI file,
by default `$XDG_CONFIG_HOME/ftpserv/ftpserv.conf` (or
`~/.config/ftpserv/ftpserv.conf`). Another file can be given with
`--config PATH`.

| key           | meaning                                           | default          |
|---------------|---------------------------------------------------|------------------|
| `port`        | port to listen on                                 | `2121`           |
| `userName`    | expected user name                                | empty            |
| `passw`       | expected password; empty lets anyone log in       | empty            |
| `rootPath`    | directory served as `/` (empty serves the file system root) | empty  |
| `anonEnable`  | stored with the settings; the server does not use it | `false`       |
| `readOnly`    | refuse commands that write                        | `false`          |
| `oneIp`       | accept only the first client IP                   | `true`           |
| `portRange`   | passive data ports, e.g. `50000 50100`            | empty (any port) |
| `subnet`      | allowed clients, CIDR notation                    | `192.168.1.0/24` |
| `sslKeyPath`  | PEM private key for TLS                           | empty            |
| `sslCertPath` | PEM certificate for TLS                           | empty            |

TLS is enabled only when both `sslKeyPath` and `sslCertPath` are set and
load; make your own key and certificate with OpenSSL. Without them,
`AUTH TLS` is answered with `502` and data connections after `PROT P` with
`425`.

### Changing settings

```
ftpserv --set port=2121 --set rootPath=/srv/ftp --set "portRange=50000 50100"
```

`--set NAME=VALUE` may be repeated. The values are checked by type, then
all settings are validated together: the port must be between 1024 and
65535, the root directory must exist, the data port range must be two
ports in that range with the first below the second, and the subnet must
parse with a non-zero prefix. If all is well the settings are saved and the
command exits with status 0; otherwise it prints the problem and exits
with status 2.

## Using it from Python

```python
import asyncio
from ftpserv.server import FtpServer

async def run():
    server = FtpServer(root_path="/srv/ftp", port=2121, read_only=True)
    await server.start()
    await server.serve_forever()

asyncio.run(run())
```

`FtpServer` also takes keyword arguments `host`, `port_range`, `subnet`,
`ssl_context` (see `ftpserv.tls.make_server_context`) and `on_new_peer_ip`,
a callback called once for each new client IP. `is_listening` and
`listening_port` report its state, and `ftpserv.server.lan_ip()` returns
the host's first non-loopback IPv4 address.

`ftpserv.config.ConfigList` holds the typed `Param` list and checks edits
with `edit_value`; `ftpserv.config.Settings` reads and writes one section
of an INI file. `ftpserv.app.validate_params` applies the checks listed
above and returns the parsed subnet; `ftpserv.app.ServerOptions.from_settings`
reads the options the server is started with.

## What it does not do

There is no graphical settings window or tray icon: settings are changed
with `ftpserv --set` or by editing the INI file. No certificate or key is
shipped, so TLS stays off until you supply your own.

## Tests

```
pip install .[test]
pytest
```