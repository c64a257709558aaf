"""Server-side TLS configuration shared by control and data connections."""

from __future__ import annotations

import os
import ssl
from typing import Dict, Optional, Union

_PathLike = Union[str, "os.PathLike[str]"]

_state: Dict[str, Optional[ssl.SSLContext]] = {"context": None}


def set_ssl_context(context: Optional[ssl.SSLContext]) -> None:
    """Install the context used to encrypt server-side sockets.

    Passing ``None`` removes any previously installed context.
    """
    _state["context"] = context


def get_ssl_context() -> Optional[ssl.SSLContext]:
    """Return the installed server context, or ``None`` if none is set."""
    return _state["context"]


def make_server_context(cert_path: _PathLike, key_path: _PathLike) -> ssl.SSLContext:
    """Build a server context from a PEM certificate chain and private key.

    Peers are not asked for certificates.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.verify_mode = ssl.CERT_NONE
    context.load_cert_chain(os.fspath(cert_path), os.fspath(key_path))
    return context