"""An asyncio FTP server with optional TLS, read-only mode and subnet filtering."""

__version__ = "0.1.0"
__all__ = ["__version__"]