"""The running HTTP listener: socket binding and the uvicorn server lifecycle."""

from __future__ import annotations

import errno
import logging
import socket
import sys
from typing import Any

import anyio
import uvicorn

from relay_mcp.exceptions import TransportError
from relay_mcp.server import LowLevelServer
from relay_mcp.settings import TransportSettings, load_settings
from relay_mcp.transport.starlette import create_starlette_app
from relay_mcp.utilities.logging import configure_logging

logger = logging.getLogger(__name__)

# Long-lived push streams would otherwise hold shutdown open indefinitely.
GRACEFUL_SHUTDOWN_TIMEOUT = 5


class StreamableHTTPListener:
    """Serves an MCP server over streamable HTTP.

    bind() is separate from serve() so that an unusable address is reported
    before anything else starts.

    Usage:
        listener = StreamableHTTPListener(server, settings)
        listener.bind()
        await listener.serve()   # until listener.close()
    """

    def __init__(self, server: LowLevelServer, settings: TransportSettings | None = None, **app_options: Any) -> None:
        self.settings = settings or TransportSettings()
        self.app = create_starlette_app(server, settings=self.settings, **app_options)
        self._socket: socket.socket | None = None
        self._uvicorn: uvicorn.Server | None = None

    @property
    def bound_port(self) -> int | None:
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    def bind(self) -> socket.socket:
        """Bind the listening address. Raises TransportError when it is unusable."""
        if self._socket is not None:
            return self._socket

        host, port = self.settings.host, self.settings.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as exc:
            sock.close()
            if exc.errno == errno.EADDRINUSE:
                raise TransportError(f"Port {port} is already in use", {"host": host, "port": port}) from exc
            raise TransportError(f"Cannot listen on {host}:{port}: {exc}", {"host": host, "port": port}) from exc
        sock.set_inheritable(True)
        self._socket = sock
        logger.info("HTTP server bound to %s:%d%s", host, self.bound_port, self.settings.path)
        return sock

    async def serve(self) -> None:
        """Serve until close() is called. Every session is closed on the way out."""
        sock = self.bind()
        config = uvicorn.Config(
            self.app,
            log_config=None,
            log_level=self.settings.log_level.lower(),
            timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_TIMEOUT,
        )
        self._uvicorn = uvicorn.Server(config)
        try:
            await self._uvicorn.serve(sockets=[sock])
        finally:
            sock.close()
            self._socket = None
            logger.info("HTTP server closed")

    def close(self) -> None:
        """Ask the server to shut down."""
        if self._uvicorn is not None:
            self._uvicorn.should_exit = True


def run_http(server: LowLevelServer, settings: TransportSettings | None = None, **app_options: Any) -> None:
    """Blocking entry point. Exits the process with status 1 when the listener cannot start."""
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    listener = StreamableHTTPListener(server, settings, **app_options)
    try:
        listener.bind()
    except TransportError as exc:
        logger.error("Fatal error during startup: %s", exc)
        sys.exit(1)

    logger.info("Serving %s v%s over streamable HTTP", server.name, server.version)
    anyio.run(listener.serve)
