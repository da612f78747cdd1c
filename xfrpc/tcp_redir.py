"""Local TCP redirect: accept one local connection at a time and relay it to the server."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import threading
from typing import Optional

from xfrpc.utils import is_valid_ip_address

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024


def _resolve_ipv4(server_addr: str) -> str:
    """Return ``server_addr`` as an IPv4 address, resolving a host name if needed."""
    if is_valid_ip_address(server_addr):
        return server_addr
    return socket.gethostbyname(server_addr)


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(Exception):
        await writer.wait_closed()


async def _pipe(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    try:
        while data := await reader.read(_CHUNK):
            writer.write(data)
            await writer.drain()
    except (ConnectionError, OSError):
        logger.error("connection error")
        return
    logger.info("connection closed")


class TcpRedirService:
    """Listen on ``local_port`` and relay each accepted connection to
    ``server_addr:remote_port``.

    Only one connection is relayed at a time; others are closed on accept.
    """

    def __init__(self, local_port: int, server_addr: str, remote_port: int, host: str = "0.0.0.0") -> None:
        self.local_port = local_port
        self.server_addr = server_addr
        self.remote_port = remote_port
        self.host = host
        self.port: Optional[int] = None
        self._server_ip: Optional[str] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._active = False
        self._writers: set[asyncio.StreamWriter] = set()

    async def __aenter__(self) -> "TcpRedirService":
        await self.serve()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def serve(self) -> None:
        """Resolve the server address and start listening.

        Returns once the listener is bound; ``port`` then holds the bound port.
        Raises OSError if the server address cannot be resolved or the port
        cannot be bound.
        """
        loop = asyncio.get_running_loop()
        self._server_ip = await loop.run_in_executor(None, _resolve_ipv4, self.server_addr)
        self._server = await asyncio.start_server(
            self._handle, self.host, self.local_port, reuse_address=True
        )
        self.port = self._server.sockets[0].getsockname()[1]

    async def close(self) -> None:
        """Stop listening and drop the connection being relayed, if any."""
        if self._server is not None:
            self._server.close()
        for writer in list(self._writers):
            await _close_writer(writer)
        if self._server is not None:
            await self._server.wait_closed()
            self._server = None

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self._active:
            logger.info("Rejecting new connection. Only one connection allowed at a time.")
            await _close_writer(writer)
            return
        self._active = True
        self._writers.add(writer)
        try:
            try:
                up_reader, up_writer = await asyncio.open_connection(self._server_ip, self.remote_port)
            except OSError as exc:
                logger.error("connect to remote port failed! %s", exc)
                await _close_writer(writer)
                return
            self._writers.add(up_writer)
            logger.info("connect to remote xfrps service [%s:%d] success!", self.server_addr, self.remote_port)
            tasks = {
                asyncio.create_task(_pipe(reader, up_writer)),
                asyncio.create_task(_pipe(up_reader, writer)),
            }
            try:
                _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                await _close_writer(writer)
                await _close_writer(up_writer)
                self._writers.discard(up_writer)
        finally:
            self._writers.discard(writer)
            self._active = False


def start_tcp_redir_service(local_port: int, server_addr: str, remote_port: int) -> TcpRedirService:
    """Run a redirect service on a background daemon thread.

    Returns once the service listens; errors while starting are raised here.
    """
    service = TcpRedirService(local_port, server_addr, remote_port)
    ready = threading.Event()
    failure: list[BaseException] = []

    def worker() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(service.serve())
        except BaseException as exc:  # reported to the starting thread
            failure.append(exc)
            ready.set()
            loop.close()
            return
        service._loop = loop  # type: ignore[attr-defined]
        ready.set()
        try:
            loop.run_forever()
        finally:
            loop.close()

    thread = threading.Thread(target=worker, name="tcp-redir", daemon=True)
    thread.start()
    logger.info("create tcp_redir worker thread success!")
    ready.wait()
    if failure:
        raise failure[0]
    return service