"""TCP link to the HiDens sample server.

The server speaks a line protocol for commands and then pushes raw frames on
the same connection, so the link is a plain byte buffer with bounded waits on
top: wait for a line, wait for N lines, read N bytes.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from loguru import logger

from measource.types import ProtocolError, ReplyTimeout, SourceConnectionError

TIMEOUT_MSG = "Communication with the HiDens data server timed out."
LOST_MSG = "Connection to the HiDens data server was lost."


class HidensLink(asyncio.Protocol):
    """Buffered connection owned by a single `HidensSource`.

    `on_lost` is called when the peer drops the connection, never when the
    owner closes it with `close()`.
    """

    def __init__(self, on_lost: Callable[[Exception | None], None] | None = None):
        self._buffer = bytearray()
        self._transport: asyncio.Transport | None = None
        self._data_event = asyncio.Event()
        self._on_lost = on_lost
        self._closing = False
        self.connected = False

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        timeout: float,
        on_lost: Callable[[Exception | None], None] | None = None,
    ) -> HidensLink:
        loop = asyncio.get_running_loop()
        try:
            _, link = await asyncio.wait_for(
                loop.create_connection(lambda: cls(on_lost), host, port), timeout
            )
        except (OSError, TimeoutError) as e:
            logger.error("Could not connect to {}:{}: {!r}", host, port, e)
            raise SourceConnectionError("Could not connect to HiDens data server.") from e
        return link

    # asyncio.Protocol -------------------------------------------------------

    def connection_made(self, transport):
        self._transport = transport
        self.connected = True

    def data_received(self, data: bytes):
        self._buffer.extend(data)
        self._data_event.set()

    def connection_lost(self, exc):
        self.connected = False
        self._data_event.set()  # wake waiters
        if not self._closing and self._on_lost is not None:
            self._on_lost(exc)

    # ------------------------------------------------------------------------

    @property
    def bytes_available(self) -> int:
        return len(self._buffer)

    def write(self, data: bytes) -> None:
        if not self.connected or self._transport is None:
            raise ProtocolError("Error sending request to HiDens data server.")
        logger.trace("HiDens -> {!r}", data)
        self._transport.write(data)

    def read(self, nbytes: int) -> bytes:
        out = bytes(self._buffer[:nbytes])
        del self._buffer[:nbytes]
        return out

    def discard(self) -> int:
        n = len(self._buffer)
        self._buffer.clear()
        return n

    async def _wait_until(self, predicate: Callable[[], bool], timeout: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if not self.connected:
                raise ProtocolError(LOST_MSG)
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ReplyTimeout(TIMEOUT_MSG)
            self._data_event.clear()
            try:
                await asyncio.wait_for(self._data_event.wait(), remaining)
            except TimeoutError:
                raise ReplyTimeout(TIMEOUT_MSG) from None

    async def read_line(self, timeout: float) -> str:
        """One reply line, without its line terminator."""
        await self._wait_until(lambda: b"\n" in self._buffer, timeout)
        end = self._buffer.index(b"\n")
        line = self.read(end + 1)[:-1]
        reply = line.rstrip(b"\r").decode("latin-1")
        logger.trace("HiDens <- {!r}", reply)
        return reply

    async def read_lines(self, count: int, timeout: float) -> list[str]:
        """Up to `count` lines.

        Waits `timeout` for the first byte, then up to `timeout` again for
        the rest. Whatever has arrived by then is returned, split on newlines.
        """
        await self._wait_until(lambda: len(self._buffer) > 0, timeout)
        try:
            await self._wait_until(lambda: self._buffer.count(b"\n") >= count, timeout)
        except ReplyTimeout:
            logger.debug("Short multi-line reply, using what arrived.")
        data = bytes(self._buffer)
        lines = data.split(b"\n")
        consumed = lines[:count]
        used = sum(len(line) + 1 for line in consumed)
        del self._buffer[: min(used, len(self._buffer))]
        return [line.decode("latin-1") for line in consumed]

    def close(self) -> bool:
        """Close without notifying the owner. Returns True if it was open."""
        self._closing = True
        was_open = self.connected
        if self._transport is not None:
            self._transport.close()
        self.connected = False
        self._data_event.set()
        return was_open
