"""Fake HiDens sample server, fake FPGA endpoint, recordings and frame builders."""

import asyncio
import socket

import numpy as np

from measource.types import Notification

TOTAL_CHANNELS = 126
FRAME_BYTES = 131


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def channel_lines(connected: dict[int, int]) -> list[str]:
    """`ch` reply lines: channel -> electrode index, blank elsewhere."""
    lines = [""] * TOTAL_CHANNELS
    for channel, electrode in connected.items():
        lines[channel] = f"{electrode} "  # server pads with a space
    return lines


def raw_block(nsamples: int, connected_channels: list[int]) -> bytes:
    """Raw samples where channel c reads c + 1 and the aux bit is set on even samples."""
    block = np.zeros((nsamples, FRAME_BYTES), dtype=np.uint8)
    for ch in connected_channels:
        block[:, ch] = ch + 1
    block[::2, FRAME_BYTES - 1] = 0x08
    return block.tobytes()


def write_electrode_table(path, n=256):
    # line i describes electrode i
    lines = [f"{i * 10}x{i * 20}y {i % 100} {i // 100} A" for i in range(n)]
    path.write_text("\n".join(lines) + "\n")
    return path


async def next_notif(queue: asyncio.Queue, notif_type, timeout=2.0) -> Notification:
    """First notification of `notif_type`, skipping others."""
    async with asyncio.timeout(timeout):
        while True:
            notif = await queue.get()
            if isinstance(notif, notif_type):
                return notif


async def wait_for_command(server, cmd: str, timeout=2.0) -> None:
    """Wait until the fake server has read `cmd`."""
    async with asyncio.timeout(timeout):
        while cmd not in server.commands:
            await asyncio.sleep(0.01)


def drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


class FakeHidensServer:
    """Line-protocol stand-in for the HiDens sample server.

    `overrides` maps a command line to its reply; a `None` reply means the
    server stays silent.
    """

    def __init__(self):
        self.commands: list[str] = []
        self.overrides: dict[str, str | None] = {}
        self.chips = {1: 1234}  # plug -> chip id
        self.connected = {0: 10, 1: 11, 5: 42}  # channel -> electrode
        self.stream_chunk = b""
        self.port = 0
        self._server: asyncio.AbstractServer | None = None
        self._writers: list[asyncio.StreamWriter] = []
        self._selected: int | None = None

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self):
        self.drop()
        self._server.close()
        await self._server.wait_closed()

    def drop(self):
        for writer in self._writers:
            writer.close()
        self._writers.clear()

    def _reply(self, cmd: str) -> str | bytes | None:
        if cmd in self.overrides:
            return self.overrides[cmd]
        verb, _, arg = cmd.partition(" ")
        match verb:
            case "setbytes" | "header_frameno" | "client_name":
                return "ok"
            case "sr":
                return "20000"
            case "gain":
                return "5"
            case "adc_range":
                return "2560"
            case "select":
                plug = int(arg)
                if plug not in self.chips:
                    return "Error: no chip in plug"
                self._selected = plug
                return "ok"
            case "id":
                return str(self.chips.get(self._selected, 65535))
            case "ch":
                return "\n".join(channel_lines(self.connected))
            case "live" | "stream":
                return self.stream_chunk
        return "Error: unknown command"

    async def _handle(self, reader, writer):
        self._writers.append(writer)
        while True:
            line = await reader.readline()
            if not line:
                break
            cmd = line.decode().rstrip("\n")
            self.commands.append(cmd)
            reply = self._reply(cmd)
            if reply is None:
                continue
            if isinstance(reply, bytes):
                writer.write(reply)
            else:
                writer.write(reply.encode() + b"\n")
            await writer.drain()


class FakeFpga:
    """Accepts one upload and keeps its bytes."""

    def __init__(self):
        self.received = b""
        self.done = asyncio.Event()
        self.port = 0
        self._server = None

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self):
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader, writer):
        self.received = await reader.read()
        self.done.set()
        writer.close()


def write_recording(path, nchannels=3, nsamples=50, sample_rate=2000.0, **extra):
    """`.npz` recording where sample j of channel c reads 100 * c + j."""
    samples = (100 * np.arange(nchannels)[:, None] + np.arange(nsamples)).astype(np.int16)
    np.savez(path, samples=samples, sample_rate=sample_rate, **extra)
    return path
