"""Configuration upload to the HiDens FPGA.

The upload is a blocking socket transfer that can take several seconds, so
it runs on a worker thread; the owning source only sees the `Future`.
"""

from __future__ import annotations

import socket
import time
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from measource.util.defaults import FPGA_CONNECT_TIMEOUT, FPGA_WRITE_TIMEOUT


@dataclass(frozen=True)
class PendingUpload:
    file_path: str
    target_address: str
    target_port: int


@dataclass(frozen=True)
class UploadResult:
    success: bool
    file_path: str


class ConfigUploader:
    """Sends a configuration file's raw bytes to the FPGA endpoint."""

    def __init__(
        self,
        connect_timeout: float = FPGA_CONNECT_TIMEOUT,
        write_timeout: float = FPGA_WRITE_TIMEOUT,
    ):
        self.connect_timeout = connect_timeout
        self.write_timeout = write_timeout

    def run(self, upload: PendingUpload) -> UploadResult:
        """Blocking transfer. Never raises; failures give `success=False`."""
        failed = UploadResult(False, upload.file_path)
        addr = (upload.target_address, upload.target_port)
        try:
            sock = socket.create_connection(addr, timeout=self.connect_timeout)
        except OSError as e:
            logger.error("Could not connect to FPGA at {}:{}: {!r}", *addr, e)
            return failed

        with sock:
            try:
                data = Path(upload.file_path).read_bytes()
            except OSError as e:
                logger.error("Could not read configuration file {}: {!r}", upload.file_path, e)
                return failed

            sock.settimeout(self.write_timeout)
            deadline = time.monotonic() + self.write_timeout
            view = memoryview(data)
            written = 0
            try:
                while written < len(data):
                    if time.monotonic() > deadline:
                        raise TimeoutError("write deadline passed")
                    written += sock.send(view[written:])
                sock.shutdown(socket.SHUT_WR)
            except OSError as e:
                logger.error(
                    "Configuration upload to {}:{} failed after {}/{} bytes: {!r}",
                    *addr,
                    written,
                    len(data),
                    e,
                )
                return failed

        logger.info("Uploaded {} ({} bytes) to {}:{}", upload.file_path, len(data), *addr)
        return UploadResult(True, upload.file_path)

    def submit(self, upload: PendingUpload, executor: Executor) -> Future[UploadResult]:
        return executor.submit(self.run, upload)
