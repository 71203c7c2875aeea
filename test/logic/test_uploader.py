import socket
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from source_fakes import unused_port

from measource.device.hidens.uploader import ConfigUploader, PendingUpload, UploadResult


@pytest.fixture
def receiver():
    """One-shot TCP listener collecting everything sent to it."""
    srv = socket.create_server(("127.0.0.1", 0))
    received = bytearray()

    def serve():
        conn, _ = srv.accept()
        with conn:
            while chunk := conn.recv(4096):
                received.extend(chunk)

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield srv.getsockname()[1], received, thread
    srv.close()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "block.cmdraw.nrk2"
    path.write_bytes(bytes(range(256)) * 40)
    return path


class TestConfigUploader:
    def test_upload(self, receiver, config_file):
        port, received, thread = receiver
        result = ConfigUploader(1.0, 1.0).run(PendingUpload(str(config_file), "127.0.0.1", port))
        thread.join(2.0)
        assert result == UploadResult(True, str(config_file))
        assert bytes(received) == config_file.read_bytes()

    def test_unreachable(self, config_file):
        upload = PendingUpload(str(config_file), "127.0.0.1", unused_port())
        assert ConfigUploader(0.5, 0.5).run(upload) == UploadResult(False, str(config_file))

    def test_missing_file(self, receiver, tmp_path):
        port, _, _ = receiver
        path = str(tmp_path / "gone.cmdraw.nrk2")
        result = ConfigUploader(1.0, 1.0).run(PendingUpload(path, "127.0.0.1", port))
        assert not result.success

    def test_submit(self, receiver, config_file):
        port, received, thread = receiver
        with ThreadPoolExecutor(1) as executor:
            future = ConfigUploader(1.0, 1.0).submit(
                PendingUpload(str(config_file), "127.0.0.1", port), executor
            )
            assert future.result(timeout=5).success
        thread.join(2.0)
        assert len(received) == 256 * 40
