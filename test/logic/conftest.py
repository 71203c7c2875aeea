import pytest
import pytest_asyncio
from source_fakes import FakeFpga, FakeHidensServer, write_electrode_table
from loguru import logger

from measource.types import HidensConfig


@pytest_asyncio.fixture
async def hidens_server():
    server = FakeHidensServer()
    await server.start()
    logger.info("Fake HiDens server on port {}", server.port)
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def fpga():
    server = FakeFpga()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def electrode_table(tmp_path):
    return write_electrode_table(tmp_path / "electrode-list.txt")


@pytest.fixture
def hidens_config(hidens_server, fpga, electrode_table) -> HidensConfig:
    return HidensConfig(
        location="127.0.0.1",
        port=hidens_server.port,
        fpga_addr="127.0.0.1",
        fpga_port=fpga.port,
        electrode_table=str(electrode_table),
        request_wait_time=0.5,
        connect_timeout=1.0,
        fpga_connect_timeout=1.0,
        fpga_write_timeout=1.0,
    )
