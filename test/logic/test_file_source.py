import asyncio

import numpy as np
import pytest
import pytest_asyncio
from loguru import logger
from source_fakes import drain, next_notif, write_recording

import measource.util
from measource.device import BASE_GETTABLE, SOURCE_STATE, FileSource
from measource.device.file_source import END_OF_DATA_MSG
from measource.types import (
    CONSTS,
    ErrorOccurred,
    FileSourceConfig,
    Request,
    ResourceMissing,
    SampleFrame,
    StateChanged,
)
from measource.util import TEST_LOGLEVEL


@pytest.fixture
def recording(tmp_path):
    return write_recording(tmp_path / "rec.npz")


class TestFileSource:
    @pytest.fixture(autouse=True, scope="class")
    def client_log(self):
        measource.util.start_client_log(
            log_level=TEST_LOGLEVEL, log_to_stdout=True, log_to_file=False
        )
        yield
        measource.util.shutdown_client_log()

    @pytest.fixture(autouse=True, scope="function")
    def log(self, request):
        logger.warning("STARTED Test '{}'".format(request.node.originalname))

        def fin():
            logger.warning("COMPLETED Test '{}' \n".format(request.node.originalname))

        request.addfinalizer(fin)

    @pytest_asyncio.fixture
    async def source(self, recording):
        source = FileSource(FileSourceConfig(location=str(recording)))
        yield source
        await source.close()

    def test_missing_recording(self, tmp_path):
        path = str(tmp_path / "missing.npz")
        with pytest.raises(ResourceMissing, match="does not exist"):
            FileSource(FileSourceConfig(location=path))

    def test_gettable(self, recording):
        source = FileSource(FileSourceConfig(location=str(recording)))
        assert BASE_GETTABLE <= source.gettable
        assert {"location", "analog-output"} <= source.gettable
        assert "plug" not in source.gettable
        assert source.settable == set()

    def test_hidens_recording_gettable(self, tmp_path):
        rows = np.array([[10, 100, 1, 200, 2, 65], [11, 110, 2, 210, 3, 65]])
        path = write_recording(
            tmp_path / "hidens.npz", nchannels=2, device_type="hidens", configuration=rows
        )
        source = FileSource(FileSourceConfig(location=str(path)))
        assert source.device_type == "hidens"
        assert {"configuration", "plug", "location"} <= source.gettable
        assert "analog-output" not in source.gettable

    @pytest.mark.asyncio
    async def test_hidens_recording_plug(self, tmp_path):
        rows = np.array([[10, 100, 1, 200, 2, 65], [11, 110, 2, 210, 3, 65]])
        path = write_recording(
            tmp_path / "hidens.npz", nchannels=2, device_type="hidens", configuration=rows
        )
        source = FileSource(FileSourceConfig(location=str(path)))
        assert (await source.get("plug")).value is None
        assert (await source.initialize()).success
        assert (await source.get("plug")).value == 0
        assert source.chip_id == 1
        assert source.configuration.indices == [10, 11]
        await source.close()

    # ------------------------------------------------------------------ lifecycle

    @pytest.mark.asyncio
    async def test_initial_state(self, source):
        assert source.state == SOURCE_STATE.INVALID
        assert np.isnan(source.gain)
        assert source.nchannels == 0
        assert (await source.get("connect-time")).value == ""

    @pytest.mark.asyncio
    async def test_initialize(self, source):
        reply = await source.initialize()
        assert reply.success
        assert reply.request == "initialize"
        assert source.state == SOURCE_STATE.INITIALIZED
        assert source.nchannels == 3
        assert source.sample_rate == 2000.0
        assert source.frame_size == 20
        assert (await source.get("connect-time")).value != ""
        notif = await next_notif(source.notif_queue, StateChanged)
        assert notif.source_type == "file"
        assert (notif.old_state, notif.new_state) == ("invalid", "initialized")

    @pytest.mark.asyncio
    async def test_bad_recording(self, tmp_path):
        path = tmp_path / "bad.npz"
        np.savez(path, samples=np.zeros((2, 4), dtype=np.int16))  # no sample_rate
        source = FileSource(FileSourceConfig(location=str(path)))
        reply = await source.initialize()
        assert not reply.success
        assert reply.msg.startswith("Could not read data file")
        assert source.state == SOURCE_STATE.INVALID

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "request_name, msg",
        [
            ("start_stream", "Can only start stream from the 'initialized' state."),
            ("stop_stream", "Can only stop stream from the 'streaming' state."),
        ],
    )
    async def test_wrong_state(self, source, request_name, msg):
        reply = await getattr(source, request_name)()
        assert not reply.success
        assert reply.msg == msg
        assert source.state == SOURCE_STATE.INVALID
        assert source.notif_queue.empty()

    @pytest.mark.asyncio
    async def test_stream_to_end_of_data(self, source):
        assert (await source.initialize()).success
        drain(source.notif_queue)
        assert (await source.start_stream()).success
        assert source.start_time is not None

        frames = []
        while True:
            notif = await asyncio.wait_for(source.notif_queue.get(), 2.0)
            if isinstance(notif, SampleFrame):
                frames.append(notif)
            elif isinstance(notif, StateChanged) and notif.new_state == "initialized":
                assert notif.msg == END_OF_DATA_MSG
                break

        assert [f.nsamples for f in frames] == [20, 20, 10]
        assert [f.frame_num for f in frames] == [0, 1, 2]
        np.testing.assert_array_equal(frames[1].samples[2], 200 + np.arange(20, 40))
        assert frames[0].aux.shape == (20,)
        assert source.state == SOURCE_STATE.INITIALIZED
        assert source.start_time is None

        # the source can stream again after running out
        assert (await source.start_stream()).success
        assert (await source.stop_stream()).success

    @pytest.mark.asyncio
    async def test_stop_stream(self, tmp_path):
        path = write_recording(tmp_path / "long.npz", nsamples=20000)
        source = FileSource(FileSourceConfig(location=str(path)))
        assert (await source.initialize()).success
        assert (await source.start_stream()).success
        await next_notif(source.notif_queue, SampleFrame)

        reply = await source.stop_stream()
        assert reply.success
        assert source.state == SOURCE_STATE.INITIALIZED
        drain(source.notif_queue)
        await asyncio.sleep(0.05)
        assert drain(source.notif_queue) == []
        await source.close()

    @pytest.mark.asyncio
    async def test_handle_error_idempotent(self, source):
        assert (await source.initialize()).success
        drain(source.notif_queue)

        source.handle_error("boom")
        assert source.state == SOURCE_STATE.INVALID
        assert np.isnan(source.gain)
        assert source.nchannels == 0
        assert source.connect_time is None
        notifs = drain(source.notif_queue)
        errors = [n for n in notifs if isinstance(n, ErrorOccurred)]
        assert [e.msg for e in errors] == ["boom"]

        source.handle_error("boom again")
        assert drain(source.notif_queue) == []

        assert (await source.initialize()).success

    @pytest.mark.asyncio
    async def test_handle_error_while_streaming(self, source):
        assert (await source.initialize()).success
        assert (await source.start_stream()).success
        source.handle_error("lost")
        assert source.state == SOURCE_STATE.INVALID
        assert source.start_time is None
        await next_notif(source.notif_queue, ErrorOccurred)

    # ------------------------------------------------------------------ parameters

    @pytest.mark.asyncio
    async def test_set_not_supported(self, source):
        reply = await source.set("read-interval", 20)
        assert not reply.success
        assert reply.msg == "Setting parameters is not implemented by FileSource sources."

    @pytest.mark.asyncio
    async def test_get(self, source):
        assert (await source.initialize()).success
        assert (await source.get("nchannels")).value == 3
        assert (await source.get("state")).value == "initialized"
        assert (await source.get("source-type")).value == "file"
        assert (await source.get("has-analog-output")).value is False
        reply = await source.get("chip-id")
        assert not reply.success
        assert reply.msg == 'The parameter "chip-id" is not valid for source FileSource'

    @pytest.mark.asyncio
    async def test_status(self, source):
        status = (await source.request_status()).value
        assert status["state"] == "invalid"
        assert status["source-type"] == "file"
        assert status["nchannels"] == 0

    @pytest.mark.asyncio
    async def test_requests_serialized(self, source):
        results = await asyncio.gather(
            source.initialize(), source.initialize(), source.get("state")
        )
        assert [r.success for r in results] == [True, False, True]
        assert results[2].value == "initialized"

    @pytest.mark.asyncio
    async def test_handle_request(self, source):
        reply = await source.handle(Request(CONSTS.SOURCE.INITIALIZE))
        assert reply.success
        reply = await source.handle(Request(CONSTS.SOURCE.GET, {"param": "nchannels"}))
        assert reply.value == 3
        reply = await source.handle(Request("CONSTS.SOURCE.CALIBRATE"))
        assert not reply.success
        assert reply.msg == "Unknown request: CONSTS.SOURCE.CALIBRATE"
