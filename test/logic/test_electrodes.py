import numpy as np
import pytest
from source_fakes import FRAME_BYTES, raw_block, write_electrode_table

from measource.device.hidens.electrodes import ElectrodeTable, load_electrode_table
from measource.device.hidens.frames import (
    channel_rows,
    decode_frames,
    parse_channel_report,
    verify_reply,
)
from measource.types import (
    Configuration,
    Electrode,
    ProtocolError,
    ResourceMissing,
    ValidationError,
)

AUX_ROW = FRAME_BYTES - 1


class TestConfiguration:
    def test_identity_is_index(self):
        assert Electrode(3, xpos=1) == Electrode(3, xpos=2)
        assert Electrode(3) != Electrode(4)
        assert len({Electrode(3, label=1), Electrode(3, label=2)}) == 1

    def test_order_and_membership(self):
        config = Configuration([Electrode(7), Electrode(2), Electrode(5)])
        assert config.indices == [7, 2, 5]
        assert 2 in config
        assert Electrode(5) in config
        assert 3 not in config
        assert config[0].index == 7

    def test_duplicates_rejected(self):
        config = Configuration([Electrode(1)])
        with pytest.raises(ValidationError):
            config.append(Electrode(1, xpos=99))
        assert len(config) == 1

    def test_json(self):
        config = Configuration([Electrode(4, xpos=10, ypos=20, x=1, y=2, label=65)])
        assert config.to_json() == [[4, 10, 1, 20, 2, 65]]
        assert Configuration.from_json(config.to_json()) == config

    def test_equality_uses_positions(self):
        a = Configuration([Electrode(1, xpos=1)])
        b = Configuration([Electrode(1, xpos=2)])
        assert a != b
        assert Configuration() == Configuration()


class TestElectrodeTable:
    def test_lookup(self, tmp_path):
        table = ElectrodeTable.from_file(write_electrode_table(tmp_path / "el.txt"))
        assert len(table) == 256
        el = table.lookup(123)
        assert (el.index, el.xpos, el.ypos, el.x, el.y, el.label) == (
            123,
            1230,
            2460,
            23,
            1,
            ord("A"),
        )

    def test_real_line_format(self):
        table = ElectrodeTable(["1052x1743y 3 17 A", "12p5x7y 1 2 B"])
        el = table.lookup(0)
        assert (el.xpos, el.ypos, el.x, el.y, el.label) == (1052, 1743, 3, 17, ord("A"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ResourceMissing, match="'electrode-list.txt' is missing!"):
            ElectrodeTable.from_file(tmp_path / "electrode-list.txt")

    def test_bad_line(self):
        table = ElectrodeTable(["garbage"])
        with pytest.raises(ResourceMissing):
            table.lookup(0)
        with pytest.raises(ResourceMissing):
            table.lookup(5)

    def test_build_configuration(self, tmp_path):
        table = load_electrode_table(str(write_electrode_table(tmp_path / "el.txt")))
        config = table.build_configuration(np.array([-1, 8, -1, 3]))
        assert config.indices == [8, 3]

    def test_cached(self, tmp_path):
        path = str(write_electrode_table(tmp_path / "el.txt"))
        assert load_electrode_table(path) is load_electrode_table(path)


class TestFrames:
    @pytest.mark.parametrize(
        "reply, ok",
        [("ok", True), ("", True), ("1234", True), ("Error: no chip", False), (None, False)],
    )
    def test_verify_reply(self, reply, ok):
        assert verify_reply(reply) is ok

    def test_parse_channel_report(self):
        lines = ["10 ", "", "  ", "42"]
        indices = parse_channel_report(lines, 6)
        np.testing.assert_array_equal(indices, [10, -1, -1, 42, -1, -1])

    @pytest.mark.parametrize("line", ["abc", "-3"])
    def test_parse_channel_report_bad_entry(self, line):
        with pytest.raises(ProtocolError):
            parse_channel_report(["1", line], 4)

    def test_channel_rows(self):
        rows = channel_rows(np.array([5, -1, 7]), AUX_ROW)
        np.testing.assert_array_equal(rows, [0, 2, AUX_ROW])

    def test_decode_frames(self):
        rows = channel_rows(np.array([1, -1, 2, -1, -1, 3]), AUX_ROW)
        samples, aux = decode_frames(raw_block(4, [0, 2, 5]), FRAME_BYTES, rows, AUX_ROW, 0x08)
        assert samples.shape == (3, 4)
        assert samples.dtype == np.int16
        np.testing.assert_array_equal(samples[:, 0], [-1, -3, -6])
        np.testing.assert_array_equal(aux, [255, 0, 255, 0])

    def test_decode_no_connected_channels(self):
        rows = channel_rows(np.full(126, -1), AUX_ROW)
        samples, aux = decode_frames(raw_block(2, []), FRAME_BYTES, rows, AUX_ROW, 0x08)
        assert samples.shape == (0, 2)
        assert aux.shape == (2,)

    def test_decode_partial_sample(self):
        rows = channel_rows(np.array([1]), AUX_ROW)
        with pytest.raises(ProtocolError):
            decode_frames(b"\x00" * (FRAME_BYTES + 1), FRAME_BYTES, rows, AUX_ROW, 0x08)
