import pytest
from source_fakes import write_recording

from measource.device import (
    SOURCE_TYPES,
    FileSource,
    HidensSource,
    create_source,
    register_source_type,
)
from measource.types import (
    FileSourceConfig,
    HidensConfig,
    SourceConfig,
    UnsupportedSourceError,
    config_class_for,
    load_source_config,
)


@pytest.fixture
def ini(tmp_path):
    path = tmp_path / "sources.ini"
    path.write_text("")
    return path


class TestCreateSource:
    def test_hidens(self, ini):
        source = create_source("HiDens", "10.0.0.5", read_interval=20, ini_path=ini)
        assert isinstance(source, HidensSource)
        assert source.location == "10.0.0.5"
        assert source.read_interval == 20
        assert source.config.port == 11112
        assert source.state == "invalid"

    def test_default_location(self, ini):
        source = create_source("hidens", ini_path=ini)
        assert source.location == "11.0.0.1"

    def test_file(self, tmp_path, ini):
        path = write_recording(tmp_path / "rec.npz")
        source = create_source("file", str(path), ini_path=ini)
        assert isinstance(source, FileSource)

    def test_explicit_config(self):
        config = HidensConfig(location="1.2.3.4", port=9999)
        source = create_source("hidens", "ignored", config=config)
        assert source.location == "1.2.3.4"
        assert source.config is config

    def test_unsupported(self):
        with pytest.raises(UnsupportedSourceError, match="NI-DAQmx"):
            create_source("mcs")

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown source type: bogus"):
            create_source("bogus")

    def test_register(self, tmp_path, ini):
        path = write_recording(tmp_path / "rec.npz")
        register_source_type("Replay", lambda config, queue: FileSource(config, queue))
        try:
            config = FileSourceConfig(location=str(path))
            assert isinstance(create_source("replay", config=config), FileSource)
        finally:
            SOURCE_TYPES.pop("replay")


class TestSourceConfig:
    def test_defaults(self, ini):
        config = load_source_config("hidens", ini)
        assert isinstance(config, HidensConfig)
        assert config.fpga_addr == "11.0.0.7"
        assert config.fpga_port == 32124
        assert config.aux_row == 130

    def test_ini_overrides(self, ini):
        ini.write_text(
            "[HiDens]\nlocation = 10.1.1.1\nport = 0x2b68\nrequest-wait-time = 0.25\n"
            "[file]\nread_interval = 50\n"
        )
        config = load_source_config("hidens", ini)
        assert config.location == "10.1.1.1"
        assert config.port == 11112
        assert config.request_wait_time == 0.25
        assert load_source_config("file", ini).read_interval == 50

    def test_keyword_overrides_win(self, ini):
        ini.write_text("[hidens]\nlocation = 10.1.1.1\n")
        config = load_source_config("hidens", ini, location="10.2.2.2", read_interval=None)
        assert config.location == "10.2.2.2"
        assert config.read_interval == 10

    def test_unknown_option(self, ini):
        ini.write_text("[hidens]\ncolour = blue\n")
        with pytest.raises(ValueError, match="Unknown option 'colour'"):
            load_source_config("hidens", ini)

    def test_missing_ini(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            load_source_config("hidens", tmp_path / "nope.ini")

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            config_class_for("bogus")

    def test_dict_round_trip(self):
        config = HidensConfig(location="1.2.3.4")
        data = config.to_dict()
        assert data["source_type"] == "hidens"
        assert SourceConfig.from_dict(data) == config
