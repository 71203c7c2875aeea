from unittest.mock import AsyncMock, MagicMock, patch

import click.testing
import pytest

from measource.cli import cli
from measource.types import CommsError
from measource.util import DEFAULT_HOST_ADDR, DEFAULT_LOGLEVEL, DEFAULT_PORT


@pytest.fixture
def cli_runner():
    return click.testing.CliRunner()


class TestServeCLI:
    @patch("measource.cli.base.start_server", new_callable=AsyncMock)
    def test_default_values(self, mock_start_server, cli_runner):
        result = cli_runner.invoke(cli, ["serve", "--source-type", "hidens"])
        assert result.exit_code == 0, result.output
        mock_start_server.assert_awaited_once_with(
            source_type="hidens",
            location="",
            read_interval=None,
            ini_path=None,
            host=DEFAULT_HOST_ADDR,
            msg_port=DEFAULT_PORT,
            notif_port=DEFAULT_PORT + 1,
            stream_port=DEFAULT_PORT + 2,
            log_to_file=True,
            log_to_stdout=True,
            log_path="",
            clear_prev_log=True,
            log_level=DEFAULT_LOGLEVEL,
        )

    @patch("measource.cli.base.start_server", new_callable=AsyncMock)
    def test_all_arguments(self, mock_start_server, cli_runner):
        result = cli_runner.invoke(
            cli,
            [
                "serve",
                "-t",
                "file",
                "--location",
                "/data/rec.npz",
                "--read-interval",
                "20",
                "--ini-path",
                "/tmp/sources.ini",
                "--host",
                "0.0.0.0",
                "--msg-port",
                "5555",
                "--notif-port",
                "5556",
                "--stream-port",
                "5557",
                "--no-log-to-file",
                "--no-log-to-stdout",
                "--log-path",
                "/tmp/server.log",
                "--no-clear-prev-log",
                "--log-level",
                "DEBUG",
            ],
        )
        assert result.exit_code == 0, result.output
        kwargs = mock_start_server.await_args.kwargs
        assert kwargs["source_type"] == "file"
        assert kwargs["location"] == "/data/rec.npz"
        assert kwargs["read_interval"] == 20
        assert (kwargs["msg_port"], kwargs["notif_port"], kwargs["stream_port"]) == (
            5555,
            5556,
            5557,
        )
        assert kwargs["log_to_file"] is False
        assert kwargs["clear_prev_log"] is False

    @patch("measource.cli.base.start_server", new_callable=AsyncMock)
    def test_ports_follow_msg_port(self, mock_start_server, cli_runner):
        result = cli_runner.invoke(cli, ["serve", "-t", "hidens", "-mp", "9000"])
        assert result.exit_code == 0, result.output
        kwargs = mock_start_server.await_args.kwargs
        assert (kwargs["msg_port"], kwargs["notif_port"], kwargs["stream_port"]) == (
            9000,
            9001,
            9002,
        )

    def test_source_type_required(self, cli_runner):
        result = cli_runner.invoke(cli, ["serve"])
        assert result.exit_code != 0
        assert "--source-type" in result.output

    def test_unknown_source_type(self, cli_runner):
        result = cli_runner.invoke(cli, ["serve", "-t", "bogus"])
        assert result.exit_code != 0


class TestClientCLI:
    @patch("measource.cli.base.client")
    def test_status(self, mock_client, cli_runner):
        conn = MagicMock()
        mock_client.open_connection.return_value = (conn, {})
        mock_client.request_status.return_value = {"state": "initialized", "nchannels": 3}
        result = cli_runner.invoke(cli, ["status", "-mp", "6000"])
        assert result.exit_code == 0, result.output
        assert "state: initialized" in result.output
        assert "nchannels: 3" in result.output
        mock_client.open_connection.assert_called_once_with(DEFAULT_HOST_ADDR, 6000)
        mock_client.close_connection.assert_called_once_with(conn)

    @patch("measource.cli.base.client")
    def test_get(self, mock_client, cli_runner):
        mock_client.open_connection.return_value = (MagicMock(), {})
        mock_client.get_param.return_value = 20000.0
        result = cli_runner.invoke(cli, ["get", "sample-rate"])
        assert result.exit_code == 0, result.output
        assert "20000.0" in result.output

    @patch("measource.cli.base.client")
    def test_get_error(self, mock_client, cli_runner):
        mock_client.open_connection.return_value = (MagicMock(), {})
        mock_client.get_param.side_effect = CommsError("not gettable")
        result = cli_runner.invoke(cli, ["get", "chip-id"])
        assert result.exit_code == 1
        assert "not gettable" in result.output
        mock_client.close_connection.assert_called_once()

    @patch("measource.cli.base.client.open_connection")
    def test_no_server(self, mock_open, cli_runner):
        mock_open.side_effect = CommsError("Server not responding")
        for cmd in (["status"], ["get", "state"], ["shutdown"]):
            result = cli_runner.invoke(cli, cmd)
            assert result.exit_code == 1
            assert "Server not responding" in result.output

    @patch("measource.cli.base.client")
    def test_shutdown(self, mock_client, cli_runner):
        conn = MagicMock()
        mock_client.open_connection.return_value = (conn, {})
        result = cli_runner.invoke(cli, ["shutdown"])
        assert result.exit_code == 0
        mock_client.shutdown_server.assert_called_once_with(conn)


class TestTree:
    def test_tree(self, cli_runner):
        result = cli_runner.invoke(cli, ["--tree"])
        assert result.exit_code == 0
        for name in ("serve", "status", "get", "shutdown"):
            assert f"└── {name}" in result.output
