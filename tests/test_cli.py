import subprocess

from p2plocate.cli import (
    handle_user_arguments,
    initialise_server,
    format_devices,
    CancellationToken,
)
from p2plocate.server import DEFAULT_PORT


def test_cli_help():
    assert subprocess.run(["p2plocate-listen", "--help"]).returncode == 0


def test_default_arguments():
    arguments = handle_user_arguments([])
    assert arguments.port == DEFAULT_PORT
    assert arguments.client_id is None
    assert arguments.functions == []
    assert arguments.broadcast_address is None


def test_initialise_server(tmp_path):
    arguments = handle_user_arguments(
        [
            "--port",
            "20450",
            "--client-id",
            "cli",
            "-f",
            "Function1",
            "-f",
            "Function2",
            "-b",
            "127.0.0.1",
            "--identity-file",
            str(tmp_path / "clientid"),
        ]
    )
    server = initialise_server(arguments)
    assert server.port == 20450
    assert server.client_id == "cli"
    assert server.functions == ("Function1", "Function2")
    assert server.broadcast_address == "127.0.0.1"


def test_format_devices(tmp_path):
    arguments = handle_user_arguments(
        ["--identity-file", str(tmp_path / "clientid")]
    )
    server = initialise_server(arguments)
    server.devices.record("2", ["Function1", "Function2"], ("10.0.0.2", 40000))
    server.devices.record("3", [], ("10.0.0.3", 40001))
    assert format_devices(server).splitlines() == [
        "Known devices (2):",
        "  2 at 10.0.0.2:40000: Function1, Function2",
        "  3 at 10.0.0.3:40001: no functions",
    ]


def test_cancellation_token():
    token = CancellationToken()
    assert not token.is_cancelled
    token.cancel()
    assert token.is_cancelled
    token.wait_cancellation()
