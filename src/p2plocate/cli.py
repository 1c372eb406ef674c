"""
Command line interface for p2plocate.

Runs a discovery server until interrupted, printing the known devices every
time a burst of discoveries settles.
"""

import argparse
import logging
import textwrap
import threading
from contextlib import contextmanager
from signal import signal, SIGINT

from rich.logging import RichHandler

from p2plocate.identity import FileIdentityProvider, CLIENT_ID_FILENAME
from p2plocate.server import P2PServer, DEFAULT_PORT


def handle_user_arguments(args=None) -> argparse.Namespace:
    """
    Parse the arguments from the command line.

    :return: The namespace of arguments read from the command line.
    """
    description = textwrap.dedent(
        """\
    Listen for peers on the local network and list the functions they offer.
    """
    )
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help="UDP port to listen and broadcast on.",
    )
    parser.add_argument(
        "-i",
        "--client-id",
        default=None,
        help="Identifier to announce, instead of the persisted one.",
    )
    parser.add_argument(
        "-f",
        "--function",
        dest="functions",
        action="append",
        default=[],
        metavar="NAME",
        help="Function to advertise, may be given several times.",
    )
    parser.add_argument(
        "-b",
        "--broadcast-address",
        default=None,
        help="Address to broadcast to, instead of the local network's.",
    )
    parser.add_argument(
        "--identity-file",
        default=CLIENT_ID_FILENAME,
        metavar="PATH",
        help="File the client identifier is persisted to.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Log every message sent and received.",
    )
    return parser.parse_args(args)


class CancellationToken:
    def __init__(self):
        self._cancelled = threading.Event()

    @property
    def is_cancelled(self):
        """
        Has this token been cancelled?
        """
        return self._cancelled.is_set()

    def cancel(self):
        """
        Cancel this token.
        """
        self._cancelled.set()

    def wait_cancellation(self, interval=0.1):
        """
        Sleep until this token is cancelled.

        :param interval: the interval in seconds between waking up to check cancellation.
        """
        while not self._cancelled.wait(interval):
            pass


@contextmanager
def suppress_keyboard_interrupt_as_cancellation():
    """
    Context manager that suppresses KeyboardInterrupt and instead yields a cancellation token that can be polled to
    check if a keyboard interrupt has occurred during the lifetime of the context.
    """
    token = CancellationToken()

    prev_handler = signal(SIGINT, lambda _, __: token.cancel())
    try:
        yield token
    finally:
        signal(SIGINT, prev_handler)


def initialise_server(arguments: argparse.Namespace) -> P2PServer:
    return P2PServer(
        port=arguments.port,
        client_id=arguments.client_id,
        functions=arguments.functions,
        broadcast_address=arguments.broadcast_address,
        identity=FileIdentityProvider(arguments.identity_file),
    )


def format_devices(server: P2PServer) -> str:
    lines = [f"Known devices ({len(server.devices)}):"]
    for device in server.devices.devices():
        host, port = device.address or ("?", 0)
        functions = ", ".join(device.functions) or "no functions"
        lines.append(f"  {device.peer_id} at {host}:{port}: {functions}")
    return "\n".join(lines)


def main():
    """
    Entry point for the command line.
    """
    arguments = handle_user_arguments()

    logging.basicConfig(
        level=logging.DEBUG if arguments.verbose else logging.INFO,
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    logging.captureWarnings(True)

    server = initialise_server(arguments)
    server.on_discover(lambda: print(format_devices(server)))

    with suppress_keyboard_interrupt_as_cancellation() as cancellation:
        with server:
            print(
                f'Listening as "{server.client_id}" on UDP port {server.port}, '
                f"broadcasting to {server.broadcast_address}"
            )
            cancellation.wait_cancellation()
        print("Closing due to KeyboardInterrupt.")


if __name__ == "__main__":
    main()
