"""
Module providing the peer discovery server.
"""

import logging
import select
import socket as socket_module
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from socket import (
    socket,
    AF_INET,
    SOCK_DGRAM,
    SOL_SOCKET,
    SO_BROADCAST,
    SO_REUSEADDR,
)
from typing import Callable, Iterable, Optional, Protocol

from p2plocate.device import Device, DeviceRegistry
from p2plocate.errors import StartupError, SendError, MessageDecodeError
from p2plocate.identity import IdentityProvider, default_provider
from p2plocate.message import Message, MessageType
from p2plocate.network import NetworkInfoProvider, IP_ADDRESS_BROADCAST

DEFAULT_PORT = 20400
ANNOUNCE_DELAY = 1.0
DEBOUNCE_DELAY = 0.5
POLL_INTERVAL = 0.05
RECEIVE_BUFFER_SIZE = 65535

IP_ADDRESS_ANY = "0.0.0.0"


class BroadcastAddressProvider(Protocol):
    def get_broadcast_address(self) -> str: ...


def _listen_socket(port: int) -> socket:
    """
    Sets up an IPv4 UDP socket listening on all interfaces, with a reusable
    address so that several servers on one machine can share the port.
    """
    s = socket(AF_INET, SOCK_DGRAM)
    try:
        s.setsockopt(SOL_SOCKET, SO_REUSEADDR, 1)
        # not available on Windows
        if hasattr(socket_module, "SO_REUSEPORT"):
            s.setsockopt(SOL_SOCKET, socket_module.SO_REUSEPORT, 1)
        s.bind((IP_ADDRESS_ANY, port))
    except OSError:
        s.close()
        raise
    return s


def _broadcast_socket() -> socket:
    s = socket(AF_INET, SOCK_DGRAM)
    s.setsockopt(SOL_SOCKET, SO_BROADCAST, 1)
    return s


class Debouncer:
    """
    Runs an action once the triggers have stopped for the given delay. Every
    trigger restarts the wait, so a burst of triggers results in a single run.
    """

    def __init__(self, delay: float, action: Callable[[], None]):
        self.delay = delay
        self._action = action
        self._lock = threading.Lock()
        self._finished = threading.Condition(self._lock)
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._running: threading.Thread | None = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def trigger(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(
                self.delay, self._run, args=(self._generation,)
            )
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        """
        Cancel any pending run, and wait for a run already in progress to
        finish unless called from within the action itself.
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            current = threading.current_thread()
            while self._running is not None and self._running is not current:
                self._finished.wait()

    def _run(self, generation: int):
        with self._lock:
            # a timer that fired just as it was replaced must not run too
            if generation != self._generation:
                return
            self._timer = None
            self._running = threading.current_thread()
        try:
            self._action()
        finally:
            with self._lock:
                self._running = None
                self._finished.notify_all()


class ServerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class P2PServer:
    """
    Locates services running on other devices on the local network and
    determines their functions.

    While running, the server listens for Discover messages broadcast to its
    port and records the sender of each one in :attr:`devices`. Shortly after
    starting it broadcasts its own Discover message, which other servers record
    in the same way. Receiving its own broadcast confirms that the broadcast
    path works, see :attr:`last_discover_confirmed`.

    When a burst of new devices has settled, the server broadcasts once more so
    that peers it has not heard from yet get another chance to answer, then
    calls the callback registered with :meth:`on_discover`.

    :param port: UDP port to listen and broadcast on.
    :param client_id: Identifier to announce. If not given, it is obtained from
        the identity provider when first needed.
    :param functions: Names of the functions this server advertises.
    :param broadcast_address: Address to broadcast to. If not given, the
        broadcast address of the local network is used.
    :param identity: Provider of the client identifier, defaults to the
        identifier persisted in the working directory.
    :param network: Provider of the broadcast address.
    :param announce_delay: Seconds between starting and the first broadcast.
    :param debounce_delay: Seconds without new devices before the discovery
        callback is called.
    """

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        client_id: Optional[str] = None,
        functions: Optional[Iterable[str]] = None,
        *,
        broadcast_address: Optional[str] = None,
        identity: Optional[IdentityProvider] = None,
        network: Optional[BroadcastAddressProvider] = None,
        announce_delay: float = ANNOUNCE_DELAY,
        debounce_delay: float = DEBOUNCE_DELAY,
    ):
        self.logger = logging.getLogger(__name__)
        self.port = port
        self.client_id = client_id
        self.broadcast_address = broadcast_address
        self.functions = tuple(functions or ())
        self.devices = DeviceRegistry()
        self.announce_delay = announce_delay

        self._identity = identity or default_provider
        self._network = network or NetworkInfoProvider()
        self._debouncer = Debouncer(debounce_delay, self._settle)
        self._on_discover: Callable[[], None] | None = None

        # serialises start and stop, never taken by the background threads
        self._lifecycle_lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._state = ServerState.STOPPED
        self._last_error: Exception | None = None
        self._last_discover_sent_at: float | None = None
        self._last_discover_confirmed = False

        self._socket: socket | None = None
        self._receive_thread: threading.Thread | None = None
        self._threads: ThreadPoolExecutor | None = None
        self._announce_timer: threading.Timer | None = None
        self._cancellation = threading.Event()
        self._ready = threading.Event()

    @property
    def state(self) -> ServerState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state is ServerState.RUNNING

    @property
    def last_error(self) -> Exception | None:
        """
        The most recent error that stopped the server from starting, or that
        occurred in the background while it was running.
        """
        with self._state_lock:
            return self._last_error

    @property
    def last_discover_sent_at(self) -> float | None:
        with self._state_lock:
            return self._last_discover_sent_at

    @property
    def last_discover_confirmed(self) -> bool:
        """
        Whether this server has received its own Discover broadcast.
        """
        with self._state_lock:
            return self._last_discover_confirmed

    def on_discover(self, callback: Callable[[], None] | None):
        """
        Set the function called when newly discovered devices have settled,
        replacing any previously set function.
        """
        with self._state_lock:
            self._on_discover = callback

    def start(self):
        """
        Start listening for messages broadcast by other devices, and announce
        this server to them shortly afterwards.

        Returns once the server is listening. Does nothing if the server is
        already running.

        :raises StartupError: if the server could not listen on its port, or
            could not determine its identifier or broadcast address.
        """
        with self._lifecycle_lock:
            if self.state is ServerState.RUNNING:
                return
            self._set_state(ServerState.STARTING)
            with self._state_lock:
                self._last_error = None

            try:
                self._resolve_client_id()
                self._resolve_broadcast_address()
                self._socket = _listen_socket(self.port)
            except OSError as e:
                raise self._startup_failed(
                    f"Could not listen for messages on UDP port {self.port}: {e}"
                ) from e
            except Exception as e:
                raise self._startup_failed(
                    f"Could not start the server on UDP port {self.port}: {e}"
                ) from e

            self._cancellation.clear()
            self._ready.clear()
            self._threads = ThreadPoolExecutor(thread_name_prefix="P2PServer")
            self._receive_thread = threading.Thread(
                target=self._receive,
                args=(self._socket,),
                name=f"P2PServer-receive-{self.port}",
                daemon=True,
            )
            self._receive_thread.start()
            self._ready.wait()
            self._set_state(ServerState.RUNNING)

            self._announce_timer = threading.Timer(self.announce_delay, self._announce)
            self._announce_timer.daemon = True
            self._announce_timer.start()

    def stop(self):
        """
        Stop listening for messages. Returns once the receiving thread has
        exited, every received message has been handled and any discovery
        callback in progress has returned. Does nothing if the server is not
        running.
        """
        # a discovery callback stopping the server while it is already stopping
        # must not wait on the lifecycle lock
        if self.state is ServerState.STOPPING:
            return
        with self._lifecycle_lock:
            if self.state is not ServerState.RUNNING:
                return
            self._set_state(ServerState.STOPPING)

            self._cancellation.set()
            if self._announce_timer is not None:
                self._announce_timer.cancel()
                self._announce_timer = None
            self._receive_thread.join()
            self._receive_thread = None
            self._threads.shutdown(wait=True)
            self._threads = None
            self._debouncer.cancel()
            self._socket.close()
            self._socket = None

            self._set_state(ServerState.STOPPED)
            self.logger.info(
                f"Stopped listening for device messages on UDP port {self.port}."
            )

    def close(self):
        self.stop()

    def discover(self):
        """
        Broadcast a Discover message announcing this server and its functions
        to every device on the local network.

        :raises SendError: if the message could not be sent.
        """
        client_id = self._resolve_client_id()
        broadcast_address = self._resolve_broadcast_address()
        message = Message.discover(client_id, self.functions)

        self.logger.debug(
            f"Sending Discover message to {broadcast_address}:{self.port}."
        )
        with self._state_lock:
            self._last_discover_sent_at = time.time()
        try:
            data = message.encode()
            with _broadcast_socket() as s:
                s.sendto(data, (broadcast_address, self.port))
        except (OSError, ValueError) as e:
            raise SendError(
                f"Failed to broadcast Discover message to "
                f"{broadcast_address}:{self.port}: {e}"
            ) from e

    def get_devices_for_function(self, function: str) -> list[Device]:
        """
        Returns the discovered devices that offer the given function.
        """
        return self.devices.devices_with_function(function)

    def get_device(self, client_id: str) -> tuple[bool, Device | None]:
        """
        Returns whether the given device has been discovered, and the device.
        """
        return self.devices.get_device(client_id)

    def _set_state(self, state: ServerState):
        with self._state_lock:
            self._state = state

    def _record_error(self, error: Exception):
        with self._state_lock:
            self._last_error = error

    def _startup_failed(self, reason: str) -> StartupError:
        error = StartupError(reason)
        with self._state_lock:
            self._last_error = error
            self._state = ServerState.STOPPED
        return error

    def _resolve_client_id(self) -> str:
        with self._state_lock:
            client_id = self.client_id
        if client_id:
            return client_id
        # the provider is called without holding the state lock
        client_id = self._identity.get_client_id()
        with self._state_lock:
            if not self.client_id:
                self.client_id = client_id
            return self.client_id

    def _resolve_broadcast_address(self) -> str:
        with self._state_lock:
            address = self.broadcast_address
        if address:
            return address
        address = self._network.get_broadcast_address()
        if not address:
            self.logger.warning(
                f"Could not find the broadcast address of the local network, "
                f"falling back to {IP_ADDRESS_BROADCAST}."
            )
            address = IP_ADDRESS_BROADCAST
        with self._state_lock:
            if not self.broadcast_address:
                self.broadcast_address = address
            return self.broadcast_address

    def _receive(self, sock: socket):
        self.logger.info(f"Listening for device messages on UDP port {self.port}.")
        self._ready.set()
        while not self._cancellation.is_set():
            try:
                readable, _, _ = select.select([sock], [], [], POLL_INTERVAL)
                if not readable:
                    continue
                data, address = sock.recvfrom(RECEIVE_BUFFER_SIZE)
            except OSError as e:
                if self._cancellation.is_set():
                    break
                self.logger.warning(f"Error whilst listening for messages: {e}")
                self._record_error(e)
                self._cancellation.wait(POLL_INTERVAL)
                continue
            future = self._threads.submit(self._handle_datagram, data, address)
            future.add_done_callback(self._log_handler_failure)

    def _log_handler_failure(self, future):
        error = future.exception()
        if error is not None:
            self.logger.error(
                "Exception raised whilst handling a device message.", exc_info=error
            )
            self._record_error(error)

    def _handle_datagram(self, data: bytes, address: tuple[str, int]):
        try:
            message = Message.decode(data)
        except MessageDecodeError as e:
            self.logger.warning(
                f"Failed to decode device message from {address}: {e} {data!r}"
            )
            return

        if message.kind == MessageType.DISCOVER:
            self._handle_discover(message, address)
        else:
            self.logger.warning(
                f"Unknown message type {message.kind!r} received from "
                f"{message.sender_id} {address}."
            )

    def _handle_discover(self, message: Message, address: tuple[str, int]):
        self.logger.debug(
            f"Discover message received from {message.sender_id} {address}."
        )
        with self._state_lock:
            from_self = message.sender_id == self.client_id
            if from_self:
                self._last_discover_confirmed = True
        if from_self:
            return

        is_new = self.devices.record(message.sender_id, message.functions, address)
        if is_new:
            self.logger.info(f"Discovered device {message.sender_id} at {address}.")
            self._debouncer.trigger()

    def _announce(self):
        try:
            self.discover()
        except SendError as e:
            self.logger.warning(str(e))
            self._record_error(e)

    def _settle(self):
        if not self.is_running:
            return
        self._announce()
        with self._state_lock:
            callback = self._on_discover
        if callback is None or self._cancellation.is_set():
            return
        try:
            callback()
        except Exception:
            self.logger.exception("Exception raised by the discovery callback.")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
