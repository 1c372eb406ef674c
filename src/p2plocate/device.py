"""
Module providing `DeviceRegistry`, a thread-safe record of the peers a
discovery server has heard from.
"""

import time
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Iterable


@dataclass(kw_only=True)
class Device:
    """
    A peer discovered on the network.

    The address is the source endpoint of the most recent message from the
    peer, so its port is the ephemeral port of the peer's sending socket rather
    than the port the peer listens on.
    """

    peer_id: str
    functions: list[str] = field(default_factory=list)
    address: tuple[str, int] | None = None
    last_seen: float = 0.0

    def has_function(self, function: str) -> bool:
        """
        Returns whether or not the device advertises exactly the given function.
        """
        return function in self.functions


class DeviceRegistry:
    """
    Mapping of peer identifiers to the last known state of each peer, kept in
    the order peers were first seen.

    All access goes through a lock held only for the duration of each call.
    Queries return copies, so callers never observe a device being updated.
    """

    _lock: Lock
    _devices: dict[str, Device]

    def __init__(self):
        self._lock = Lock()
        self._devices = {}

    def record(
        self,
        peer_id: str,
        functions: Iterable[str],
        address: tuple[str, int] | None,
        last_seen: float | None = None,
    ) -> bool:
        """
        Insert a new device, or overwrite the functions, address and last seen
        time of a known one.

        :return: `True` if the device had not been seen before.
        """
        if last_seen is None:
            last_seen = time.time()
        with self._lock:
            device = self._devices.get(peer_id)
            if device is not None:
                device.functions = list(functions)
                device.address = address
                device.last_seen = last_seen
                return False
            self._devices[peer_id] = Device(
                peer_id=peer_id,
                functions=list(functions),
                address=address,
                last_seen=last_seen,
            )
            return True

    def get_device(self, peer_id: str) -> tuple[bool, Device | None]:
        """
        Look up a device by its peer identifier.

        :return: A pair of whether the device is known and a copy of it, or
            `None` if it is not.
        """
        with self._lock:
            device = self._devices.get(peer_id)
            if device is None:
                return False, None
            return True, _copy_device(device)

    def devices_with_function(self, function: str) -> list[Device]:
        """
        Return copies of the devices advertising the given function, in the
        order they were first seen.
        """
        with self._lock:
            return [
                _copy_device(device)
                for device in self._devices.values()
                if device.has_function(function)
            ]

    def devices(self) -> list[Device]:
        with self._lock:
            return [_copy_device(device) for device in self._devices.values()]

    def __len__(self):
        with self._lock:
            return len(self._devices)

    def __contains__(self, peer_id):
        with self._lock:
            return peer_id in self._devices


def _copy_device(device: Device) -> Device:
    return replace(device, functions=list(device.functions))
