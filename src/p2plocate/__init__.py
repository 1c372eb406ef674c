"""
Peer to peer service location over UDP broadcast.

Every participant runs a :class:`P2PServer` bound to the same UDP port. A server
announces itself by broadcasting a Discover message, and records every other
participant it hears from in its :class:`DeviceRegistry`, along with the
functions that participant advertises.

Messages are broadcast over IPv4 UDP, one message per datagram. The message is
a JSON object encoded with UTF-8, for example:

.. code::

  {
    "MsgType": "Discover",
    "ClientID": "0b8a5a7e-6c55-4d0b-9f0e-4f1c1d0c2a3b",
    "Functions": ["Printer", "Scanner"],
    "Data": ""
  }

The format carries no version field, so forward compatibility is not
guaranteed. Fields a receiver does not recognise are kept on the decoded
:class:`Message` rather than discarded.
"""

from p2plocate.device import Device, DeviceRegistry
from p2plocate.errors import (
    P2PLocateError,
    StartupError,
    SendError,
    MessageDecodeError,
)
from p2plocate.identity import (
    FileIdentityProvider,
    StaticIdentityProvider,
    get_client_id,
)
from p2plocate.message import Message, MessageType
from p2plocate.network import NetworkInfoProvider, get_local_broadcast_address
from p2plocate.server import P2PServer, ServerState

__version__ = "1.0.0"
