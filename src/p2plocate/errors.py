"""
Exceptions raised by the discovery server and its collaborators.
"""


class P2PLocateError(Exception):
    """
    Base class for all errors raised by p2plocate.
    """


class StartupError(P2PLocateError):
    """
    Raised by :meth:`P2PServer.start` when the listening socket cannot be
    resolved or bound. The server remains stopped.
    """


class SendError(P2PLocateError):
    """
    Raised by :meth:`P2PServer.discover` when a message cannot be broadcast.
    """


class MessageDecodeError(P2PLocateError, ValueError):
    """
    Raised when a datagram does not contain a valid message.
    """
