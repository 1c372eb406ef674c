"""
Module defining the message exchanged between discovery servers.
"""

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from p2plocate.errors import MessageDecodeError

# Largest payload that fits in a single IPv4 UDP datagram.
MAXIMUM_MESSAGE_SIZE = 65507

MESSAGE_TYPE_KEY = "MsgType"
CLIENT_ID_KEY = "ClientID"
FUNCTIONS_KEY = "Functions"
DATA_KEY = "Data"

KNOWN_KEYS = (MESSAGE_TYPE_KEY, CLIENT_ID_KEY, FUNCTIONS_KEY, DATA_KEY)


class MessageType(StrEnum):
    DISCOVER = "Discover"


@dataclass(kw_only=True)
class Message:
    """
    A message broadcast by a discovery server.

    The kind is kept as a plain string so that messages of kinds this version
    does not know about can still be decoded and reported.
    """

    kind: str = MessageType.DISCOVER
    sender_id: str = ""
    functions: list[str] = field(default_factory=list)
    payload: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def discover(cls, sender_id: str, functions=()) -> "Message":
        return cls(
            kind=MessageType.DISCOVER,
            sender_id=sender_id,
            functions=list(functions),
        )

    @property
    def properties(self) -> dict[str, Any]:
        properties = dict(self.extra)
        properties[MESSAGE_TYPE_KEY] = str(self.kind)
        properties[CLIENT_ID_KEY] = self.sender_id
        properties[FUNCTIONS_KEY] = list(self.functions)
        properties[DATA_KEY] = self.payload
        return properties

    def to_json(self) -> str:
        return json.dumps(self.properties)

    def encode(self) -> bytes:
        """
        Encode this message as a UTF-8 JSON datagram.

        :raises ValueError: if the encoded message does not fit in a datagram.
        """
        data = self.to_json().encode("utf-8")
        if len(data) > MAXIMUM_MESSAGE_SIZE:
            raise ValueError(
                f"Message exceeds the maximum message size of {MAXIMUM_MESSAGE_SIZE}"
            )
        return data

    @classmethod
    def from_properties(cls, properties: dict[str, Any]) -> "Message":
        """
        Build a message from a decoded JSON object. Missing fields take their
        defaults, and a missing or null function list is treated as empty.

        :raises MessageDecodeError: if a field has the wrong type.
        """
        kind = _get_string(properties, MESSAGE_TYPE_KEY)
        sender_id = _get_string(properties, CLIENT_ID_KEY)
        payload = _get_string(properties, DATA_KEY)

        functions = properties.get(FUNCTIONS_KEY)
        if functions is None:
            functions = []
        if not isinstance(functions, list) or not all(
            isinstance(function, str) for function in functions
        ):
            raise MessageDecodeError(
                f"Field {FUNCTIONS_KEY} must be a list of strings, got {functions!r}"
            )

        extra = {
            key: value for key, value in properties.items() if key not in KNOWN_KEYS
        }
        return cls(
            kind=kind,
            sender_id=sender_id,
            functions=list(functions),
            payload=payload,
            extra=extra,
        )

    @classmethod
    def from_json(cls, payload: str) -> "Message":
        try:
            properties = json.loads(payload)
        except json.JSONDecodeError as e:
            raise MessageDecodeError(f"Message is not valid JSON: {e}") from e
        except RecursionError as e:
            raise MessageDecodeError("Message is nested too deeply") from e
        if not isinstance(properties, dict):
            raise MessageDecodeError(
                f"Message must be a JSON object, got {type(properties).__name__}"
            )
        return cls.from_properties(properties)

    @classmethod
    def decode(cls, data: bytes) -> "Message":
        """
        Decode a message from a received datagram.

        :raises MessageDecodeError: if the datagram is not a valid message.
        """
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MessageDecodeError("Message is not valid UTF-8") from e
        return cls.from_json(text)


def _get_string(properties, key):
    value = properties.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MessageDecodeError(f"Field {key} must be a string, got {value!r}")
    return value
