"""
Providers of the client identifier a discovery server announces itself with.
"""

import logging
import uuid
from pathlib import Path
from threading import Lock
from typing import Protocol

CLIENT_ID_FILENAME = "clientid"

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    def get_client_id(self) -> str: ...


class StaticIdentityProvider:
    """
    Identity provider returning a fixed identifier, without touching the disk.
    """

    def __init__(self, client_id: str):
        if not client_id:
            raise ValueError("Client ID must not be empty.")
        self._client_id = client_id

    def get_client_id(self) -> str:
        return self._client_id


class FileIdentityProvider:
    """
    Identity provider that persists a UUID to a file, so that the identifier is
    stable across restarts of the application.

    The file is read the first time an identifier is requested. If it does not
    exist, or cannot be read, a new UUID is generated and written to it. Failing
    to write the file is not fatal: the generated identifier is used for the
    lifetime of this provider and a warning is logged.
    """

    def __init__(self, path: str | Path = CLIENT_ID_FILENAME):
        self.path = Path(path)
        self._client_id: str | None = None
        self._lock = Lock()

    def get_client_id(self) -> str:
        with self._lock:
            if self._client_id is None:
                self._client_id = self._load_or_create()
            return self._client_id

    def _load_or_create(self) -> str:
        if self.path.exists():
            try:
                client_id = self.path.read_text(encoding="utf-8").strip()
            except OSError as e:
                logger.warning(
                    f"Failed to read the client ID file {self.path}, recreating it: {e}"
                )
            else:
                if client_id:
                    return client_id
                logger.warning(f"Client ID file {self.path} is empty, recreating it.")

        client_id = str(uuid.uuid4())
        logger.info(f"Created new client ID {client_id}")
        try:
            self.path.write_text(client_id, encoding="utf-8")
        except OSError as e:
            logger.warning(
                f"Failed to write the client ID file {self.path}, "
                f"the ID will not persist: {e}"
            )
        return client_id


default_provider = FileIdentityProvider()


def get_client_id() -> str:
    """
    Returns the unique client identifier of this installation, stored in the
    file `clientid` in the working directory.
    """
    return default_provider.get_client_id()
