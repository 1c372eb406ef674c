import uuid

import pytest

from p2plocate.identity import FileIdentityProvider, StaticIdentityProvider


@pytest.fixture
def path(tmp_path):
    return tmp_path / "clientid"


def test_creates_and_persists_id(path):
    client_id = FileIdentityProvider(path).get_client_id()
    assert uuid.UUID(client_id)
    assert path.read_text() == client_id


def test_id_stable_across_providers(path):
    first = FileIdentityProvider(path).get_client_id()
    second = FileIdentityProvider(path).get_client_id()
    assert first == second


def test_reads_existing_id(path):
    path.write_text("existing-id\n")
    assert FileIdentityProvider(path).get_client_id() == "existing-id"


def test_empty_file_is_recreated(path):
    path.write_text("")
    client_id = FileIdentityProvider(path).get_client_id()
    assert client_id
    assert path.read_text() == client_id


def test_id_cached(path):
    provider = FileIdentityProvider(path)
    client_id = provider.get_client_id()
    path.write_text("changed")
    assert provider.get_client_id() == client_id


def test_unwritable_file_falls_back(tmp_path, caplog):
    path = tmp_path / "missing" / "clientid"
    provider = FileIdentityProvider(path)
    client_id = provider.get_client_id()
    assert client_id
    assert provider.get_client_id() == client_id
    assert not path.exists()
    assert "will not persist" in caplog.text


def test_static_id():
    assert StaticIdentityProvider("1").get_client_id() == "1"


def test_static_id_not_empty():
    with pytest.raises(ValueError):
        _ = StaticIdentityProvider("")
