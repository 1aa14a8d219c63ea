import pytest
from google.auth.exceptions import DefaultCredentialsError

from eng_portal.core.errors import StorageUnavailable
from eng_portal.db import firestore as firestore_db
from eng_portal.db.firestore import FirestoreStore


class NoCredentialsClient:
    def collection(self, name):
        raise DefaultCredentialsError("Could not automatically determine credentials.")


def test_missing_configuration_is_storage_unavailable(monkeypatch):
    def unconfigured():
        raise ValueError("A project ID is required to access the Firestore service.")

    monkeypatch.setattr(firestore_db, "initialize_db", unconfigured)
    store = FirestoreStore()

    with pytest.raises(StorageUnavailable) as exc:
        store.get("users", "u1")
    assert isinstance(exc.value.cause, ValueError)


def test_credential_errors_are_storage_unavailable():
    store = FirestoreStore(client=NoCredentialsClient())

    with pytest.raises(StorageUnavailable) as exc:
        store.query("users")
    assert isinstance(exc.value.cause, DefaultCredentialsError)

    with pytest.raises(StorageUnavailable):
        store.set("users", "u1", {"role": "E-BASIC"}, merge=True)
