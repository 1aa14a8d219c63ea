from __future__ import annotations

import os
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio

# Keep the app away from real Firebase settings during tests.
os.environ.setdefault("GCP_PROJECT_ID", "test-project")
os.environ.setdefault("GCP_STORAGE_BUCKET", "test-bucket")
os.environ.setdefault("FIREBASE_API_KEY", "test-api-key")

from fakes import FakeBlobStore, FakeClock, FakeIdentityToolkit, InMemoryStore

from eng_portal.auth.identity import FirebaseIdentityProvider
from eng_portal.services.entitlements import EntitlementManager
from eng_portal.services.session import AuthSession

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def blobs() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def entitlements(store, clock) -> EntitlementManager:
    return EntitlementManager(store, clock=clock)


@pytest.fixture
def toolkit() -> FakeIdentityToolkit:
    return FakeIdentityToolkit()


@pytest_asyncio.fixture
async def identity_provider(toolkit):
    client = httpx.AsyncClient(transport=httpx.MockTransport(toolkit))
    provider = FirebaseIdentityProvider("test-api-key", client=client)
    yield provider
    await client.aclose()


@pytest_asyncio.fixture
async def session(identity_provider, entitlements, blobs):
    auth_session = AuthSession(identity_provider, entitlements, blobs)
    await auth_session.start()
    yield auth_session
    await auth_session.close()


def seed_user(store, uid, role="E-BASIC", status="active", expires_at=None, **extra):
    store.set("users", uid, {
        "email": f"{uid}@example.com",
        "displayName": uid.title(),
        "photoURL": None,
        "role": role,
        "status": status,
        "roleExpiresAt": expires_at,
        **extra,
    })


def seed_code(store, code, role="E-MASTER", duration_days=7, uses_left=1) -> str:
    return store.add("bonusCodes", {
        "code": code,
        "role": role,
        "durationDays": duration_days,
        "usesLeft": uses_left,
        "createdAt": T0,
    })
