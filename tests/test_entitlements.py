from __future__ import annotations

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from conftest import T0, seed_code, seed_user
from eng_portal.core.errors import ExhaustedCode, InvalidCode, NotAuthenticated, StorageUnavailable
from eng_portal.core.roles import Role, UserStatus
from eng_portal.models.user import Identity
from eng_portal.services.entitlements import EntitlementManager, stacked_expiration


def _identity(uid="u1"):
    return Identity(uid=uid, email=f"{uid}@example.com", display_name="Ana", photo_url="https://p/1.png")


# --- Bootstrap ---

@pytest.mark.asyncio
async def test_first_resolution_bootstraps_basic_record(entitlements, store):
    resolution = await entitlements.resolve(_identity())

    assert resolution.created is True
    assert resolution.role is Role.E_BASIC
    doc = store.get("users", "u1")
    assert doc["role"] == "E-BASIC"
    assert doc["status"] == "active"
    assert doc["roleExpiresAt"] is None
    assert doc["displayName"] == "Ana"
    assert doc["photoURL"] == "https://p/1.png"


@pytest.mark.asyncio
async def test_concurrent_first_sight_both_upsert_one_basic_record(entitlements, store, monkeypatch):
    # Both sessions read before either writes.
    async def not_there_yet(uid):
        return None

    bootstraps = []
    original_bootstrap = entitlements.bootstrap

    async def counting_bootstrap(identity):
        bootstraps.append(identity.uid)
        # Another writer touches the document between the two upserts.
        if len(bootstraps) == 2:
            store.set("users", identity.uid, {"seenNotifications": ["n1"]}, merge=True)
        return await original_bootstrap(identity)

    monkeypatch.setattr(entitlements, "get_record", not_there_yet)
    monkeypatch.setattr(entitlements, "bootstrap", counting_bootstrap)

    first, second = await asyncio.gather(entitlements.resolve(_identity()), entitlements.resolve(_identity()))

    assert bootstraps == ["u1", "u1"]
    assert first.created and second.created
    assert first.role is second.role is Role.E_BASIC
    assert list(store.collections["users"]) == ["u1"]
    doc = store.get("users", "u1")
    assert doc["role"] == "E-BASIC"
    assert doc["status"] == "active"
    assert doc["email"] == "u1@example.com"
    assert doc["seenNotifications"] == ["n1"]


def test_bootstrap_from_two_threads_at_once(entitlements, store):
    barrier = threading.Barrier(2)

    def first_sight(_):
        barrier.wait()
        return asyncio.run(entitlements.bootstrap(_identity()))

    with ThreadPoolExecutor(max_workers=2) as pool:
        records = list(pool.map(first_sight, range(2)))

    assert [r.role for r in records] == [Role.E_BASIC, Role.E_BASIC]
    assert list(store.collections["users"]) == ["u1"]
    assert store.get("users", "u1")["role"] == "E-BASIC"


@pytest.mark.asyncio
async def test_bootstrap_is_a_merge_and_keeps_unrelated_fields(entitlements, store):
    store.set("users", "u1", {"seenNotifications": ["n1"]})
    await entitlements.bootstrap(_identity())

    doc = store.get("users", "u1")
    assert doc["seenNotifications"] == ["n1"]
    assert doc["role"] == "E-BASIC"


# --- Expiration ---

@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["E-TOOL", "E-MASTER", "ADMIN"])
async def test_expired_role_resets_to_basic(entitlements, store, role):
    seed_user(store, "u1", role=role, expires_at=T0 - timedelta(minutes=1))

    resolution = await entitlements.resolve(_identity())

    assert resolution.expired is True
    assert resolution.role is Role.E_BASIC
    doc = store.get("users", "u1")
    assert doc["role"] == "E-BASIC"
    assert doc["roleExpiresAt"] is None
    assert doc["status"] == "active"


@pytest.mark.asyncio
async def test_expiration_notice_is_one_time(entitlements, store):
    seed_user(store, "u1", role="E-TOOL", expires_at=T0 - timedelta(days=1))

    first = await entitlements.resolve(_identity())
    second = await entitlements.resolve(_identity())

    assert first.expired is True
    assert second.expired is False


@pytest.mark.asyncio
async def test_unexpired_and_permanent_roles_are_kept(entitlements, store, clock):
    seed_user(store, "u1", role="E-MASTER", expires_at=T0 + timedelta(days=2))
    seed_user(store, "u2", role="ADMIN", expires_at=None)

    assert (await entitlements.resolve(_identity("u1"))).role is Role.E_MASTER
    assert (await entitlements.resolve(_identity("u2"))).role is Role.ADMIN

    clock.advance(days=3)
    assert (await entitlements.resolve(_identity("u1"))).role is Role.E_BASIC
    assert (await entitlements.resolve(_identity("u2"))).role is Role.ADMIN


@pytest.mark.asyncio
async def test_downgrade_rechecks_inside_transaction(entitlements, store):
    seed_user(store, "u1", role="E-TOOL", expires_at=T0 - timedelta(days=1))
    stale = await entitlements.get_record("u1")
    # Another session extended the grant after we read the record.
    store.update("users", "u1", {"role": "E-MASTER", "roleExpiresAt": T0 + timedelta(days=5)})

    record, reset = await entitlements.check_expiration(stale)

    assert reset is False
    assert record.role is Role.E_MASTER
    assert store.get("users", "u1")["role"] == "E-MASTER"


# --- Ban override ---

@pytest.mark.asyncio
async def test_banned_admin_resolves_to_no_role(entitlements, store):
    seed_user(store, "u1", role="ADMIN", status="banned")

    resolution = await entitlements.resolve(_identity())

    assert resolution.role is None
    assert resolution.status is UserStatus.BANNED
    assert store.get("users", "u1")["role"] == "ADMIN"


@pytest.mark.asyncio
async def test_banned_status_survives_expired_role(entitlements, store):
    seed_user(store, "u1", role="E-TOOL", status="banned", expires_at=T0 - timedelta(days=1))

    resolution = await entitlements.resolve(_identity())

    assert resolution.role is None
    assert store.get("users", "u1")["status"] == "banned"


@pytest.mark.asyncio
async def test_unknown_stored_role_is_rejected(entitlements, store):
    seed_user(store, "u1", role="super_admin")

    with pytest.raises(StorageUnavailable):
        await entitlements.resolve(_identity())


@pytest.mark.asyncio
async def test_storage_failure_is_reported(entitlements, store):
    store.fail = True
    with pytest.raises(StorageUnavailable):
        await entitlements.resolve(_identity())


# --- Redemption ---

@pytest.mark.asyncio
async def test_master_promo_scenario(entitlements, store):
    seed_user(store, "u1")
    seed_user(store, "u2")
    code_id = seed_code(store, "MASTER-PROMO", role="E-MASTER", duration_days=7, uses_left=1)

    grant = await entitlements.redeem("MASTER-PROMO", "u1")

    assert grant.role is Role.E_MASTER
    assert grant.duration_days == 7
    assert grant.expires_at == T0 + timedelta(days=7)
    user = store.get("users", "u1")
    assert user["role"] == "E-MASTER"
    assert user["roleExpiresAt"] == T0 + timedelta(days=7)
    assert store.get("bonusCodes", code_id)["usesLeft"] == 0

    with pytest.raises(ExhaustedCode):
        await entitlements.redeem("MASTER-PROMO", "u2")
    assert store.get("users", "u2")["role"] == "E-BASIC"


@pytest.mark.asyncio
async def test_stacking_extends_from_current_expiration(entitlements, store, clock):
    seed_user(store, "u1", role="E-TOOL", expires_at=T0 + timedelta(days=3))
    seed_code(store, "FIVE", role="E-TOOL", duration_days=5, uses_left=1)
    clock.advance(days=1)

    grant = await entitlements.redeem("FIVE", "u1")

    assert grant.expires_at == T0 + timedelta(days=8)


@pytest.mark.asyncio
async def test_stacking_ignores_elapsed_grant(entitlements, store):
    seed_user(store, "u1", role="E-BASIC", expires_at=T0 - timedelta(days=10))
    seed_code(store, "WEEK", role="E-TOOL", duration_days=7)

    grant = await entitlements.redeem("WEEK", "u1")

    assert grant.expires_at == T0 + timedelta(days=7)


@pytest.mark.parametrize("offset_days", [-30, -1, 0, 1, 30])
def test_stacking_never_shortens(offset_days):
    current = T0 + timedelta(days=offset_days)
    new = stacked_expiration(T0, current, 2)
    assert new >= max(T0, current)
    assert stacked_expiration(T0, None, 2) == T0 + timedelta(days=2)


@pytest.mark.asyncio
async def test_code_with_n_uses_redeems_exactly_n_times(entitlements, store):
    code_id = seed_code(store, "TRIPLE", uses_left=3)
    for uid in ("a", "b", "c", "d"):
        seed_user(store, uid)

    for uid in ("a", "b", "c"):
        await entitlements.redeem("TRIPLE", uid)
    assert store.get("bonusCodes", code_id)["usesLeft"] == 0

    with pytest.raises(ExhaustedCode):
        await entitlements.redeem("TRIPLE", "d")
    assert store.get("bonusCodes", code_id)["usesLeft"] == 0


def test_concurrent_redemptions_never_overdraw(store, clock):
    code_id = seed_code(store, "RUSH", uses_left=3)
    uids = [f"user{i}" for i in range(10)]
    for uid in uids:
        seed_user(store, uid)

    def attempt(uid):
        manager = EntitlementManager(store, clock=clock)
        try:
            asyncio.run(manager.redeem("RUSH", uid))
            return "ok"
        except ExhaustedCode:
            return "exhausted"

    with ThreadPoolExecutor(max_workers=10) as pool:
        outcomes = list(pool.map(attempt, uids))

    assert outcomes.count("ok") == 3
    assert outcomes.count("exhausted") == 7
    assert store.get("bonusCodes", code_id)["usesLeft"] == 0
    elevated = [uid for uid in uids if store.get("users", uid)["role"] == "E-MASTER"]
    assert len(elevated) == 3


@pytest.mark.asyncio
async def test_lookup_is_case_insensitive_and_trimmed(entitlements, store):
    seed_user(store, "u1")
    seed_code(store, "ABC123", role="E-TOOL")

    grant = await entitlements.redeem("  abc123 ", "u1")

    assert grant.role is Role.E_TOOL


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["", "   ", "NOPE"])
async def test_unknown_code_is_invalid(entitlements, store, raw):
    seed_user(store, "u1")
    with pytest.raises(InvalidCode):
        await entitlements.redeem(raw, "u1")


@pytest.mark.asyncio
async def test_redeem_requires_a_user(entitlements, store):
    code_id = seed_code(store, "GIFT")
    with pytest.raises(NotAuthenticated):
        await entitlements.redeem("GIFT", None)
    with pytest.raises(NotAuthenticated):
        await entitlements.redeem("GIFT", "ghost")
    assert store.get("bonusCodes", code_id)["usesLeft"] == 1


@pytest.mark.asyncio
async def test_failed_commit_leaves_both_documents_untouched(entitlements, store):
    seed_user(store, "u1")
    code_id = seed_code(store, "GIFT")
    original_update = store._update

    def failing_update(collection, doc_id, fields):
        if collection == "bonusCodes":
            raise StorageUnavailable("write rejected")
        original_update(collection, doc_id, fields)

    store._update = failing_update
    with pytest.raises(StorageUnavailable):
        await entitlements.redeem("GIFT", "u1")

    assert store.get("users", "u1")["role"] == "E-BASIC"
    assert store.get("users", "u1")["roleExpiresAt"] is None
    assert store.get("bonusCodes", code_id)["usesLeft"] == 1


# --- Admin ---

@pytest.mark.asyncio
async def test_create_code_generates_uppercase_token(entitlements, store):
    code = await entitlements.create_code("E-MASTER", duration_days=7, uses=2)

    assert len(code.code) == 8
    assert code.code == code.code.upper()
    assert code.code.isalnum()
    assert store.get("bonusCodes", code.id)["usesLeft"] == 2


@pytest.mark.asyncio
async def test_create_code_rejects_bad_input(entitlements, store):
    await entitlements.create_code("E-TOOL", 3, 1, code="dup")
    with pytest.raises(ValueError):
        await entitlements.create_code("E-TOOL", 3, 1, code="DUP")
    with pytest.raises(ValueError):
        await entitlements.create_code("E-TOOL", 0, 1)
    with pytest.raises(ValueError):
        await entitlements.create_code("GOD", 3, 1)


@pytest.mark.asyncio
async def test_deleted_code_can_no_longer_be_redeemed(entitlements, store):
    seed_user(store, "u1")
    code = await entitlements.create_code("E-TOOL", 3, 5)
    await entitlements.delete_code(code.id)

    with pytest.raises(InvalidCode):
        await entitlements.redeem(code.code, "u1")
    assert await entitlements.list_codes() == []


@pytest.mark.asyncio
async def test_admin_update_overwrites_entitlement_fields(entitlements, store):
    seed_user(store, "u1", role="E-TOOL", expires_at=T0 + timedelta(days=1))

    record = await entitlements.admin_update("u1", "E-MASTER", "active", None)

    assert record.role is Role.E_MASTER
    assert record.role_expires_at is None
    with pytest.raises(ValueError):
        await entitlements.admin_update("u1", "E-MASTER", "frozen", None)


@pytest.mark.asyncio
async def test_ban_refuses_admins(entitlements, store):
    seed_user(store, "u1")
    seed_user(store, "boss", role="ADMIN")

    banned = await entitlements.ban("u1")
    assert banned.status is UserStatus.BANNED
    assert store.get("users", "u1")["status"] == "banned"

    with pytest.raises(ValueError):
        await entitlements.ban("boss")
    assert await entitlements.ban("ghost") is None


@pytest.mark.asyncio
async def test_save_profile_ignores_entitlement_fields(entitlements, store):
    seed_user(store, "u1")

    await entitlements.save_profile("u1", {"displayName": "New", "role": "ADMIN", "status": "active"})

    doc = store.get("users", "u1")
    assert doc["displayName"] == "New"
    assert doc["role"] == "E-BASIC"


@pytest.mark.asyncio
async def test_list_users_searches_name_and_email(entitlements, store):
    seed_user(store, "maria")
    seed_user(store, "joao")

    found = await entitlements.list_users("MAR")

    assert [u.uid for u in found] == ["maria"]
