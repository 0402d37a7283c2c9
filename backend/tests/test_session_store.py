from datetime import timedelta

import pytest

from authcore.errors import AuthError, ErrorKind
from authcore.models.auth import AuthSession
from authcore.security import hash_token
from authcore.services.session_store import SessionStore


@pytest.fixture
def store(session_factory, clock):
    return SessionStore(session_factory, clock=clock)


def _new_session(clock, session_id: str, user_id: str = "user-1", user_agent: str | None = None, days: int = 7):
    return AuthSession(
        session_id=session_id,
        user_id=user_id,
        created_at=clock.now,
        last_used_at=clock.now,
        expires_at=clock.now + timedelta(days=days),
        user_agent=user_agent,
    )


def test_create_and_find_by_session_id(store, clock):
    created = store.create(_new_session(clock, hash_token("rt-1"), user_agent="Firefox"))

    found = store.find_by_session_id(hash_token("rt-1"))

    assert found is not None
    assert found.id == created.id
    assert found.user_agent == "Firefox"
    assert store.find_by_session_id(hash_token("unknown")) is None


def test_create_with_existing_session_id_is_a_conflict(store, clock):
    store.create(_new_session(clock, "same"))

    with pytest.raises(AuthError) as exc_info:
        store.create(_new_session(clock, "same", user_id="user-2"))

    assert exc_info.value.kind == ErrorKind.CONFLICT


def test_compare_and_rotate_swaps_session_id_once(store, clock):
    created = store.create(_new_session(clock, "old"))
    clock.advance(hours=1)

    rotated = store.compare_and_rotate("old", "new", clock.now + timedelta(days=7))

    assert rotated is not None
    assert rotated.id == created.id
    assert rotated.session_id == "new"
    assert rotated.last_used_at == clock.now
    assert rotated.expires_at == clock.now + timedelta(days=7)
    assert store.find_by_session_id("old") is None
    assert store.compare_and_rotate("old", "newer", clock.now + timedelta(days=7)) is None


def test_compare_and_rotate_refuses_revoked_session(store, clock):
    store.create(_new_session(clock, "old"))
    store.revoke("old")

    assert store.compare_and_rotate("old", "new", clock.now + timedelta(days=7)) is None


def test_compare_and_rotate_refuses_expired_session(store, clock):
    store.create(_new_session(clock, "old", days=1))
    clock.advance(days=1)

    assert store.compare_and_rotate("old", "new", clock.now + timedelta(days=7)) is None
    expired = store.find_by_session_id("old", include_inactive=True)
    assert expired.session_id == "old"


def test_revoke_is_idempotent_and_silent_for_unknown_ids(store, clock):
    store.create(_new_session(clock, "sid"))

    store.revoke("sid")
    store.revoke("sid")
    store.revoke("never-existed")

    assert store.find_by_session_id("sid") is None
    assert store.find_by_session_id("sid", include_inactive=True).revoked is True


def test_revoke_all_for_user_can_spare_one_session(store, clock):
    keep = store.create(_new_session(clock, "a"))
    store.create(_new_session(clock, "b"))
    store.create(_new_session(clock, "c"))
    store.create(_new_session(clock, "other", user_id="user-2"))

    assert store.revoke_all_for_user("user-1", keep_id=keep.id) == 2
    assert [s.id for s in store.list_active_for_user("user-1")] == [keep.id]
    assert len(store.list_active_for_user("user-2")) == 1
    assert store.revoke_all_for_user("user-1") == 1


def test_delete_sessions_for_user_by_agent_only_touches_that_device(store, clock):
    store.create(_new_session(clock, "phone-1", user_agent="Phone"))
    store.create(_new_session(clock, "laptop-1", user_agent="Laptop"))
    store.create(_new_session(clock, "other-phone", user_id="user-2", user_agent="Phone"))

    assert store.delete_sessions_for_user_by_agent("user-1", "Phone") == 1

    remaining = {s.session_id for s in store.list_active_for_user("user-1")}
    assert remaining == {"laptop-1"}
    assert store.find_by_session_id("other-phone") is not None


def test_count_recent_for_user_uses_creation_window(store, clock):
    store.create(_new_session(clock, "old"))
    clock.advance(hours=25)
    store.create(_new_session(clock, "new-1"))
    store.create(_new_session(clock, "new-2"))
    store.revoke("new-2")

    assert store.count_recent_for_user("user-1", timedelta(hours=24)) == 2
    assert store.count_recent_for_user("user-1", timedelta(hours=48)) == 3


def test_revoke_by_id_is_scoped_to_owner(store, clock):
    session = store.create(_new_session(clock, "sid"))

    assert store.revoke_by_id("user-2", session.id) is False
    assert store.revoke_by_id("user-1", session.id) is True
    assert store.revoke_by_id("user-1", session.id) is False


def test_delete_expired_or_revoked_is_repeatable(store, clock):
    store.create(_new_session(clock, "live"))
    store.create(_new_session(clock, "short", days=1))
    store.create(_new_session(clock, "revoked"))
    store.revoke("revoked")
    clock.advance(days=2)

    assert store.delete_expired_or_revoked() == 2
    assert store.delete_expired_or_revoked() == 0
    assert store.find_by_session_id("live") is not None
