import pytest

from agora.errors import DuplicateUser, InvalidCredentials, NotAuthenticated


@pytest.mark.asyncio
async def test_register_login_visit_scenario(auth):
    user = await auth.register("alice", "pw1", "a@x.com")
    assert user.username == "alice"
    assert user.password_hash != "pw1"

    with pytest.raises(DuplicateUser):
        await auth.register("alice", "other", "b@x.com")

    with pytest.raises(InvalidCredentials):
        await auth.login("alice", "wrong")
    assert auth.session_count == 0

    session = await auth.login("alice", "pw1")
    assert session.counter == 0

    token = auth.issue_token(session)
    visited = auth.require_session(token, visit=True)
    assert visited is session
    assert session.counter == 1


@pytest.mark.asyncio
async def test_duplicate_registration_keeps_first_record(auth):
    await auth.register("alice", "pw1", "a@x.com")
    with pytest.raises(DuplicateUser):
        await auth.register("alice", "pw2", "evil@x.com")

    user = await auth.store.find_by_username("alice")
    assert user.email == "a@x.com"
    assert await auth.store.verify_password(user, "pw1")
    assert not await auth.store.verify_password(user, "pw2")


@pytest.mark.asyncio
async def test_unknown_user_and_wrong_password_look_the_same(auth):
    await auth.register("alice", "pw1", "a@x.com")

    with pytest.raises(InvalidCredentials) as missing:
        await auth.login("nobody", "pw1")
    with pytest.raises(InvalidCredentials) as wrong:
        await auth.login("alice", "nope")

    assert missing.value.message == wrong.value.message


@pytest.mark.asyncio
async def test_register_rejects_empty_fields(auth):
    with pytest.raises(ValueError):
        await auth.register("  ", "pw", "a@x.com")
    with pytest.raises(ValueError):
        await auth.register("bob", "", "b@x.com")


@pytest.mark.asyncio
async def test_session_expires_after_idle_timeout(auth, clock):
    await auth.register("alice", "pw1", "a@x.com")
    token = auth.issue_token(await auth.login("alice", "pw1"))

    clock.advance(61)
    with pytest.raises(NotAuthenticated):
        auth.require_session(token)
    # Expired sessions are dropped, not revived
    assert auth.session_count == 0


@pytest.mark.asyncio
async def test_each_check_renews_the_timeout(auth, clock):
    await auth.register("alice", "pw1", "a@x.com")
    token = auth.issue_token(await auth.login("alice", "pw1"))

    for _ in range(5):
        clock.advance(45)
        auth.require_session(token)

    assert auth.require_session(token).username == "alice"


@pytest.mark.asyncio
async def test_counter_only_moves_on_visits(auth):
    await auth.register("alice", "pw1", "a@x.com")
    token = auth.issue_token(await auth.login("alice", "pw1"))

    auth.require_session(token, visit=True)
    auth.require_session(token)
    auth.require_session(token, visit=True)

    assert auth.require_session(token).counter == 2


@pytest.mark.asyncio
async def test_logout_destroys_session(auth):
    await auth.register("alice", "pw1", "a@x.com")
    token = auth.issue_token(await auth.login("alice", "pw1"))

    auth.logout(token)

    with pytest.raises(NotAuthenticated):
        auth.require_session(token)


def test_logout_ignores_garbage(auth):
    auth.logout(None)
    auth.logout("not-a-token")


@pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
def test_require_session_rejects_invalid_tokens(auth, token):
    with pytest.raises(NotAuthenticated):
        auth.require_session(token)


@pytest.mark.asyncio
async def test_tokens_signed_with_another_key_are_rejected(auth, clock):
    from agora.auth import AuthManager

    await auth.register("alice", "pw1", "a@x.com")
    session = await auth.login("alice", "pw1")

    forger = AuthManager(auth.store, secret_key="other-secret", now=clock)
    with pytest.raises(NotAuthenticated):
        auth.require_session(forger.issue_token(session))


@pytest.mark.asyncio
async def test_current_user_hides_password_hash(auth):
    await auth.register("alice", "pw1", "a@x.com")
    session = await auth.login("alice", "pw1")
    auth.require_session(auth.issue_token(session), visit=True)

    data = await auth.current_user(session)

    assert data == {"user": {"username": "alice", "email": "a@x.com"}, "counter": 1}


@pytest.mark.asyncio
async def test_abandoned_sessions_are_purged_on_login(auth, clock):
    await auth.register("alice", "pw1", "a@x.com")
    for _ in range(20):
        await auth.login("alice", "pw1")
    assert auth.session_count == 20

    clock.advance(3600)
    await auth.login("alice", "pw1")

    assert auth.session_count == 1


@pytest.mark.asyncio
async def test_purge_keeps_live_sessions(auth, clock):
    await auth.register("alice", "pw1", "a@x.com")
    stale = auth.issue_token(await auth.login("alice", "pw1"))
    clock.advance(30)
    live = auth.issue_token(await auth.login("alice", "pw1"))

    clock.advance(40)
    assert auth.purge_expired() == 1

    assert auth.require_session(live).username == "alice"
    with pytest.raises(NotAuthenticated):
        auth.require_session(stale)


@pytest.mark.asyncio
async def test_login_strips_username_like_register(auth):
    await auth.register(" alice ", "pw1", "a@x.com")

    session = await auth.login(" alice ", "pw1")

    assert session.username == "alice"


@pytest.mark.asyncio
async def test_bcrypt_runs_off_the_event_loop(auth, monkeypatch):
    import asyncio

    calls = []
    original = asyncio.to_thread

    async def recording_to_thread(func, *args, **kwargs):
        calls.append(func.__name__)
        return await original(func, *args, **kwargs)

    monkeypatch.setattr("agora.credentials.asyncio.to_thread", recording_to_thread)

    await auth.register("alice", "pw1", "a@x.com")
    await auth.login("alice", "pw1")
    with pytest.raises(InvalidCredentials):
        await auth.login("nobody", "pw1")

    assert calls.count("hash_password") == 2   # registration + dummy hash
    assert calls.count("check_password") == 2
