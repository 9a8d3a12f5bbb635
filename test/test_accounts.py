import pytest

from orderdesk import accounts, cache, partners
from orderdesk.access import Caller, authenticate, authorize
from orderdesk.errors import Forbidden, InvalidInput, Unauthenticated
from orderdesk.models import Role


async def test_register_then_authenticate(store):
    token, user = await accounts.register(store, "New Partner", "New@Example.com", "secret123", Role.DELIVERY_PARTNER)
    caller = await authenticate(token)
    assert caller.id == user.id
    assert caller.role == Role.DELIVERY_PARTNER
    assert user.email == "new@example.com"
    assert user.is_available is True
    assert "passwordHash" not in user.public()


async def test_duplicate_email_rejected(store):
    await accounts.create_user(store, "First", "same@example.com", "secret123", Role.MANAGER)
    with pytest.raises(InvalidInput):
        await accounts.create_user(store, "Second", "SAME@example.com", "secret456", Role.MANAGER)


async def test_login_requires_the_right_password(store, manager):
    token, user = await accounts.login(store, "manager@example.com", "secret123")
    assert user.id == manager.id
    assert (await authenticate(token)).id == manager.id

    for wrong in ("secret124", "password123"):
        with pytest.raises(Unauthenticated):
            await accounts.login(store, "manager@example.com", wrong)
    with pytest.raises(Unauthenticated):
        await accounts.login(store, "nobody@example.com", "secret123")


async def test_logout_revokes_token(store, manager):
    token, _ = await accounts.login(store, "manager@example.com", "secret123")
    caller = await authenticate(token)
    await accounts.logout(caller)
    with pytest.raises(Unauthenticated):
        await authenticate(token)


async def test_missing_or_garbage_token():
    with pytest.raises(Unauthenticated):
        await authenticate(None)
    with pytest.raises(Unauthenticated):
        await authenticate("not-a-session")


def test_authorize_role_sets():
    caller = Caller(id="u1", role=Role.DELIVERY_PARTNER)
    assert authorize(caller) is caller
    assert authorize(caller, (Role.DELIVERY_PARTNER, Role.MANAGER)) is caller
    with pytest.raises(Forbidden):
        authorize(caller, (Role.MANAGER,))


async def test_change_password(store, partner):
    with pytest.raises(InvalidInput):
        await accounts.change_password(store, partner, "wrong-one", "newsecret1")
    await accounts.change_password(store, partner, "secret123", "newsecret1")

    with pytest.raises(Unauthenticated):
        await accounts.login(store, "partner1@example.com", "secret123")
    _, user = await accounts.login(store, "partner1@example.com", "newsecret1")
    assert user.id == partner.id


async def test_user_cache_is_invalidated_on_writes(store, publisher, partner, fake_redis):
    first = await accounts.current_user(store, partner)
    assert first.is_available is True
    assert await fake_redis.get(cache.USER_KEY_PREFIX + partner.id) is not None

    await partners.set_availability(store, publisher, False, partner)
    assert await fake_redis.get(cache.USER_KEY_PREFIX + partner.id) is None
    assert (await accounts.current_user(store, partner)).is_available is False


async def test_cache_never_holds_password_hash(store, partner, fake_redis):
    await accounts.current_user(store, partner)
    raw = await fake_redis.get(cache.USER_KEY_PREFIX + partner.id)
    assert "password_hash" not in raw
