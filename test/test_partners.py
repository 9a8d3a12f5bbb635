import pytest

from orderdesk import partners
from orderdesk.errors import Forbidden, HasActiveOrder

from _helper import assigned_order


async def test_partner_toggles_availability(store, publisher, partner):
    user = await partners.set_availability(store, publisher, False, partner)
    assert user.is_available is False
    assert (await store.get_user(partner.id)).is_available is False

    user = await partners.set_availability(store, publisher, True, partner)
    assert user.is_available is True
    assert publisher.payload("managers", "delivery_partner_availability_changed") == {
        "partnerId": partner.id,
        "name": "Partner One",
        "isAvailable": False,
    }
    assert publisher.names(f"partner_{partner.id}") == ["availability_updated", "availability_updated"]


async def test_cannot_go_offline_with_active_order(store, publisher, manager, partner):
    order = await assigned_order(store, publisher, manager, partner)
    with pytest.raises(HasActiveOrder):
        await partners.set_availability(store, publisher, False, partner)
    user = await store.get_user(partner.id)
    assert user.current_order_id == order.order_id
    assert user.is_available is False


async def test_cannot_go_available_with_active_order(store, publisher, manager, partner):
    await assigned_order(store, publisher, manager, partner)
    with pytest.raises(HasActiveOrder):
        await partners.set_availability(store, publisher, True, partner)
    assert (await store.get_user(partner.id)).is_available is False


async def test_managers_have_no_availability(store, publisher, manager):
    with pytest.raises(Forbidden):
        await partners.set_availability(store, publisher, False, manager)


async def test_partner_listings(store, publisher, manager, partner, partner2):
    await partners.set_availability(store, publisher, False, partner2)

    available = await partners.list_partners(store, manager, available_only=True)
    everyone = await partners.list_partners(store, manager, available_only=False)

    assert [u.id for u in available] == [partner.id]
    assert [u.id for u in everyone] == [partner.id, partner2.id]
    with pytest.raises(Forbidden):
        await partners.list_partners(store, partner)
