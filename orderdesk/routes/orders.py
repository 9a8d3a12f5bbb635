from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from orderdesk import assignment, orders, partners
from orderdesk.access import Caller, current_caller
from orderdesk.models import iso
from orderdesk.notifications import Publisher, get_publisher
from orderdesk.routes.users import partner_summary
from orderdesk.schemas import AssignPartner, OrderCreate, UpdatePrepTime, UpdateStatus
from orderdesk.store import EntityStore, get_store

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("")
async def create_order(
    body: OrderCreate,
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
    publisher: Publisher = Depends(get_publisher),
) -> JSONResponse:
    """Manager only. Dispatch window is computed and persisted at creation."""
    order = await orders.create_order(store, publisher, body, caller)
    return JSONResponse(
        status_code=201,
        content={
            "order": order.public(),
            "dispatchTime": iso(order.dispatch_time),
            "estimatedDeliveryTime": iso(order.estimated_delivery_time),
        },
    )


@router.get("")
async def list_orders(
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
) -> JSONResponse:
    result = await orders.list_orders(store, caller)
    return JSONResponse(content=[o.public() for o in result])


@router.get("/partner/assigned")
async def assigned_orders(
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
) -> JSONResponse:
    result = await orders.assigned_orders(store, caller)
    return JSONResponse(content=[o.public() for o in result])


@router.get("/available-partners")
async def available_partners(
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
) -> JSONResponse:
    """Same listing as /users/delivery-partners, kept for the order screen."""
    result = await partners.list_partners(store, caller, available_only=True)
    return JSONResponse(content=[partner_summary(u) for u in result])


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
) -> JSONResponse:
    order = await orders.get_order(store, order_id, caller)
    return JSONResponse(content={
        "order": order.public(),
        "estimatedDeliveryTime": iso(orders.pending_delivery_time(order)),
    })


@router.put("/{order_id}/assign")
async def assign_partner(
    order_id: str,
    body: AssignPartner,
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
    publisher: Publisher = Depends(get_publisher),
) -> JSONResponse:
    order = await assignment.assign(
        store,
        publisher,
        order_id,
        body.delivery_partner_id,
        caller,
        dispatch_time=body.dispatch_time,
        estimated_delivery_time=body.estimated_delivery_time,
        eta=body.eta,
    )
    return JSONResponse(content={
        "message": "Delivery partner assigned successfully",
        "order": order.summary(),
    })


@router.put("/{order_id}/status")
async def update_status(
    order_id: str,
    body: UpdateStatus,
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
    publisher: Publisher = Depends(get_publisher),
) -> JSONResponse:
    order = await orders.set_status(store, publisher, order_id, body.status, caller)
    return JSONResponse(content={
        "order": order.public(),
        "message": f"Order status updated to {order.status.value} successfully",
    })


@router.put("/{order_id}/prep-time")
async def update_prep_time(
    order_id: str,
    body: UpdatePrepTime,
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
    publisher: Publisher = Depends(get_publisher),
) -> JSONResponse:
    order = await orders.update_prep_time(store, publisher, order_id, body.prep_time, caller)
    return JSONResponse(content={
        "order": order.public(),
        "dispatchTime": iso(order.dispatch_time),
        "estimatedDeliveryTime": iso(order.estimated_delivery_time),
        "message": f"Order preparation time updated to {order.prep_time} minutes",
    })
