from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from orderdesk import partners
from orderdesk.access import Caller, current_caller
from orderdesk.notifications import Publisher, get_publisher
from orderdesk.schemas import UpdateAvailability
from orderdesk.store import EntityStore, get_store

router = APIRouter(prefix="/users", tags=["users"])


def partner_summary(user) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email, "isAvailable": user.is_available}


@router.put("/availability")
async def update_availability(
    body: UpdateAvailability,
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
    publisher: Publisher = Depends(get_publisher),
) -> JSONResponse:
    user = await partners.set_availability(store, publisher, body.is_available, caller)
    return JSONResponse(content=user.public())


@router.get("/delivery-partners")
async def available_partners(
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
) -> JSONResponse:
    result = await partners.list_partners(store, caller, available_only=True)
    return JSONResponse(content=[partner_summary(u) for u in result])


@router.get("/delivery-partners/all")
async def all_partners(
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
) -> JSONResponse:
    result = await partners.list_partners(store, caller, available_only=False)
    return JSONResponse(content=[partner_summary(u) for u in result])
