from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from orderdesk import accounts
from orderdesk.access import Caller, current_caller
from orderdesk.schemas import Login, PasswordChange, Register
from orderdesk.store import EntityStore, get_store

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register")
async def register(body: Register, store: EntityStore = Depends(get_store)) -> JSONResponse:
    token, user = await accounts.register(store, body.name, body.email, body.password, body.role)
    return JSONResponse(content={"token": token, "user": user.public()})


@router.post("/login")
async def login(body: Login, store: EntityStore = Depends(get_store)) -> JSONResponse:
    token, user = await accounts.login(store, body.email, body.password)
    return JSONResponse(content={"token": token, "user": user.public()})


@router.post("/logout")
async def logout(caller: Caller = Depends(current_caller)) -> JSONResponse:
    await accounts.logout(caller)
    return JSONResponse(content={"msg": "Logged out"})


@router.get("/user")
async def get_user(
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
) -> JSONResponse:
    user = await accounts.current_user(store, caller)
    return JSONResponse(content=user.public())


@router.put("/password")
async def change_password(
    body: PasswordChange,
    caller: Caller = Depends(current_caller),
    store: EntityStore = Depends(get_store),
) -> JSONResponse:
    await accounts.change_password(store, caller, body.current_password, body.new_password)
    return JSONResponse(content={"msg": "Password updated successfully"})
