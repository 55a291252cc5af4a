"""User and balance HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..dependencies import get_user_service
from ..errors import ShopError
from ..schemas import BalanceAmount, BalanceResponse, UserCreate, UserListResponse, UserResponse
from ..services import BalanceInfo, UserService
from .errors import as_http_error

router = APIRouter(prefix="/users", tags=["users"])


def _serialize_user(user) -> dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "createdAt": user.created_at,
    }


def _serialize_balance(info: BalanceInfo) -> dict[str, object]:
    return {
        "userId": info.user_id,
        "currentBalance": info.current_balance,
        "events": [
            {
                "id": event.id,
                "type": event.type,
                "amount": event.amount,
                "orderId": event.order_id,
                "createdAt": event.created_at,
            }
            for event in info.events
        ],
    }


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate, service: UserService = Depends(get_user_service)) -> UserResponse:
    try:
        user = await service.create_user(payload)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return UserResponse.model_validate(_serialize_user(user))


@router.get("", response_model=UserListResponse)
async def list_users(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    role: str | None = None,
    service: UserService = Depends(get_user_service),
) -> UserListResponse:
    users, total = await service.users.list_users(
        role=role.upper() if role else None,
        limit=limit,
        offset=offset,
    )
    return UserListResponse(items=[UserResponse.model_validate(_serialize_user(user)) for user in users], total=total)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, service: UserService = Depends(get_user_service)) -> UserResponse:
    user = await service.users.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserResponse.model_validate(_serialize_user(user))


@router.get("/{user_id}/balance", response_model=BalanceResponse)
async def get_balance(user_id: int, service: UserService = Depends(get_user_service)) -> BalanceResponse:
    try:
        info = await service.balance(user_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return BalanceResponse.model_validate(_serialize_balance(info))


@router.post("/{user_id}/balance/deposit", response_model=BalanceResponse)
async def deposit(
    user_id: int,
    payload: BalanceAmount,
    service: UserService = Depends(get_user_service),
) -> BalanceResponse:
    try:
        info = await service.deposit(user_id, payload.amount)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return BalanceResponse.model_validate(_serialize_balance(info))


@router.post("/{user_id}/balance/withdraw", response_model=BalanceResponse)
async def withdraw(
    user_id: int,
    payload: BalanceAmount,
    service: UserService = Depends(get_user_service),
) -> BalanceResponse:
    try:
        info = await service.withdraw(user_id, payload.amount)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return BalanceResponse.model_validate(_serialize_balance(info))
