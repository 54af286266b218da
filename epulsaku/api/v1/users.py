"""Account administration endpoints"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from epulsaku.api.dependencies import get_user_service
from epulsaku.api.v1.schemas import (
    ChangePasswordRequest,
    ChangePinRequest,
    CreateUserRequest,
    OperationResponse,
    UserActionRequest,
    UserResponse,
)
from epulsaku.domain.exceptions import PersistenceError
from epulsaku.domain.models import AccountResult
from epulsaku.services.users import UserService

router = APIRouter()

_FORBIDDEN_PREFIXES = ("Permission denied", "Only a super_admin")
_NOT_FOUND_PREFIXES = ("User not found", "User to delete not found")


def _raise_for(result: AccountResult) -> None:
    if result.success:
        return
    if result.message.startswith(_FORBIDDEN_PREFIXES):
        raise HTTPException(status_code=403, detail=result.message)
    if result.message.startswith(_NOT_FOUND_PREFIXES):
        raise HTTPException(status_code=404, detail=result.message)
    raise HTTPException(status_code=400, detail=result.message)


@router.get("/users", response_model=List[UserResponse])
def list_users(users: UserService = Depends(get_user_service)):
    return [UserResponse.from_user(u) for u in users.list_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(body: CreateUserRequest, users: UserService = Depends(get_user_service)):
    """The first account created becomes the super_admin"""
    try:
        result = users.create_user(**body.model_dump())
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    _raise_for(result)
    return UserResponse.from_user(result.user)


@router.post("/users/{user_id}/toggle-status", response_model=OperationResponse)
async def toggle_user_status(
    user_id: str,
    body: UserActionRequest,
    users: UserService = Depends(get_user_service),
):
    try:
        result = users.toggle_user_status(user_id, body.admin_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    _raise_for(result)
    return OperationResponse(success=True, message=result.message)


@router.delete("/users/{user_id}", response_model=OperationResponse)
def delete_user(
    user_id: str,
    admin_id: str = Query(..., description="Acting super_admin id"),
    users: UserService = Depends(get_user_service),
):
    try:
        result = users.delete_user(user_id, admin_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    _raise_for(result)
    return OperationResponse(success=True, message=result.message)


@router.post("/users/change-pin", response_model=OperationResponse)
def change_pin(body: ChangePinRequest, users: UserService = Depends(get_user_service)):
    try:
        result = users.change_pin(body.username, body.current_password, body.new_pin)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    _raise_for(result)
    return OperationResponse(success=True, message=result.message)


@router.post("/users/change-password", response_model=OperationResponse)
def change_password(body: ChangePasswordRequest, users: UserService = Depends(get_user_service)):
    try:
        result = users.change_password(body.username, body.old_password, body.new_password)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    _raise_for(result)
    return OperationResponse(success=True, message=result.message)


@router.delete("/users/login-activity/{activity_id}", response_model=OperationResponse)
def delete_login_activity(activity_id: str, users: UserService = Depends(get_user_service)):
    try:
        result = users.delete_login_activity(activity_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not result.success:
        raise HTTPException(status_code=404, detail=result.message)
    return OperationResponse(success=True, message=result.message)
