"""PIN verification and throttled password login"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from epulsaku.api.dependencies import (
    get_client_ip,
    get_login_throttle,
    get_pin_guard,
    get_request_id,
    get_user_service,
)
from epulsaku.api.v1.schemas import (
    LoginActivityItem,
    LoginHistoryResponse,
    LoginRequest,
    LoginResponse,
    PinVerifyRequest,
    PinVerifyResponse,
    UserResponse,
)
from epulsaku.domain.exceptions import PersistenceError
from epulsaku.infrastructure.observability.metrics import login_throttled_counter
from epulsaku.services.login_throttle import LoginThrottle
from epulsaku.services.pin_guard import PinSecurityGuard
from epulsaku.services.users import UserService

router = APIRouter()


@router.post("/pin/verify", response_model=PinVerifyResponse)
async def verify_pin(body: PinVerifyRequest, guard: PinSecurityGuard = Depends(get_pin_guard)):
    """
    Check a transaction PIN.

    Invalid PINs are a normal 200 answer; the body carries the remaining
    attempts, or account_disabled once the lockout threshold is reached.
    """
    try:
        result = guard.verify(body.username, body.pin)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return PinVerifyResponse(
        is_valid=result.is_valid,
        message=result.message,
        account_disabled=result.account_disabled,
        attempts_remaining=result.attempts_remaining,
    )


@router.post("/auth/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    request: Request,
    throttle: LoginThrottle = Depends(get_login_throttle),
    users: UserService = Depends(get_user_service),
):
    """Password login; repeated failures from one IP are locked out for a while"""
    ip = get_client_ip(request)
    locked_for = throttle.seconds_locked(ip)
    if locked_for:
        login_throttled_counter.inc()
        return JSONResponse(
            status_code=429,
            content={
                "detail": f"Too many failed login attempts. Please try again in {locked_for} seconds.",
                "lockout_time": locked_for,
            },
        )

    result = users.authenticate(body.username, body.password)
    if not result.success:
        if result.user is not None and result.user.is_disabled:
            raise HTTPException(status_code=403, detail=result.message)
        throttle.record_failure(ip)
        logging.warning(
            f"Failed login for {body.username}",
            extra={"request_id": get_request_id(request), "username": body.username, "ip": ip},
        )
        raise HTTPException(status_code=401, detail=result.message)

    throttle.reset(ip)
    users.record_login_success(result.user, request.headers.get("user-agent"), ip)
    return LoginResponse(message=result.message, user=UserResponse.from_user(result.user))


@router.get("/auth/login-history", response_model=LoginHistoryResponse)
def login_history(
    username: str = Query(..., description="Username"),
    users: UserService = Depends(get_user_service),
):
    activities = [
        LoginActivityItem(
            id=a.id,
            username=a.username,
            login_timestamp=a.login_timestamp,
            user_agent=a.user_agent,
            ip_address=a.ip_address,
        )
        for a in users.login_history(username)
    ]
    return LoginHistoryResponse(username=username, activities=activities)

