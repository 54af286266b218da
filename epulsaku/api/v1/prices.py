"""Operator price override endpoints"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from epulsaku.api.dependencies import get_price_overrides
from epulsaku.api.v1.schemas import OperationResponse, PriceSettingsResponse, PriceSettingsUpdateRequest
from epulsaku.infrastructure.database.session import get_db
from epulsaku.services.prices import CachedPriceOverrides, store_price_settings

router = APIRouter()


@router.get("/price-settings", response_model=PriceSettingsResponse)
def get_price_settings(overrides: CachedPriceOverrides = Depends(get_price_overrides)):
    return PriceSettingsResponse(settings=overrides.all())


@router.put("/price-settings", response_model=OperationResponse)
def put_price_settings(
    body: PriceSettingsUpdateRequest,
    db: Session = Depends(get_db),
    overrides: CachedPriceOverrides = Depends(get_price_overrides),
):
    """
    Replace every override. Entries without a `provider::code` key or with a
    non-positive price are dropped silently.
    """
    result = store_price_settings(
        db,
        body.settings,
        body.admin_username,
        body.admin_password,
        cache=overrides,
    )
    if not result.success:
        status_code = 500 if result.message.startswith("Failed") else 403
        raise HTTPException(status_code=status_code, detail=result.message)
    return OperationResponse(success=True, message=result.message)
