"""Provider catalogue and balance endpoints"""

import logging
from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from epulsaku.api.dependencies import get_balance_monitor, get_price_list
from epulsaku.api.v1.schemas import BalanceCheckResponse, DigiflazzProductResponse
from epulsaku.domain.exceptions import UpstreamApiError, ValidationError
from epulsaku.services.balances import BalanceMonitor
from epulsaku.services.price_list import DigiflazzPriceList

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/providers/digiflazz/price-list", response_model=List[DigiflazzProductResponse])
async def get_digiflazz_price_list(
    force_refresh: bool = False,
    price_list: DigiflazzPriceList = Depends(get_price_list),
):
    """Digiflazz products, served from a short-lived cache unless force_refresh is set"""
    try:
        products = await price_list.get(force_refresh=force_refresh)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamApiError as e:
        logger.error(f"Error fetching Digiflazz products: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return [DigiflazzProductResponse(**asdict(product)) for product in products]


@router.post("/providers/balance-check", response_model=BalanceCheckResponse)
async def check_balances(monitor: BalanceMonitor = Depends(get_balance_monitor)):
    """Check provider balances and alert the operators when one runs low"""
    report = await monitor.check_and_notify()
    return BalanceCheckResponse(**asdict(report))
