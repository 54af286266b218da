"""Digiflazz API client - purchases, ref-id status queries, price list and balance"""

from typing import Any, Dict, List, Optional, Tuple

import httpx

from epulsaku.config import settings
from epulsaku.domain.exceptions import UpstreamApiError, ValidationError
from epulsaku.domain.models import DigiflazzProduct, ProviderResult, TransactionStatus
from epulsaku.infrastructure.observability.metrics import upstream_failures_counter, upstream_latency_histogram
from epulsaku.utils.security import md5_hex


PENDING_RESPONSE_CODES = {"04", "13"}


def normalize_status(status: Optional[str], rc: Optional[str]) -> TransactionStatus:
    """Map Digiflazz status/rc to the ledger's status"""
    status_upper = (status or "").upper()
    if status_upper == "SUKSES" or rc == "00":
        return TransactionStatus.SUKSES
    if status_upper == "PENDING" or rc in PENDING_RESPONSE_CODES:
        return TransactionStatus.PENDING
    return TransactionStatus.GAGAL


def parse_transaction_data(data: Dict[str, Any]) -> ProviderResult:
    """Build a ProviderResult from a Digiflazz `data` object (API response or webhook)"""
    status = normalize_status(data.get("status"), data.get("rc"))
    price = data.get("price")
    return ProviderResult(
        status=status,
        cost=int(price) if isinstance(price, (int, float)) and not isinstance(price, bool) else None,
        serial_number=data.get("sn") or None,
        message=data.get("message"),
        provider_tx_id=data.get("trx_id") or None,
    )


_OPTIONAL_PRODUCT_FIELDS = (
    "type",
    "unlimited_stock",
    "stock",
    "multi",
    "start_cut_off",
    "end_cut_off",
    "desc",
)


def parse_product(raw: Any, index: int) -> DigiflazzProduct:
    """Validate one price-list entry; optional fields that are absent become None"""
    try:
        if not isinstance(raw, dict):
            raise TypeError("entry is not an object")
        for name in ("product_name", "category", "brand", "seller_name", "buyer_sku_code"):
            if not isinstance(raw.get(name), str):
                raise TypeError(f"{name} must be a string")
        for name in ("buyer_product_status", "seller_product_status"):
            if not isinstance(raw.get(name), bool):
                raise TypeError(f"{name} must be a boolean")
        price = raw.get("price")
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise TypeError("price must be a number")
    except TypeError as e:
        raise UpstreamApiError(f"Failed to parse a product from Digiflazz (index {index}): {e}") from e

    return DigiflazzProduct(
        product_name=raw["product_name"],
        category=raw["category"],
        brand=raw["brand"],
        seller_name=raw["seller_name"],
        price=int(price),
        buyer_sku_code=raw["buyer_sku_code"],
        buyer_product_status=raw["buyer_product_status"],
        seller_product_status=raw["seller_product_status"],
        **{name: raw.get(name) for name in _OPTIONAL_PRODUCT_FIELDS},
    )


def _raise_for_rc(body: Dict[str, Any], what: str) -> None:
    """Digiflazz reports account-level errors as a non-00 rc, at the root or inside `data`"""
    data = body.get("data")
    if isinstance(data, dict) and data.get("rc") and str(data["rc"]) != "00":
        raise UpstreamApiError(
            f"Digiflazz API Error ({what}): {data.get('message') or 'Unknown error'} (RC: {data['rc']})"
        )
    if body.get("rc") and str(body["rc"]) != "00":
        raise UpstreamApiError(
            f"Digiflazz API Error ({what}): {body.get('message') or 'Unknown error'} (RC: {body['rc']})"
        )


class DigiflazzClient:
    """
    Client for the Digiflazz buyer API.

    Repeating `purchase` with a ref id Digiflazz has already seen returns the
    stored status instead of charging again, which is how pending transactions
    are re-queried.
    """

    def __init__(
        self,
        username: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.username = settings.digiflazz_username if username is None else username
        self.api_key = settings.digiflazz_api_key if api_key is None else api_key
        self.base_url = base_url or settings.digiflazz_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.username and self.api_key)

    def sign(self, suffix: str) -> str:
        """md5(username + api_key + suffix); the suffix is the ref id, "pricelist" or "depo" """
        return md5_hex(f"{self.username}{self.api_key}{suffix}")

    def _require_credentials(self) -> None:
        if not self.configured:
            raise ValidationError("Digiflazz username or API key is not configured.")

    async def purchase(self, buyer_sku_code: str, customer_no: str, ref_id: str) -> ProviderResult:
        """
        Submit (or re-query) a transaction.

        Raises:
            ValidationError: credentials are not configured
            UpstreamApiError: timeout, 5xx, or a body without transaction data
        """
        self._require_credentials()
        payload = {
            "username": self.username,
            "buyer_sku_code": buyer_sku_code,
            "customer_no": customer_no,
            "ref_id": ref_id,
            "sign": self.sign(ref_id),
        }
        # Business failures (rc != 00) arrive as 4xx with a data body
        status_code, body = await self._post("/transaction", payload, allow_client_errors=True)
        data = body.get("data")
        if not isinstance(data, dict) or ("status" not in data and "rc" not in data):
            upstream_failures_counter.labels(provider="digiflazz").inc()
            raise UpstreamApiError(f"Unexpected Digiflazz response (HTTP {status_code})")
        return parse_transaction_data(data)

    async def fetch_price_list(self) -> List[DigiflazzProduct]:
        """
        Full buyer price list.

        Raises:
            ValidationError: credentials are not configured
            UpstreamApiError: transport failure, non-00 rc or an unparseable product
        """
        self._require_credentials()
        payload = {"cmd": "pricelist", "username": self.username, "sign": self.sign("pricelist")}
        _, body = await self._post("/price-list", payload)
        try:
            _raise_for_rc(body, "products")
            data = body.get("data")
            if not isinstance(data, list):
                raise UpstreamApiError("Unexpected response structure from Digiflazz API when fetching products.")
            return [parse_product(raw, index) for index, raw in enumerate(data)]
        except UpstreamApiError:
            upstream_failures_counter.labels(provider="digiflazz").inc()
            raise

    async def fetch_balance(self) -> int:
        """Deposit balance in rupiah; same error contract as fetch_price_list"""
        self._require_credentials()
        payload = {"cmd": "deposit", "username": self.username, "sign": self.sign("depo")}
        _, body = await self._post("/cek-saldo", payload)
        try:
            _raise_for_rc(body, "balance")
            data = body.get("data")
            deposit = data.get("deposit") if isinstance(data, dict) else None
            if isinstance(deposit, bool) or not isinstance(deposit, (int, float)):
                raise UpstreamApiError("Unexpected response structure from Digiflazz API when checking balance.")
            return int(deposit)
        except UpstreamApiError:
            upstream_failures_counter.labels(provider="digiflazz").inc()
            raise

    async def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        allow_client_errors: bool = False,
    ) -> Tuple[int, Dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with upstream_latency_histogram.labels(provider="digiflazz").time():
                    response = await client.post(f"{self.base_url}{path}", json=payload)
                if response.status_code >= 500 or not allow_client_errors:
                    response.raise_for_status()
                body = response.json()
                if not isinstance(body, dict):
                    raise ValueError("response body is not an object")
                return response.status_code, body

            except httpx.TimeoutException as e:
                upstream_failures_counter.labels(provider="digiflazz").inc()
                raise UpstreamApiError(f"Digiflazz API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                upstream_failures_counter.labels(provider="digiflazz").inc()
                raise UpstreamApiError(f"Digiflazz API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                upstream_failures_counter.labels(provider="digiflazz").inc()
                raise UpstreamApiError(f"Digiflazz API unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                upstream_failures_counter.labels(provider="digiflazz").inc()
                raise UpstreamApiError(f"Invalid response from Digiflazz: {e}") from e
