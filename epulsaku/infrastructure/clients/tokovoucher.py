"""TokoVoucher API client - purchases and status checks"""

from typing import Any, Dict, Optional

import httpx

from epulsaku.config import settings
from epulsaku.domain.exceptions import UpstreamApiError, ValidationError
from epulsaku.domain.models import ProviderResult, TransactionStatus
from epulsaku.infrastructure.observability.metrics import upstream_failures_counter, upstream_latency_histogram
from epulsaku.utils.security import md5_hex


_STATUS_MAP = {
    "sukses": TransactionStatus.SUKSES,
    "pending": TransactionStatus.PENDING,
    "gagal": TransactionStatus.GAGAL,
}


def parse_status_body(body: Dict[str, Any], strict: bool = True) -> ProviderResult:
    """
    Interpret a TokoVoucher transaction body.

    A root `status` of 0/"0" is an API-level failure (bad signature, IP not
    allowed) and raises UpstreamApiError. With `strict`, an unknown status
    string also raises; webhooks pass strict=False and treat it as Gagal.
    """
    status = body.get("status")
    if status in (0, "0"):
        raise UpstreamApiError(body.get("error_msg") or "TokoVoucher API request failed.")
    if not isinstance(status, str):
        raise UpstreamApiError("TokoVoucher response structure is unexpected.")

    parsed = _STATUS_MAP.get(status.lower())
    if parsed is None:
        if strict:
            raise UpstreamApiError(f"Unexpected transaction status from TokoVoucher: {status}")
        parsed = TransactionStatus.GAGAL

    price = body.get("price")
    sn = body.get("sn") or None
    message = body.get("message")
    return ProviderResult(
        status=parsed,
        cost=int(price) if isinstance(price, (int, float)) and not isinstance(price, bool) and price > 0 else None,
        serial_number=sn,
        # TokoVoucher puts the failure detail in `sn` on gagal
        message=(sn or message) if parsed is TransactionStatus.GAGAL else message,
        provider_tx_id=body.get("trx_id") or None,
    )


class TokoVoucherClient:
    """
    Client for TokoVoucher's transaction API (signature = md5(member:secret:ref_id))
    and its member API (signature = md5(member:secret)).
    """

    def __init__(
        self,
        member_code: str | None = None,
        secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        member_base_url: str | None = None,
    ):
        self.member_code = settings.tokovoucher_member_code if member_code is None else member_code
        self.secret = settings.tokovoucher_secret if secret is None else secret
        self.base_url = base_url or settings.tokovoucher_api_base
        self.member_base_url = member_base_url or settings.tokovoucher_member_api_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def signature(self, ref_id: str) -> str:
        return md5_hex(f"{self.member_code}:{self.secret}:{ref_id}")

    @property
    def configured(self) -> bool:
        return bool(self.member_code and self.secret)

    def member_signature(self) -> str:
        return md5_hex(f"{self.member_code}:{self.secret}")

    def _require_credentials(self) -> None:
        if not self.configured:
            raise ValidationError("TokoVoucher member code or secret is not configured.")

    async def check_status(self, ref_id: str) -> ProviderResult:
        """
        Query a transaction's status by reference id.

        Raises:
            ValidationError: credentials are not configured
            UpstreamApiError: transport failure or API-level error (status 0)
        """
        self._require_credentials()
        payload = {
            "ref_id": ref_id,
            "member_code": self.member_code,
            "signature": self.signature(ref_id),
        }
        body = await self._call("POST", f"{self.base_url}/transaksi/status", json=payload)
        return parse_status_body(body)

    async def purchase(
        self,
        ref_id: str,
        product_code: str,
        customer_no: str,
        server_id: Optional[str] = None,
    ) -> ProviderResult:
        """Place an order; same error contract as check_status"""
        self._require_credentials()
        params = {
            "ref_id": ref_id,
            "produk": product_code,
            "tujuan": customer_no,
            "secret": self.secret,
            "member_code": self.member_code,
            "server_id": server_id or "",
        }
        body = await self._call("GET", f"{self.base_url}/transaksi", params=params)
        return parse_status_body(body)

    async def fetch_balance(self) -> int:
        """
        Member balance (saldo) in rupiah.

        Raises:
            ValidationError: credentials are not configured
            UpstreamApiError: transport failure or any answer other than status 1 with data
        """
        self._require_credentials()
        params = {"member_code": self.member_code, "signature": self.member_signature()}
        body = await self._call("GET", f"{self.member_base_url}/member", params=params)
        data = body.get("data")
        saldo = data.get("saldo") if isinstance(data, dict) else None
        if str(body.get("status")) != "1" or isinstance(saldo, bool) or not isinstance(saldo, (int, float)):
            if body.get("status") not in (0, "0"):
                upstream_failures_counter.labels(provider="tokovoucher").inc()
            detail = body.get("error_msg") or body.get("message") or "Unknown error"
            raise UpstreamApiError(f"TokoVoucher API Error: {detail}")
        return int(saldo)

    async def _call(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with upstream_latency_histogram.labels(provider="tokovoucher").time():
                    response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                body = response.json()
                if not isinstance(body, dict):
                    raise ValueError("response body is not an object")
                if body.get("status") in (0, "0"):
                    upstream_failures_counter.labels(provider="tokovoucher").inc()
                return body

            except httpx.TimeoutException as e:
                upstream_failures_counter.labels(provider="tokovoucher").inc()
                raise UpstreamApiError(f"TokoVoucher API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                upstream_failures_counter.labels(provider="tokovoucher").inc()
                raise UpstreamApiError(f"TokoVoucher API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                upstream_failures_counter.labels(provider="tokovoucher").inc()
                raise UpstreamApiError(f"TokoVoucher API unreachable: {e}") from e
            except ValueError as e:
                upstream_failures_counter.labels(provider="tokovoucher").inc()
                raise UpstreamApiError(f"Invalid response from TokoVoucher: {e}") from e
