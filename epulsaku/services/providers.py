"""Routes purchase and status calls to the right upstream provider"""

from typing import Optional

from epulsaku.domain.models import Provider, ProviderResult, Transaction
from epulsaku.infrastructure.clients.digiflazz import DigiflazzClient
from epulsaku.infrastructure.clients.tokovoucher import TokoVoucherClient

PROVIDER_DISPLAY_NAMES = {
    Provider.DIGIFLAZZ: "Digiflazz",
    Provider.TOKOVOUCHER: "TokoVoucher",
}

REF_ID_PREFIXES = {
    Provider.DIGIFLAZZ: "DF",
    Provider.TOKOVOUCHER: "TV",
}


class ProviderGateway:
    def __init__(self, digiflazz: DigiflazzClient, tokovoucher: TokoVoucherClient):
        self.digiflazz = digiflazz
        self.tokovoucher = tokovoucher

    async def purchase(
        self,
        provider: Provider,
        ref_id: str,
        product_code: str,
        customer_no: str,
        server_id: Optional[str] = None,
    ) -> ProviderResult:
        if provider is Provider.TOKOVOUCHER:
            return await self.tokovoucher.purchase(ref_id, product_code, customer_no, server_id)
        return await self.digiflazz.purchase(product_code, customer_no, ref_id)

    async def query_status(self, tx: Transaction) -> ProviderResult:
        """
        TokoVoucher has a dedicated status endpoint; Digiflazz is re-queried by
        repeating the purchase with the same ref id.
        """
        if tx.provider is Provider.TOKOVOUCHER:
            return await self.tokovoucher.check_status(tx.id)
        return await self.digiflazz.purchase(tx.buyer_sku_code, tx.original_customer_no, tx.id)
