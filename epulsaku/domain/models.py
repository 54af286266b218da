"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class TransactionStatus(str, Enum):
    """Lifecycle status of a purchase; Sukses and Gagal are terminal"""

    PENDING = "Pending"
    SUKSES = "Sukses"
    GAGAL = "Gagal"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class Provider(str, Enum):
    """Upstream wholesale provider"""

    DIGIFLAZZ = "digiflazz"
    TOKOVOUCHER = "tokovoucher"


class UserRole(str, Enum):
    STAF = "staf"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


@dataclass
class NewTransaction:
    """Purchase submission as handed to the ledger"""

    id: str
    product_name: str
    details: str
    cost_price: int
    status: TransactionStatus
    timestamp: str  # ISO-8601
    buyer_sku_code: str
    original_customer_no: str
    product_category_from_provider: str
    product_brand_from_provider: str
    provider: Provider
    source: str = "web"
    serial_number: Optional[str] = None
    failure_reason: Optional[str] = None
    provider_transaction_id: Optional[str] = None


@dataclass
class Transaction:
    """Stored transaction record"""

    id: str
    product_name: str
    details: str
    cost_price: int
    selling_price: int
    status: TransactionStatus
    timestamp: str
    buyer_sku_code: str
    original_customer_no: str
    product_category_from_provider: str
    product_brand_from_provider: str
    provider: Provider
    category_key: str
    icon_name: str
    source: str = "web"
    serial_number: Optional[str] = None
    failure_reason: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    transacted_by: Optional[str] = None
    transaction_year: Optional[int] = None
    transaction_month: Optional[int] = None
    transaction_day_of_month: Optional[int] = None
    transaction_day_of_week: Optional[int] = None
    transaction_hour: Optional[int] = None


@dataclass
class TransactionUpdate:
    """Partial update; None means the field was not supplied"""

    id: str
    status: Optional[TransactionStatus] = None
    serial_number: Optional[str] = None
    failure_reason: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    cost_price: Optional[int] = None
    product_name: Optional[str] = None
    details: Optional[str] = None
    product_category_from_provider: Optional[str] = None
    product_brand_from_provider: Optional[str] = None


@dataclass
class OperationResult:
    """Structured outcome for expected failure modes (not found, invalid PIN, ...)"""

    success: bool
    message: Optional[str] = None
    transaction_id: Optional[str] = None


@dataclass
class PinVerification:
    """Output of a PIN check"""

    is_valid: bool
    message: str
    account_disabled: bool = False
    attempts_remaining: Optional[int] = None


@dataclass
class ProviderResult:
    """Normalized purchase/status answer from an upstream provider"""

    status: TransactionStatus
    cost: Optional[int] = None
    serial_number: Optional[str] = None
    message: Optional[str] = None
    provider_tx_id: Optional[str] = None


@dataclass
class StoredUser:
    id: str
    username: str
    role: UserRole
    hashed_password: Optional[str] = None
    hashed_pin: Optional[str] = None
    email: Optional[str] = None
    permissions: List[str] = field(default_factory=list)
    created_by: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    is_disabled: bool = False
    failed_pin_attempts: int = 0


@dataclass
class NotificationEvent:
    """Human-readable alert payload for the messaging bot"""

    ref_id: str
    product_name: str
    customer_no_display: str
    status: str
    provider: str  # "Digiflazz", "TokoVoucher", "System", ...
    timestamp: datetime
    cost_price: Optional[int] = None
    selling_price: Optional[int] = None
    profit: Optional[int] = None
    sn: Optional[str] = None
    failure_reason: Optional[str] = None
    additional_info: Optional[str] = None
    trx_id: Optional[str] = None
    transacted_by: Optional[str] = None

    @property
    def is_system_alert(self) -> bool:
        return self.provider == "System" or self.product_name == "Account Security Alert"


@dataclass
class AccountResult:
    """Outcome of an account administration call"""

    success: bool
    message: str
    user: Optional[StoredUser] = None


@dataclass
class LoginActivity:
    id: str
    user_id: str
    username: str
    login_timestamp: datetime
    user_agent: str
    ip_address: str


@dataclass
class DigiflazzProduct:
    """One entry of the Digiflazz price list"""

    product_name: str
    category: str
    brand: str
    seller_name: str
    price: int
    buyer_sku_code: str
    buyer_product_status: bool
    seller_product_status: bool
    type: Optional[str] = None
    unlimited_stock: Optional[bool] = None
    stock: Optional[int] = None
    multi: Optional[bool] = None
    start_cut_off: Optional[str] = None
    end_cut_off: Optional[str] = None
    desc: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.buyer_product_status and self.seller_product_status


@dataclass
class BalanceCheckReport:
    """Result of a provider balance sweep"""

    status: str
    checked_providers: List[str] = field(default_factory=list)
    notifications_sent: int = 0
    errors: List[str] = field(default_factory=list)
