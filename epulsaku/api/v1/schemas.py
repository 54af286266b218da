"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from epulsaku.domain.models import Provider, StoredUser, TransactionStatus, UserRole


class TransactionResponse(BaseModel):
    """Stored transaction as returned by the ledger endpoints"""

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
    source: str
    serial_number: Optional[str] = None
    failure_reason: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    transacted_by: Optional[str] = None
    transaction_year: Optional[int] = None
    transaction_month: Optional[int] = None
    transaction_day_of_month: Optional[int] = None
    transaction_day_of_week: Optional[int] = None
    transaction_hour: Optional[int] = None


class NewTransactionRequest(BaseModel):
    """Request body for POST /v1/transactions"""

    id: str = Field(..., min_length=1)
    product_name: str
    details: str
    cost_price: int = Field(..., ge=0)
    status: TransactionStatus
    timestamp: str
    buyer_sku_code: str
    original_customer_no: str
    product_category_from_provider: str = ""
    product_brand_from_provider: str = ""
    provider: Provider
    source: str = "web"
    serial_number: Optional[str] = None
    failure_reason: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    transacted_by: str = Field(..., min_length=1)


class TransactionUpdateRequest(BaseModel):
    """Request body for PATCH /v1/transactions/{id}"""

    status: Optional[TransactionStatus] = None
    serial_number: Optional[str] = None
    failure_reason: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    cost_price: Optional[int] = None
    product_name: Optional[str] = None
    details: Optional[str] = None
    product_category_from_provider: Optional[str] = None
    product_brand_from_provider: Optional[str] = None
    expected_status: Optional[TransactionStatus] = Field(
        None, description="Only apply the update while the record still has this status"
    )


class PurchaseRequestBody(BaseModel):
    """Request body for POST /v1/transactions/purchase"""

    username: str = Field(..., min_length=1)
    pin: str
    provider: Provider
    product_code: str = Field(..., min_length=1)
    product_name: str
    customer_no: str = Field(..., min_length=1)
    cost_price: int = Field(..., gt=0)
    category: str = ""
    brand: str = ""
    server_id: Optional[str] = None


class PurchaseResponse(BaseModel):
    success: bool
    message: str
    transaction: Optional[TransactionResponse] = None


class RecheckResponse(BaseModel):
    outcome: str
    transaction: TransactionResponse


class OperationResponse(BaseModel):
    success: bool
    message: Optional[str] = None


class PinVerifyRequest(BaseModel):
    username: str = Field(..., min_length=1)
    pin: str


class PinVerifyResponse(BaseModel):
    is_valid: bool
    message: str
    account_disabled: bool = False
    attempts_remaining: Optional[int] = None


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, description="Username is required.")
    password: str = Field(..., min_length=1, description="Password is required.")


class UserResponse(BaseModel):
    id: str
    username: str
    role: UserRole
    email: Optional[str] = None
    permissions: List[str] = []
    created_by: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    is_disabled: bool = False
    failed_pin_attempts: int = 0

    @classmethod
    def from_user(cls, user: StoredUser) -> "UserResponse":
        """Everything except the password and PIN hashes"""
        return cls(
            id=user.id,
            username=user.username,
            role=user.role,
            email=user.email,
            permissions=user.permissions,
            created_by=user.created_by,
            telegram_chat_id=user.telegram_chat_id,
            is_disabled=user.is_disabled,
            failed_pin_attempts=user.failed_pin_attempts,
        )


class LoginResponse(BaseModel):
    message: str
    user: UserResponse


class LoginActivityItem(BaseModel):
    id: str
    username: str
    login_timestamp: datetime
    user_agent: str
    ip_address: str


class LoginHistoryResponse(BaseModel):
    username: str
    activities: List[LoginActivityItem]


class CreateUserRequest(BaseModel):
    username: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    pin: Optional[str] = Field(None, pattern=r"^\d{6}$")
    email: Optional[str] = None
    role: Optional[UserRole] = None
    permissions: List[str] = []
    creator_id: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    admin_password_confirmation: Optional[str] = None


class UserActionRequest(BaseModel):
    admin_id: str = Field(..., min_length=1)


class ChangePinRequest(BaseModel):
    username: str = Field(..., min_length=1)
    current_password: str = Field(..., min_length=1)
    new_pin: str = Field(..., pattern=r"^\d{6}$", description="6-digit transaction PIN")


class ChangePasswordRequest(BaseModel):
    username: str = Field(..., min_length=1)
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class PriceSettingsResponse(BaseModel):
    settings: Dict[str, int]


class PriceSettingsUpdateRequest(BaseModel):
    settings: Dict[str, Any]
    admin_username: str = Field(..., min_length=1)
    admin_password: str = Field(..., min_length=1)


class DigiflazzProductResponse(BaseModel):
    product_name: str
    category: str
    brand: str
    type: Optional[str] = None
    seller_name: str
    price: int
    buyer_sku_code: str
    buyer_product_status: bool
    seller_product_status: bool
    unlimited_stock: Optional[bool] = None
    stock: Optional[int] = None
    multi: Optional[bool] = None
    start_cut_off: Optional[str] = None
    end_cut_off: Optional[str] = None
    desc: Optional[str] = None


class BalanceCheckResponse(BaseModel):
    status: str
    checked_providers: List[str]
    notifications_sent: int
    errors: List[str]
