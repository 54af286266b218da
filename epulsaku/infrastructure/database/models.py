"""SQLAlchemy ORM models for the storefront collections"""

import uuid
from sqlalchemy import Column, String, BigInteger, Boolean, DateTime, Integer, Text, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


def _uuid_str() -> str:
    return str(uuid.uuid4())


class TransactionRecord(Base):
    """Purchase log entry; `ref_id` is the caller-supplied id, not unique by constraint"""

    __tablename__ = "transactions_log"

    pk = Column(String(36), primary_key=True, default=_uuid_str)
    ref_id = Column(Text, nullable=False, index=True)
    product_name = Column(Text, nullable=False)
    details = Column(Text, nullable=False, default="")
    cost_price = Column(BigInteger, nullable=False)
    selling_price = Column(BigInteger, nullable=False)
    status = Column(String(16), nullable=False, index=True)
    timestamp = Column(Text, nullable=False)  # ISO-8601, kept as text so malformed values survive
    serial_number = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    buyer_sku_code = Column(Text, nullable=False)
    original_customer_no = Column(Text, nullable=False)
    product_category_from_provider = Column(Text, nullable=False, default="")
    product_brand_from_provider = Column(Text, nullable=False, default="")
    provider = Column(String(16), nullable=False)
    source = Column(String(16), nullable=False, default="web")
    provider_transaction_id = Column(Text, nullable=True)
    transacted_by = Column(Text, nullable=True, index=True)
    category_key = Column(Text, nullable=False)
    icon_name = Column(Text, nullable=False)
    transaction_year = Column(Integer, nullable=True)
    transaction_month = Column(Integer, nullable=True)
    transaction_day_of_month = Column(Integer, nullable=True)
    transaction_day_of_week = Column(Integer, nullable=True)
    transaction_hour = Column(Integer, nullable=True)


class UserRecord(Base):
    """Staff/admin account with PIN lockout state"""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    username = Column(Text, nullable=False, unique=True)
    email = Column(Text, nullable=True)
    hashed_password = Column(Text, nullable=True)
    hashed_pin = Column(Text, nullable=True)
    role = Column(String(16), nullable=False)
    permissions = Column(JSON, nullable=False, default=list)
    created_by = Column(Text, nullable=True)
    telegram_chat_id = Column(Text, nullable=True)
    is_disabled = Column(Boolean, nullable=False, default=False)
    failed_pin_attempts = Column(Integer, nullable=False, default=0)


class PriceOverrideRecord(Base):
    """Operator-configured selling price keyed by provider::productCode"""

    __tablename__ = "price_settings"

    key = Column(Text, primary_key=True)
    price = Column(BigInteger, nullable=False)
    last_updated_by = Column(Text, nullable=True)
    last_updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LoginActivityRecord(Base):
    """Successful password login"""

    __tablename__ = "login_activity"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), nullable=False, index=True)
    username = Column(Text, nullable=False, index=True)
    login_timestamp = Column(DateTime(timezone=True), nullable=False)
    user_agent = Column(Text, nullable=True)
    ip_address = Column(Text, nullable=True)
