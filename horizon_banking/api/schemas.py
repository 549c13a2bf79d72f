"""
Pydantic schemas for API requests
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


# Amounts are passed through untouched; the domain parses and rejects them
AmountField = Field(None, description="Positive amount as number or numeric string")


# Auth schemas
class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


# Transaction schemas
class AmountRequest(BaseModel):
    amount: Any = AmountField
    description: Optional[str] = None
    currency: str = Field("USD", description="USD or BTC")


class TransferRequest(BaseModel):
    to_email: str
    amount: Any = AmountField
    description: Optional[str] = None
    currency: str = "USD"


class RecurringRequest(BaseModel):
    type: Optional[str] = Field(None, description="debit or credit")
    amount: Any = AmountField
    interval: Optional[str] = Field(None, description="daily, weekly or monthly")
    description: Optional[str] = None


# Admin schemas
class AdminTransactionRequest(BaseModel):
    type: str = Field(..., description="deposit, withdrawal, credit, debit or fee")
    amount: Any = AmountField
    description: Optional[str] = None
    currency: str = "USD"


class DateOverrideRequest(BaseModel):
    date: str = Field(..., description="ISO 8601 date or datetime")


# Statement schemas
class StatementRequest(BaseModel):
    account_type: Optional[str] = Field(None, description="checking, savings, investment or crypto")
    start_date: Optional[str] = None
    end_date: Optional[str] = None


# Limit schemas
class LimitCheckRequest(BaseModel):
    amount: Any = AmountField
    type: Optional[str] = Field(None, description="transfer or withdrawal")


class LimitUpdateRequest(BaseModel):
    daily_transfer_limit: Any = None
    daily_withdrawal_limit: Any = None
    max_transaction_amount: Any = None
    limits_enabled: Optional[bool] = None


# Check deposit schemas
class CheckDepositRequest(BaseModel):
    account_type: Optional[str] = Field(None, description="checking or savings")
    amount: Any = AmountField
    check_number: Optional[str] = None
    front_image: Optional[str] = Field(None, description="Image data or URL of the check front")
    back_image: Optional[str] = Field(None, description="Image data or URL of the check back")


class CheckDepositReviewRequest(BaseModel):
    action: Optional[str] = Field(None, description="approve or reject")
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
