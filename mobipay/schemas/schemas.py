from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union
from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TransactionStatusEnum(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AccountTypeEnum(str, Enum):
    OWNER = "OWNER"
    PLATFORM = "PLATFORM"


# ---------------------------------------------------------------------------
# Payment schemas
# ---------------------------------------------------------------------------

class PaymentInitiateRequest(BaseModel):
    # Loosely typed on purpose: services.validation sanitizes before checking
    vehicle_code: Union[str, int]
    phone_number: str
    amount: Union[int, str]


class SplitSummary(BaseModel):
    owner_share: int
    platform_share: int
    split_ratio: str


class TransactionSummary(BaseModel):
    transaction_id: str
    vehicle_code: str
    phone_number: str
    fare_amount: int
    service_charge: int
    total_amount: int
    split: SplitSummary
    status: TransactionStatusEnum
    checkout_request_id: Optional[str] = None
    receipt_number: Optional[str] = None
    result_desc: Optional[str] = None
    customer_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_transaction(cls, txn, customer_message: Optional[str] = None) -> "TransactionSummary":
        return cls(
            transaction_id=txn.transaction_id,
            vehicle_code=txn.vehicle_code,
            phone_number=txn.phone_number,
            fare_amount=txn.fare_amount,
            service_charge=txn.service_charge,
            total_amount=txn.total_amount,
            split=SplitSummary(
                owner_share=txn.owner_share,
                platform_share=txn.platform_share,
                split_ratio=f"{txn.owner_share}:{txn.platform_share}",
            ),
            status=txn.status,
            checkout_request_id=txn.checkout_request_id,
            receipt_number=txn.receipt_number,
            result_desc=txn.result_desc,
            customer_message=customer_message,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        )


class PaymentResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: TransactionSummary


class HistoryData(BaseModel):
    vehicle_code: str
    transactions: list[TransactionSummary]
    total_transactions: int


class HistoryResponse(BaseModel):
    success: bool = True
    data: HistoryData


# ---------------------------------------------------------------------------
# M-Pesa callback envelope
# ---------------------------------------------------------------------------

class CallbackItem(BaseModel):
    Name: str
    Value: Any = None


class CallbackMetadataBlock(BaseModel):
    Item: list[CallbackItem] = Field(default_factory=list)


class StkCallback(BaseModel):
    MerchantRequestID: str = Field(..., min_length=1)
    CheckoutRequestID: str = Field(..., min_length=1)
    ResultCode: Union[int, str]
    ResultDesc: str = Field(..., min_length=1)
    CallbackMetadata: Optional[CallbackMetadataBlock] = None

    @field_validator("ResultCode")
    @classmethod
    def result_code_present(cls, v):
        if isinstance(v, str) and not v.strip():
            raise ValueError("ResultCode is required")
        return v

    def metadata_value(self, name: str) -> Any:
        if self.CallbackMetadata is None:
            return None
        for item in self.CallbackMetadata.Item:
            if item.Name == name:
                return item.Value
        return None


class CallbackBody(BaseModel):
    stkCallback: StkCallback


class CallbackEnvelope(BaseModel):
    Body: CallbackBody


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"


# ---------------------------------------------------------------------------
# Admin schemas
# ---------------------------------------------------------------------------

class AccountCreateRequest(BaseModel):
    account_number: str = Field(..., pattern=r"^\d{1,20}$")
    account_type: AccountTypeEnum
    account_name: str = Field(..., min_length=2, max_length=100)


class AccountResponse(BaseModel):
    account_number: str
    account_type: str
    account_name: str
    is_active: bool

    model_config = {"from_attributes": True}


class VehicleCreateRequest(BaseModel):
    code: str = Field(..., pattern=r"^\d{1,4}$")
    route_name: str = Field(..., min_length=2, max_length=100)
    owner_account: str = Field(..., pattern=r"^\d{1,20}$")


class VehicleStatusRequest(BaseModel):
    is_active: bool


class VehicleResponse(BaseModel):
    code: str
    route_name: str
    owner_account: str
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SettingUpdateRequest(BaseModel):
    value: Union[str, int, float]


class SettingResponse(BaseModel):
    setting_key: str
    setting_value: str
    description: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OverviewResponse(BaseModel):
    total_transactions: int
    completed_transactions: int
    pending_transactions: int
    failed_transactions: int
    total_revenue: int
    total_commissions: int
    owner_share: int
    platform_share: int
    active_vehicles: int


class AdminTransaction(TransactionSummary):
    route_name: Optional[str] = None
    owner_account: Optional[str] = None
    result_code: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TransactionPage(BaseModel):
    transactions: list[AdminTransaction]
    pagination: Pagination


class DailyTotal(BaseModel):
    date: str
    transactions: int
    revenue: int


class HourlyTotal(BaseModel):
    hour: int
    transactions: int
    revenue: int


class StatusCount(BaseModel):
    status: TransactionStatusEnum
    count: int


class VehicleRevenue(BaseModel):
    vehicle_code: str
    route_name: Optional[str] = None
    transactions: int
    revenue: int


class AnalyticsResponse(BaseModel):
    period: str
    since: datetime
    daily: list[DailyTotal]
    hourly: list[HourlyTotal]
    status_distribution: list[StatusCount]
    top_vehicles: list[VehicleRevenue]
