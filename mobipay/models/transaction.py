from datetime import datetime
from sqlalchemy import String, Integer, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from mobipay.database import Base


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    vehicle_code: Mapped[str] = mapped_column(
        String(4), ForeignKey("vehicles.code"), nullable=False, index=True
    )
    phone_number: Mapped[str] = mapped_column(String(15), nullable=False, index=True)

    fare_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    service_charge: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    owner_share: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_share: Mapped[int] = mapped_column(Integer, nullable=False)

    # PENDING | COMPLETED | FAILED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING", index=True)
    merchant_request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    checkout_request_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    receipt_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    result_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    result_desc: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
