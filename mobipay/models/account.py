from datetime import datetime
from sqlalchemy import Integer, String, Boolean, DateTime, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column
from mobipay.database import Base

# One active PLATFORM account at a time
_ACTIVE_PLATFORM = text("account_type = 'PLATFORM' AND is_active")


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        Index(
            "uq_accounts_active_platform",
            "account_type",
            unique=True,
            postgresql_where=_ACTIVE_PLATFORM,
            sqlite_where=_ACTIVE_PLATFORM,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    # OWNER | PLATFORM
    account_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    account_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
