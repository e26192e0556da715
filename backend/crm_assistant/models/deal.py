from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from crm_assistant.database import Base

DEAL_KINDS = ("sales", "procurement", "partnership")


class Deal(Base):
    __tablename__ = "deals"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    deal_kind: Mapped[str | None] = mapped_column(
        String(20), nullable=True, default="sales"
    )  # sales, procurement, partnership
    stage: Mapped[str] = mapped_column(String(100))
    amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE")
    )
    contact_id: Mapped[int | None] = mapped_column(
        ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )
    vendor_company_id: Mapped[int | None] = mapped_column(
        ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    expected_closing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_deal_kind_created", "deal_kind", "created_at"),
        Index("ix_deal_company", "company_id"),
    )


class DealStage(Base):
    __tablename__ = "deal_stage_sets"

    id: Mapped[int] = mapped_column(primary_key=True)
    deal_kind: Mapped[str] = mapped_column(String(20))
    stage: Mapped[str] = mapped_column(String(100))
    position: Mapped[int] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint("deal_kind", "position", name="uq_stage_kind_position"),
        UniqueConstraint("deal_kind", "stage", name="uq_stage_kind_stage"),
    )
