from __future__ import annotations

"""SQLModel table for classroom seats traded like real estate."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlmodel import Field, SQLModel

from common.datetime import utcnow
from ledger.models import MONEY


class Seat(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    teacher_id: str = Field(sa_column=Column("teacher_id", String, nullable=False))
    seat_number: int = Field(sa_column=Column("seat_number", Integer, nullable=False))
    column_number: int = Field(
        default=1, sa_column=Column("column_number", Integer, nullable=False, default=1)
    )
    row_number: int = Field(
        default=1, sa_column=Column("row_number", Integer, nullable=False, default=1)
    )
    owner_id: Optional[str] = Field(
        default=None, sa_column=Column("owner_id", String, ForeignKey("student.id"))
    )
    purchase_price: Decimal = Field(
        default=Decimal("0"), sa_column=Column("purchase_price", MONEY, nullable=False, default=0)
    )
    purchase_date: Optional[datetime] = Field(default=None, sa_column=Column("purchase_date", DateTime))
    current_price: Decimal = Field(sa_column=Column("current_price", MONEY, nullable=False))
    version: int = Field(default=0, sa_column=Column("version", Integer, nullable=False, default=0))
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column("updated_at", DateTime, nullable=False),
    )

    __table_args__ = (
        UniqueConstraint("teacher_id", "seat_number", name="seat_teacher_number_uniq"),
    )

    @property
    def is_available(self) -> bool:
        return self.owner_id is None
