"""Response schemas shared by every router."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ledger.models import Transaction


class TransactionOut(BaseModel):
    id: int
    type: str
    amount: float
    fee: float
    status: str
    description: str
    account_type: Optional[str] = None
    from_student_id: Optional[str] = None
    to_student_id: Optional[str] = None
    from_entity: Optional[str] = None
    to_entity: Optional[str] = None
    asset_id: Optional[int] = None
    quantity: Optional[float] = None
    price: Optional[float] = None
    created_at: datetime


def transaction_out(tx: Transaction) -> TransactionOut:
    return TransactionOut(
        id=tx.id,
        type=tx.type,
        amount=tx.amount,
        fee=tx.fee,
        status=tx.status,
        description=tx.description,
        account_type=tx.account_type,
        from_student_id=tx.from_student_id,
        to_student_id=tx.to_student_id,
        from_entity=tx.from_entity,
        to_entity=tx.to_entity,
        asset_id=tx.asset_id,
        quantity=tx.quantity,
        price=tx.price,
        created_at=tx.created_at,
    )
