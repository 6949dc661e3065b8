from datetime import datetime
from typing import Optional

from fastapi import Depends, Query

from productify.api.router import create_router
from productify.api.dependencies.auth import get_current_user
from productify.api.dependencies.services import get_ledger_service
from productify.db.models.user import User
from productify.schemas.transaction import (
	BalanceRead,
	TransactionListInput,
	TransactionPage,
	TransactionStatus,
	TransactionType,
)
from productify.services.ledger_services import LedgerService


router = create_router(name="credits")


@router.get("/balance", response_model=BalanceRead)
def get_balance(
	current_user: User = Depends(get_current_user),
	ledger: LedgerService = Depends(get_ledger_service),
):
	return BalanceRead(user_id=current_user.id, balance=ledger.get_balance(current_user.id))


@router.get("/history", response_model=TransactionPage)
def get_history(
	skip: int = Query(0, ge=0),
	limit: int = Query(50, ge=1, le=200),
	type_filter: Optional[TransactionType] = Query(None, alias="type"),
	status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
	since: Optional[datetime] = Query(None),
	current_user: User = Depends(get_current_user),
	ledger: LedgerService = Depends(get_ledger_service),
):
	params = TransactionListInput(skip=skip, limit=limit, type=type_filter, status=status_filter, since=since)
	return ledger.list_transactions(current_user.id, params)
