from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, List, Literal, Union, Annotated

from pydantic import BaseModel, Field


class TransactionType(str, Enum):
	PURCHASE = "purchase"
	JOB_DEBIT = "job_debit"
	JOB_REFUND = "job_refund"
	MANUAL_CREDIT = "manual_credit"
	MANUAL_DEBIT = "manual_debit"
	BONUS = "bonus"


class TransactionStatus(str, Enum):
	PENDING = "pending"
	COMPLETED = "completed"
	FAILED = "failed"
	CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
	STRIPE = "stripe"
	CREDIT_CARD = "credit_card"
	PIX = "pix"
	MANUAL = "manual"
	SYSTEM = "system"


CREDIT_TYPES = frozenset({
	TransactionType.PURCHASE,
	TransactionType.JOB_REFUND,
	TransactionType.MANUAL_CREDIT,
	TransactionType.BONUS,
})
DEBIT_TYPES = frozenset({TransactionType.JOB_DEBIT, TransactionType.MANUAL_DEBIT})


def signed_amount(transaction_type: TransactionType | str, amount: int) -> int:
	"""Balance effect of an entry: positive for credit types, negative for debit types."""
	return -amount if TransactionType(transaction_type) in DEBIT_TYPES else amount


# Metadata is a tagged union keyed by transaction type, so each type carries exactly its fields

class JobDebitMetadata(BaseModel):
	type: Literal["job_debit"] = "job_debit"
	job_id: str


class JobRefundMetadata(BaseModel):
	type: Literal["job_refund"] = "job_refund"
	job_id: str
	refund_reason: Optional[str] = None


class PurchaseMetadata(BaseModel):
	type: Literal["purchase"] = "purchase"
	order_id: str
	payment_intent_id: str
	payment_method: PaymentMethod = PaymentMethod.STRIPE


class ManualCreditMetadata(BaseModel):
	type: Literal["manual_credit"] = "manual_credit"
	admin_id: str
	admin_note: Optional[str] = None


class ManualDebitMetadata(BaseModel):
	type: Literal["manual_debit"] = "manual_debit"
	admin_id: str
	admin_note: Optional[str] = None


class BonusMetadata(BaseModel):
	type: Literal["bonus"] = "bonus"


TransactionMetadata = Annotated[
	Union[
		JobDebitMetadata,
		JobRefundMetadata,
		PurchaseMetadata,
		ManualCreditMetadata,
		ManualDebitMetadata,
		BonusMetadata,
	],
	Field(discriminator="type"),
]


class TransactionRead(BaseModel):
	id: int
	user_id: int
	type: TransactionType
	amount: int
	balance_before: int
	balance_after: int
	status: TransactionStatus
	description: str
	payment_method: PaymentMethod
	metadata: TransactionMetadata
	processed_at: Optional[datetime] = None
	created_at: datetime

	@classmethod
	def from_entry(cls, entry) -> "TransactionRead":
		"""Build the read model from a CreditTransaction row, folding its columns into typed metadata."""
		entry_type = TransactionType(entry.type)
		if entry_type == TransactionType.JOB_DEBIT:
			metadata = JobDebitMetadata(job_id=entry.job_id)
		elif entry_type == TransactionType.JOB_REFUND:
			metadata = JobRefundMetadata(job_id=entry.job_id, refund_reason=entry.refund_reason)
		elif entry_type == TransactionType.PURCHASE:
			metadata = PurchaseMetadata(
				order_id=entry.order_id,
				payment_intent_id=entry.payment_intent_id,
				payment_method=PaymentMethod(entry.payment_method),
			)
		elif entry_type == TransactionType.MANUAL_CREDIT:
			metadata = ManualCreditMetadata(admin_id=entry.admin_id, admin_note=entry.admin_note)
		elif entry_type == TransactionType.MANUAL_DEBIT:
			metadata = ManualDebitMetadata(admin_id=entry.admin_id, admin_note=entry.admin_note)
		else:
			metadata = BonusMetadata()
		return cls(
			id=entry.id,
			user_id=entry.user_id,
			type=entry_type,
			amount=entry.amount,
			balance_before=entry.balance_before,
			balance_after=entry.balance_after,
			status=TransactionStatus(entry.status),
			description=entry.description,
			payment_method=PaymentMethod(entry.payment_method),
			metadata=metadata,
			processed_at=entry.processed_at,
			created_at=entry.created_at,
		)


class TransactionListInput(BaseModel):
	skip: int = Field(default=0, ge=0)
	limit: int = Field(default=50, ge=1, le=200)
	type: Optional[TransactionType] = None
	status: Optional[TransactionStatus] = None
	since: Optional[datetime] = None


class TransactionPage(BaseModel):
	transactions: List[TransactionRead]
	total: int
	has_more: bool


class BalanceRead(BaseModel):
	user_id: int
	balance: int


class LedgerReconciliation(BaseModel):
	user_id: int
	cached_balance: int
	ledger_balance: int
	last_balance_after: Optional[int] = None

	@property
	def consistent(self) -> bool:
		if self.last_balance_after is not None and self.last_balance_after != self.ledger_balance:
			return False
		return self.cached_balance == self.ledger_balance
