from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


USERS = "users"
TRANSACTIONS = "transactions"
REQUESTS = "requests"
INVESTMENTS = "investments"
DICE_ROUNDS = "dice_rounds"
DICE_BETS = "dice_bets"
DICE_ROUND_LOCKS = "dice_round_locks"
ULTRA_MANUAL_BETS = "ultra_manual_bets"
WINNERS = "winners"
SETTINGS = "settings"

GLOBAL_SETTINGS_ID = "global"
OPEN_ROUND_LOCK_ID = "open"
NOT_SET = "Not set"
DICE_NUMBERS = (1, 2, 3, 4, 5, 6)


class BalanceField(str, Enum):
    POINTS = "points"
    CASH = "cash"


class TransactionType(str, Enum):
    POINT_TRANSFER_OUT = "point_transfer_out"
    POINT_TRANSFER_IN = "point_transfer_in"
    CASH_TRANSFER_OUT = "cash_transfer_out"
    CASH_TRANSFER_IN = "cash_transfer_in"
    REFERRAL_BONUS_LEVEL_1 = "referral_bonus_level_1"
    REFERRAL_BONUS_LEVEL_2 = "referral_bonus_level_2"
    REFERRAL_BONUS_LEVEL_3 = "referral_bonus_level_3"
    REFERRAL_BONUS_LEVEL_4 = "referral_bonus_level_4"
    REFERRAL_BONUS_LEVEL_5 = "referral_bonus_level_5"
    INVESTMENT_CREATED = "investment_created"
    INVESTMENT_APPROVED = "investment_approved"
    INVESTMENT_DECLINED = "investment_declined"
    INVESTMENT_COMPLETED = "investment_completed"
    DICE_BET = "dice_bet"
    DICE_WIN = "dice_win"
    DICE_BET_REFUND = "dice_bet_refund"
    ULTRA_MANUAL_BET = "ultra_manual_bet"
    ULTRA_MANUAL_WIN = "ultra_manual_win"
    ULTRA_MANUAL_CANCELLED = "ultra_manual_cancelled"
    WITHDRAWAL_REQUESTED = "withdrawal_requested"
    WITHDRAWAL_APPROVED = "withdrawal_approved"
    WITHDRAWAL_DECLINED = "withdrawal_declined"
    LOAN_APPROVED = "loan_approved"
    ADMIN_POINTS_UPDATE = "admin_points_update"
    ADMIN_CASH_UPDATE = "admin_cash_update"
    USER_DELETED = "user_deleted"

    @classmethod
    def referral_bonus(cls, level: int) -> "TransactionType":
        return cls(f"referral_bonus_level_{level}")

    @classmethod
    def admin_update(cls, field: BalanceField) -> "TransactionType":
        return cls(f"admin_{field.value}_update")


class RequestType(str, Enum):
    VIP_UPGRADE = "vip_upgrade"
    POINT_TRANSFER = "point_transfer"
    WITHDRAWAL = "withdrawal"
    LOAN = "loan"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


class InvestmentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    DECLINED = "declined"


class RoundStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class BetStatus(str, Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    CANCELLED = "cancelled"


class DiceColor(str, Enum):
    NONE = "none"
    WHITE = "white"
    RED = "red"
    GREEN = "green"


# Fields each collection accepts in a partial update. Anything else is a bug
# in the caller, not something to persist.
MUTABLE_FIELDS: dict[str, frozenset] = {
    USERS: frozenset({
        "points", "cash", "referrals", "approved", "disabled", "vip_level",
    }),
    REQUESTS: frozenset({"status", "processed_at", "decline_reason", "fee"}),
    INVESTMENTS: frozenset({
        "status", "interest_rate", "release_date", "admin_notes",
        "approved_at", "completed_at", "declined_at",
    }),
    DICE_ROUNDS: frozenset({"status", "number_colors", "closed_at", "cancelled"}),
    DICE_BETS: frozenset({
        "status", "result_color", "payout", "payout_type", "resolved_at",
    }),
    DICE_ROUND_LOCKS: frozenset(),
    ULTRA_MANUAL_BETS: frozenset({"status", "win_amount", "processed_at"}),
    SETTINGS: frozenset({"allow_direct_transfers", "auto_approve_users"}),
    TRANSACTIONS: frozenset(),
    WINNERS: frozenset(),
}


class BalanceSnapshot(BaseModel):
    points: int
    cash: int


class Account(BaseModel):
    id: UUID
    username: str
    points: int = 0
    cash: int = 0
    referral_code: str
    referral_code_friend: str = NOT_SET
    referrals: list[UUID] = Field(default_factory=list)
    approved: bool = False
    disabled: bool = False
    vip_level: int = 0
    created_at: datetime
    version: int = 0

    model_config = ConfigDict(from_attributes=True)

    def balance(self, field: BalanceField) -> int:
        return getattr(self, field.value)

    def snapshot(self) -> BalanceSnapshot:
        return BalanceSnapshot(points=self.points, cash=self.cash)

    def has_referrer(self) -> bool:
        return bool(self.referral_code_friend) and self.referral_code_friend != NOT_SET


class Transaction(BaseModel):
    id: UUID
    user_id: UUID
    username: str
    amount: int = 0
    type: TransactionType
    description: str
    timestamp: datetime
    balance_after: Optional[BalanceSnapshot] = None
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class ApprovalRequest(BaseModel):
    id: UUID
    type: RequestType
    user_id: UUID
    username: str
    status: RequestStatus = RequestStatus.PENDING
    amount: Optional[int] = None
    recipient_id: Optional[UUID] = None
    recipient_username: Optional[str] = None
    current_level: Optional[int] = None
    target_level: Optional[int] = None
    direct_transfer: bool = False
    fee: Optional[int] = None
    decline_reason: Optional[str] = None
    timestamp: datetime
    processed_at: Optional[datetime] = None
    version: int = 0

    model_config = ConfigDict(from_attributes=True)

    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING


class Investment(BaseModel):
    id: UUID
    user_id: UUID
    username: str
    amount: int
    status: InvestmentStatus = InvestmentStatus.PENDING
    interest_rate: Decimal = Decimal("0")
    release_date: Optional[datetime] = None
    admin_notes: Optional[str] = None
    created_at: datetime
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    version: int = 0

    model_config = ConfigDict(from_attributes=True)

    def can_approve(self) -> bool:
        return self.status == InvestmentStatus.PENDING

    def can_decline(self) -> bool:
        return self.status == InvestmentStatus.PENDING

    def can_complete(self) -> bool:
        return self.status == InvestmentStatus.APPROVED


class DiceRound(BaseModel):
    id: UUID
    status: RoundStatus = RoundStatus.OPEN
    number_colors: dict[int, DiceColor] = Field(
        default_factory=lambda: {n: DiceColor.NONE for n in DICE_NUMBERS}
    )
    cancelled: bool = False
    created_at: datetime
    closed_at: Optional[datetime] = None
    version: int = 0

    model_config = ConfigDict(from_attributes=True)


class DiceBet(BaseModel):
    id: UUID
    round_id: UUID
    user_id: UUID
    username: str
    chosen_number: int
    amount: int
    status: BetStatus = BetStatus.PENDING
    result_color: Optional[DiceColor] = None
    payout: int = 0
    payout_type: Optional[BalanceField] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None
    version: int = 0

    model_config = ConfigDict(from_attributes=True)


class UltraManualBet(BaseModel):
    id: UUID
    user_id: UUID
    username: str
    amount: int
    note: str
    status: BetStatus = BetStatus.PENDING
    win_amount: Optional[int] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    version: int = 0

    model_config = ConfigDict(from_attributes=True)


class Winner(BaseModel):
    username: str
    amount: int
    game: str
    timestamp: datetime


class GlobalSettings(BaseModel):
    allow_direct_transfers: bool = False
    auto_approve_users: bool = False
    version: int = 0


# Request bodies

class RegisterAccountRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    referral_code_friend: Optional[str] = Field(default=None, description="Referral code of the inviting account")

    model_config = ConfigDict(json_schema_extra={
        "example": {"username": "bob", "referral_code_friend": "FBT100"}
    })


class CreateTransferRequest(BaseModel):
    sender_id: UUID
    recipient: str = Field(..., description="Username or FBT referral code")
    amount: int
    direct: bool = False


class AmountRequest(BaseModel):
    user_id: UUID
    amount: int


class UpgradeRequest(BaseModel):
    user_id: UUID
    target_level: int


class DeclineRequest(BaseModel):
    reason: Optional[str] = None


class WithdrawalApproval(BaseModel):
    fee: int = 0


class SetBalanceRequest(BaseModel):
    field: BalanceField
    value: int


class SetDisabledRequest(BaseModel):
    disabled: bool


class ResolveRoundRequest(BaseModel):
    number_colors: dict[int, DiceColor]


class PlaceDiceBetRequest(BaseModel):
    user_id: UUID
    chosen_number: int
    amount: int


class PlaceUltraManualBetRequest(BaseModel):
    user_id: UUID
    amount: int
    note: str


class MarkWonRequest(BaseModel):
    win_amount: int


class ApproveInvestmentRequest(BaseModel):
    interest_rate: Decimal
    release_date: datetime
    admin_notes: Optional[str] = None


class UpdateSettingsRequest(BaseModel):
    allow_direct_transfers: Optional[bool] = None
    auto_approve_users: Optional[bool] = None


# Responses

class TransferResponse(BaseModel):
    request: Optional[ApprovalRequest] = None
    entries: list[Transaction] = Field(default_factory=list)
    message: str


class RequestDecision(BaseModel):
    request: ApprovalRequest
    entries: list[Transaction] = Field(default_factory=list)
    message: str


class ReferralWalkResult(BaseModel):
    credited: list[UUID] = Field(default_factory=list)
    entries: list[Transaction] = Field(default_factory=list)
    stopped_by_cycle: bool = False


class AccountApproval(BaseModel):
    account: Account
    referral: ReferralWalkResult


class RoundSettlement(BaseModel):
    round: DiceRound
    bets: list[DiceBet]
    points_credited: int = 0
    cash_credited: int = 0


class InvestmentResponse(BaseModel):
    investment: Investment
    ledger_entry: Optional[Transaction] = None
    message: str


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[Transaction]
    total_count: int
    balance: BalanceSnapshot
