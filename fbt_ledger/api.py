import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .errors import (
    AccountDisabledError,
    ConflictError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    LedgerServiceError,
    NotFoundError,
    ValidationError,
)
from .models import (
    Account,
    AccountApproval,
    AmountRequest,
    ApprovalRequest,
    ApproveInvestmentRequest,
    BetStatus,
    CreateTransferRequest,
    DeclineRequest,
    DiceBet,
    DiceRound,
    GlobalSettings,
    Investment,
    InvestmentResponse,
    InvestmentStatus,
    LedgerHistoryResponse,
    MarkWonRequest,
    PlaceDiceBetRequest,
    PlaceUltraManualBetRequest,
    RegisterAccountRequest,
    RequestDecision,
    RequestStatus,
    RequestType,
    ResolveRoundRequest,
    RoundSettlement,
    SetBalanceRequest,
    SetDisabledRequest,
    Transaction,
    TransferResponse,
    UltraManualBet,
    UpdateSettingsRequest,
    UpgradeRequest,
    WithdrawalApproval,
)
from .service import LedgerService

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_TITLE,
    description="Points and cash ledger with referral bonuses, transfers, dice settlement and investments",
    version=settings.APP_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LedgerService(settings=settings)


def get_service() -> LedgerService:
    return ledger_service


# Most specific first; subclasses share their parent's status.
ERROR_STATUS = (
    (AccountDisabledError, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
)


def status_for(exc: LedgerServiceError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(LedgerServiceError)
async def ledger_error_handler(request: Request, exc: LedgerServiceError):
    status_code = status_for(exc)
    if isinstance(exc, ConflictError):
        logger.warning("Conflict on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": type(exc).__name__},
    )


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "fbt-ledger"}


@app.get("/settings", response_model=GlobalSettings, tags=["System"])
def get_global_settings(service: LedgerService = Depends(get_service)) -> GlobalSettings:
    return service.registry.refresh()


@app.patch("/settings", response_model=GlobalSettings, tags=["System"])
def update_global_settings(
    request: UpdateSettingsRequest,
    service: LedgerService = Depends(get_service),
) -> GlobalSettings:
    return service.registry.update(
        allow_direct_transfers=request.allow_direct_transfers,
        auto_approve_users=request.auto_approve_users,
    )


# Accounts

@app.post("/accounts", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
def register_account(request: RegisterAccountRequest, service: LedgerService = Depends(get_service)) -> Account:
    return service.accounts.register(request.username, request.referral_code_friend)


@app.get("/accounts", response_model=list[Account], tags=["Accounts"])
def list_accounts(approved: Optional[bool] = None, service: LedgerService = Depends(get_service)):
    return service.accounts.list_accounts(approved)


@app.get("/accounts/by-code/{referral_code}", response_model=Account, tags=["Accounts"])
def get_account_by_code(referral_code: str, service: LedgerService = Depends(get_service)) -> Account:
    return service.accounts.find_by_referral_code(referral_code)


@app.get("/accounts/by-username/{username}", response_model=Account, tags=["Accounts"])
def get_account_by_username(username: str, service: LedgerService = Depends(get_service)) -> Account:
    return service.accounts.find_by_username(username)


@app.get("/accounts/{user_id}", response_model=Account, tags=["Accounts"])
def get_account(user_id: UUID, service: LedgerService = Depends(get_service)) -> Account:
    return service.accounts.get_account(user_id)


@app.post("/accounts/{user_id}/approve", response_model=AccountApproval, tags=["Accounts"])
def approve_account(user_id: UUID, service: LedgerService = Depends(get_service)) -> AccountApproval:
    return service.accounts.approve(user_id)


@app.put("/accounts/{user_id}/disabled", response_model=Account, tags=["Accounts"])
def set_account_disabled(
    user_id: UUID,
    request: SetDisabledRequest,
    service: LedgerService = Depends(get_service),
) -> Account:
    return service.accounts.set_disabled(user_id, request.disabled)


@app.post("/accounts/{user_id}/reset-vip", response_model=Account, tags=["Accounts"])
def reset_account_vip(user_id: UUID, service: LedgerService = Depends(get_service)) -> Account:
    return service.accounts.reset_vip(user_id)


@app.put("/accounts/{user_id}/balance", response_model=Optional[Transaction], tags=["Accounts"])
def set_account_balance(
    user_id: UUID,
    request: SetBalanceRequest,
    service: LedgerService = Depends(get_service),
):
    return service.accounts.set_balance(user_id, request.field, request.value)


@app.delete("/accounts/{user_id}", response_model=Transaction, tags=["Accounts"])
def delete_account(user_id: UUID, service: LedgerService = Depends(get_service)) -> Transaction:
    return service.accounts.delete(user_id)


@app.get("/accounts/{user_id}/ledger", response_model=LedgerHistoryResponse, tags=["Accounts"])
def get_account_ledger(
    user_id: UUID,
    limit: int = 50,
    offset: int = 0,
    service: LedgerService = Depends(get_service),
) -> LedgerHistoryResponse:
    return service.get_ledger_history(user_id, limit, offset)


# Transfers and requests

@app.post("/transfers", response_model=TransferResponse, status_code=status.HTTP_201_CREATED, tags=["Transfers"])
def create_transfer(request: CreateTransferRequest, service: LedgerService = Depends(get_service)) -> TransferResponse:
    return service.transfers.request_transfer(
        request.sender_id, request.recipient, request.amount, request.direct,
    )


@app.post("/transfers/{request_id}/approve", response_model=RequestDecision, tags=["Transfers"])
def approve_transfer(request_id: UUID, service: LedgerService = Depends(get_service)) -> RequestDecision:
    return service.transfers.approve_transfer(request_id)


@app.post("/transfers/{request_id}/decline", response_model=RequestDecision, tags=["Transfers"])
def decline_transfer(
    request_id: UUID,
    request: DeclineRequest,
    service: LedgerService = Depends(get_service),
) -> RequestDecision:
    return service.transfers.decline_transfer(request_id, request.reason)


@app.get("/requests", response_model=list[ApprovalRequest], tags=["Requests"])
def list_requests(
    type: Optional[RequestType] = None,
    status: Optional[RequestStatus] = None,
    user_id: Optional[UUID] = None,
    service: LedgerService = Depends(get_service),
):
    return service.workflow.list_requests(type, status, user_id)


@app.post("/withdrawals", response_model=RequestDecision, status_code=status.HTTP_201_CREATED, tags=["Requests"])
def request_withdrawal(request: AmountRequest, service: LedgerService = Depends(get_service)) -> RequestDecision:
    return service.requests.request_withdrawal(request.user_id, request.amount)


@app.post("/withdrawals/{request_id}/approve", response_model=RequestDecision, tags=["Requests"])
def approve_withdrawal(
    request_id: UUID,
    request: WithdrawalApproval,
    service: LedgerService = Depends(get_service),
) -> RequestDecision:
    return service.requests.approve_withdrawal(request_id, request.fee)


@app.post("/withdrawals/{request_id}/decline", response_model=RequestDecision, tags=["Requests"])
def decline_withdrawal(
    request_id: UUID,
    request: DeclineRequest,
    service: LedgerService = Depends(get_service),
) -> RequestDecision:
    return service.requests.decline_withdrawal(request_id, request.reason)


@app.post("/loans", response_model=RequestDecision, status_code=status.HTTP_201_CREATED, tags=["Requests"])
def request_loan(request: AmountRequest, service: LedgerService = Depends(get_service)) -> RequestDecision:
    return service.requests.request_loan(request.user_id, request.amount)


@app.post("/loans/{request_id}/approve", response_model=RequestDecision, tags=["Requests"])
def approve_loan(request_id: UUID, service: LedgerService = Depends(get_service)) -> RequestDecision:
    return service.requests.approve_loan(request_id)


@app.post("/loans/{request_id}/decline", response_model=RequestDecision, tags=["Requests"])
def decline_loan(
    request_id: UUID,
    request: DeclineRequest,
    service: LedgerService = Depends(get_service),
) -> RequestDecision:
    return service.requests.decline_loan(request_id, request.reason)


@app.post("/upgrades", response_model=RequestDecision, status_code=status.HTTP_201_CREATED, tags=["Requests"])
def request_upgrade(request: UpgradeRequest, service: LedgerService = Depends(get_service)) -> RequestDecision:
    return service.requests.request_upgrade(request.user_id, request.target_level)


@app.post("/upgrades/{request_id}/approve", response_model=RequestDecision, tags=["Requests"])
def approve_upgrade(request_id: UUID, service: LedgerService = Depends(get_service)) -> RequestDecision:
    return service.requests.approve_upgrade(request_id)


@app.post("/upgrades/{request_id}/decline", response_model=RequestDecision, tags=["Requests"])
def decline_upgrade(
    request_id: UUID,
    request: DeclineRequest,
    service: LedgerService = Depends(get_service),
) -> RequestDecision:
    return service.requests.decline_upgrade(request_id, request.reason)


# Dice

@app.post("/dice/rounds", response_model=DiceRound, status_code=status.HTTP_201_CREATED, tags=["Dice"])
def create_round(service: LedgerService = Depends(get_service)) -> DiceRound:
    return service.dice.create_round()


@app.get("/dice/rounds", response_model=list[DiceRound], tags=["Dice"])
def list_rounds(limit: int = 10, service: LedgerService = Depends(get_service)):
    return service.dice.list_rounds(limit)


@app.get("/dice/rounds/current", response_model=Optional[DiceRound], tags=["Dice"])
def get_current_round(service: LedgerService = Depends(get_service)):
    return service.dice.current_round()


@app.get("/dice/rounds/{round_id}", response_model=DiceRound, tags=["Dice"])
def get_round(round_id: UUID, service: LedgerService = Depends(get_service)) -> DiceRound:
    return service.dice.get_round(round_id)


@app.post("/dice/rounds/{round_id}/bets", response_model=DiceBet, status_code=status.HTTP_201_CREATED, tags=["Dice"])
def place_dice_bet(
    round_id: UUID,
    request: PlaceDiceBetRequest,
    service: LedgerService = Depends(get_service),
) -> DiceBet:
    return service.dice.place_bet(request.user_id, round_id, request.chosen_number, request.amount)


@app.get("/dice/rounds/{round_id}/bets", response_model=list[DiceBet], tags=["Dice"])
def list_dice_bets(
    round_id: UUID,
    user_id: Optional[UUID] = None,
    status: Optional[BetStatus] = None,
    service: LedgerService = Depends(get_service),
):
    return service.dice.list_bets(round_id, user_id, status)


@app.post("/dice/rounds/{round_id}/resolve", response_model=RoundSettlement, tags=["Dice"])
def resolve_round(
    round_id: UUID,
    request: ResolveRoundRequest,
    service: LedgerService = Depends(get_service),
) -> RoundSettlement:
    return service.dice.resolve_round(round_id, request.number_colors)


@app.post("/dice/rounds/{round_id}/cancel", response_model=RoundSettlement, tags=["Dice"])
def cancel_round(round_id: UUID, service: LedgerService = Depends(get_service)) -> RoundSettlement:
    return service.dice.cancel_round(round_id)


# Ultra manual

@app.post("/ultra-manual/bets", response_model=UltraManualBet, status_code=status.HTTP_201_CREATED, tags=["Ultra Manual"])
def place_ultra_manual_bet(
    request: PlaceUltraManualBetRequest,
    service: LedgerService = Depends(get_service),
) -> UltraManualBet:
    return service.ultra_manual.place_bet(request.user_id, request.amount, request.note)


@app.get("/ultra-manual/bets", response_model=list[UltraManualBet], tags=["Ultra Manual"])
def list_ultra_manual_bets(
    status: Optional[BetStatus] = None,
    user_id: Optional[UUID] = None,
    service: LedgerService = Depends(get_service),
):
    return service.ultra_manual.list_bets(status, user_id)


@app.post("/ultra-manual/bets/{bet_id}/won", response_model=UltraManualBet, tags=["Ultra Manual"])
def mark_ultra_manual_won(
    bet_id: UUID,
    request: MarkWonRequest,
    service: LedgerService = Depends(get_service),
) -> UltraManualBet:
    return service.ultra_manual.mark_won(bet_id, request.win_amount)


@app.post("/ultra-manual/bets/{bet_id}/lost", response_model=UltraManualBet, tags=["Ultra Manual"])
def mark_ultra_manual_lost(bet_id: UUID, service: LedgerService = Depends(get_service)) -> UltraManualBet:
    return service.ultra_manual.mark_lost(bet_id)


@app.post("/ultra-manual/bets/{bet_id}/cancel", response_model=UltraManualBet, tags=["Ultra Manual"])
def cancel_ultra_manual_bet(bet_id: UUID, service: LedgerService = Depends(get_service)) -> UltraManualBet:
    return service.ultra_manual.cancel_bet(bet_id)


# Investments

@app.post("/investments", response_model=InvestmentResponse, status_code=status.HTTP_201_CREATED, tags=["Investments"])
def create_investment(request: AmountRequest, service: LedgerService = Depends(get_service)) -> InvestmentResponse:
    return service.investments.create_investment(request.user_id, request.amount)


@app.get("/investments", response_model=list[Investment], tags=["Investments"])
def list_investments(
    status: Optional[InvestmentStatus] = None,
    user_id: Optional[UUID] = None,
    service: LedgerService = Depends(get_service),
):
    return service.investments.list_investments(status, user_id)


@app.get("/investments/{investment_id}", response_model=Investment, tags=["Investments"])
def get_investment(investment_id: UUID, service: LedgerService = Depends(get_service)) -> Investment:
    return service.investments.get_investment(investment_id)


@app.post("/investments/{investment_id}/approve", response_model=InvestmentResponse, tags=["Investments"])
def approve_investment(
    investment_id: UUID,
    request: ApproveInvestmentRequest,
    service: LedgerService = Depends(get_service),
) -> InvestmentResponse:
    return service.investments.approve_investment(
        investment_id, request.interest_rate, request.release_date, request.admin_notes,
    )


@app.post("/investments/{investment_id}/decline", response_model=InvestmentResponse, tags=["Investments"])
def decline_investment(
    investment_id: UUID,
    request: DeclineRequest,
    service: LedgerService = Depends(get_service),
) -> InvestmentResponse:
    return service.investments.decline_investment(investment_id, request.reason)


@app.post("/investments/{investment_id}/complete", response_model=InvestmentResponse, tags=["Investments"])
def complete_investment(investment_id: UUID, service: LedgerService = Depends(get_service)) -> InvestmentResponse:
    return service.investments.complete_investment(investment_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
