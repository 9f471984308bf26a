"""Referral API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError

from waitlist.api.dependencies import (
    get_accounts,
    get_credit_notifier,
    get_issuer,
    get_payment_handler,
    get_referral_service,
)
from waitlist.api.rate_limit import limiter
from waitlist.auth.accounts import AccountService
from waitlist.auth.middleware import require_auth, require_internal_token
from waitlist.auth.models import UserAccount
from waitlist.logging_config import get_logger
from waitlist.referral.errors import LedgerUnavailable
from waitlist.referral.issuer import Conflict, CreditIssuer, Issued
from waitlist.referral.notifications import CreditNotifier, notify_credit_issued
from waitlist.referral.payments import PaymentEventHandler
from waitlist.referral.service import ReferralService, referral_link

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])


# ==================== MODELS ====================


class ReferralCodeResponse(BaseModel):
    """Response with user's referral code."""
    code: str
    link: str


class RewardProgress(BaseModel):
    required_referrals: int
    current_batch: int
    progress_to_next_reward: float
    completed_batches: int
    average_subscription_value: float
    projected_reward_tier: str
    next_batch_average_value: float
    next_batch_projected_tier: str


class ReferralStatsResponse(BaseModel):
    """Response with referral statistics."""
    code: str
    link: str
    clicks: int
    conversions: int
    total_referrals: int
    paying_referrals: int
    waitlist_referrals: int
    potential_paying_users: int
    potential_revenue: float
    tier_breakdown: dict[str, int]
    rewards: RewardProgress


class ReferralCreditResponse(BaseModel):
    """A credit earned through referrals."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    referral_ids: list[int]
    issued_at: datetime
    expires_at: datetime
    used_at: datetime | None = None


class CreditStats(BaseModel):
    acknowledged: int
    paying: int
    uncredited_paying: int
    required: int
    progress: str
    next_credit_in: int


class CreditSummaryResponse(BaseModel):
    """Active credits and progress towards the next one."""
    credits: list[ReferralCreditResponse]
    stats: CreditStats


class CreditIssuedResponse(BaseModel):
    message: str
    credit: ReferralCreditResponse
    referrals_credited: int


class ValidateCodeRequest(BaseModel):
    """Request to validate a referral code."""
    code: str


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    referrer_name: str | None = None


class TrackClickRequest(BaseModel):
    """Request to track a referral link click."""
    code: str


class TrackPaymentRequest(BaseModel):
    """Payment source notification that a user started paying."""
    user_id: int = Field(alias="userId")
    subscription_tier: str | None = Field(default=None, alias="subscriptionTier")
    subscription_amount: float | None = Field(default=None, alias="subscriptionAmount", ge=0)


class TrackPaymentResponse(BaseModel):
    message: str
    referral_updated: bool = Field(serialization_alias="referralUpdated")
    credit_status: str | None = Field(default=None, serialization_alias="creditStatus")


class SignupLinkRequest(BaseModel):
    """Signup flow notification that an account was created with a code."""
    user_id: int = Field(alias="userId")
    referral_code: str = Field(alias="referralCode", min_length=1, max_length=20)


class SignupLinkResponse(BaseModel):
    linked: bool
    referrer_id: int | None = None


# ==================== ENDPOINTS ====================


@router.get("/code", response_model=ReferralCodeResponse)
async def get_referral_code(
    user: UserAccount = Depends(require_auth),
    service: ReferralService = Depends(get_referral_service),
):
    """Get current user's referral code.

    Creates a new code if user doesn't have one.
    """
    referral_code = service.get_or_create_code(user.id)

    return ReferralCodeResponse(
        code=referral_code.code,
        link=referral_link(referral_code.code),
    )


@router.get("/stats", response_model=ReferralStatsResponse)
async def get_referral_stats(
    user: UserAccount = Depends(require_auth),
    service: ReferralService = Depends(get_referral_service),
):
    """Get referral statistics for current user."""
    stats = service.get_referral_stats(user.id, user.user_type)
    return ReferralStatsResponse(**stats)


@router.get("/credits", response_model=CreditSummaryResponse)
async def get_referral_credits(
    user: UserAccount = Depends(require_auth),
    service: ReferralService = Depends(get_referral_service),
):
    """Get active credits and progress towards the next credit."""
    try:
        summary = service.get_credit_summary(user.id, user.user_type)
    except LedgerUnavailable:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch credits",
        )

    return CreditSummaryResponse(
        credits=[ReferralCreditResponse.model_validate(c) for c in summary["credits"]],
        stats=CreditStats(**summary["stats"]),
    )


@router.post("/credits", response_model=CreditIssuedResponse)
async def claim_referral_credit(
    user: UserAccount = Depends(require_auth),
    issuer: CreditIssuer = Depends(get_issuer),
    notifier: CreditNotifier = Depends(get_credit_notifier),
):
    """Check eligibility for the current user and issue a credit if earned.

    A lost race is reported as not eligible when the re-evaluation finds a
    shortfall, otherwise as an internal error the caller may retry.
    """
    try:
        outcome = issuer.issue_credit_if_eligible(user.id, user.user_type)
    except LedgerUnavailable:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    if isinstance(outcome, Issued):
        notify_credit_issued(notifier, user.id, outcome.credit)
        credit = ReferralCreditResponse.model_validate(outcome.credit)
        return CreditIssuedResponse(
            message="Credit created successfully",
            credit=credit,
            referrals_credited=len(credit.referral_ids),
        )

    if isinstance(outcome, Conflict):
        logger.warning("manual_credit_conflict", user_id=user.id, remaining_needed=outcome.remaining_needed)
        if outcome.remaining_needed == 0:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Internal server error",
            )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "message": "Not eligible for credit yet",
            "remaining_needed": outcome.remaining_needed,
        },
    )


@router.post("/validate", response_model=ValidateCodeResponse)
@limiter.limit("30/minute")
async def validate_referral_code(
    request: Request,
    body: ValidateCodeRequest,
    service: ReferralService = Depends(get_referral_service),
    accounts: AccountService = Depends(get_accounts),
):
    """Validate a referral code.

    Used during signup to check a code and personalize the page with the
    referrer's first name.
    """
    referral_code = service.validate_code(body.code)

    if not referral_code:
        return ValidateCodeResponse(valid=False)

    referrer = accounts.get_user(referral_code.user_id)
    referrer_name = referrer.name.split()[0] if referrer and referrer.name else None

    return ValidateCodeResponse(valid=True, referrer_name=referrer_name)


@router.post("/track-click")
@limiter.limit("60/minute")
async def track_referral_click(
    request: Request,
    body: TrackClickRequest,
    service: ReferralService = Depends(get_referral_service),
):
    """Track a click on a referral link.

    Called when someone visits /referral/CODE.
    """
    if not service.track_click(body.code):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid referral code",
        )

    return {"success": True}


@router.post(
    "/signup",
    response_model=SignupLinkResponse,
    dependencies=[Depends(require_internal_token)],
)
async def link_referral_signup(
    body: SignupLinkRequest,
    service: ReferralService = Depends(get_referral_service),
):
    """Record that a new account signed up with a referral code."""
    entry = service.link_signup(body.user_id, body.referral_code)

    if entry is None:
        return SignupLinkResponse(linked=False)

    return SignupLinkResponse(linked=True, referrer_id=entry.referrer_id)


@router.post(
    "/track-payment",
    response_model=TrackPaymentResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_internal_token)],
)
async def track_payment(
    body: TrackPaymentRequest,
    handler: PaymentEventHandler = Depends(get_payment_handler),
):
    """Record that a user became a paying subscriber.

    Called by the payment source; deliveries may repeat.
    """
    try:
        outcome = handler.on_user_became_paying(
            body.user_id,
            body.subscription_tier,
            body.subscription_amount,
        )
    except (LedgerUnavailable, SQLAlchemyError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment tracking temporarily unavailable",
        )

    return TrackPaymentResponse(
        message="Payment tracking updated successfully",
        referral_updated=outcome.referral_updated,
        credit_status=outcome.credit_outcome.status if outcome.credit_outcome else None,
    )
