"""
Custom exception classes and error handlers
Provides consistent error responses across the application
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional


class CamlyException(HTTPException):
    """Base exception class for the rewards service"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class BadRequestException(CamlyException):
    """400 Bad Request"""

    def __init__(self, detail: str, error_code: str = "BAD_REQUEST"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedException(CamlyException):
    """401 Unauthorized"""

    def __init__(self, detail: str = "Unauthorized", error_code: str = "UNAUTHORIZED"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenException(CamlyException):
    """403 Forbidden"""

    def __init__(self, detail: str = "Forbidden", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )


class NotFoundException(CamlyException):
    """404 Not Found"""

    def __init__(self, detail: str = "Not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )


class ConflictException(CamlyException):
    """409 Conflict"""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )


class ValidationException(CamlyException):
    """422 Unprocessable Entity"""

    def __init__(self, detail: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class ServiceUnavailableException(CamlyException):
    """503 Service Unavailable"""

    def __init__(
        self,
        detail: str = "Service temporarily unavailable",
        error_code: str = "SERVICE_UNAVAILABLE"
    ):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code=error_code
        )


# Validation errors (user-correctable, nothing mutated)
class InsufficientBalanceException(BadRequestException):
    """Requested amount exceeds the relevant balance"""

    def __init__(self, requested: int, available: int):
        super().__init__(
            detail=f"Insufficient balance: requested {requested}, available {available}",
            error_code="INSUFFICIENT_BALANCE"
        )
        self.requested = requested
        self.available = available


class AmountBelowMinimumException(BadRequestException):
    """Amount is below the configured minimum"""

    def __init__(self, amount: int, minimum: int):
        super().__init__(
            detail=f"Amount {amount} is below the minimum of {minimum}",
            error_code="AMOUNT_BELOW_MINIMUM"
        )


class AlreadyClaimedTodayException(ConflictException):
    """Once-per-day reward already granted for this UTC day"""

    def __init__(self, detail: str = "Daily reward already claimed today"):
        super().__init__(detail=detail, error_code="ALREADY_CLAIMED_TODAY")


class MilestoneAlreadyClaimedException(ConflictException):
    """One-time milestone already paid"""

    def __init__(self, milestone: int):
        super().__init__(
            detail=f"Milestone {milestone} has already been claimed",
            error_code="MILESTONE_ALREADY_CLAIMED"
        )


class MilestoneNotReachedException(BadRequestException):
    """Play count has not crossed the milestone threshold"""

    def __init__(self, milestone: int, current: int):
        super().__init__(
            detail=f"Milestone {milestone} not reached yet ({current} plays)",
            error_code="MILESTONE_NOT_REACHED"
        )


class DailyLimitReachedException(BadRequestException):
    """Nothing left under today's cap"""

    def __init__(self, detail: str = "Daily limit reached, come back tomorrow"):
        super().__init__(detail=detail, error_code="DAILY_LIMIT_REACHED")


class InvalidEventDataException(ValidationException):
    """Reward event payload is malformed"""

    def __init__(self, detail: str):
        super().__init__(detail=detail, error_code="INVALID_EVENT_DATA")


class DuplicateRewardException(ConflictException):
    """One-time reward has already been granted"""

    def __init__(self, detail: str):
        super().__init__(detail=detail, error_code="DUPLICATE_REWARD")


class SelfReferralException(BadRequestException):
    """User tried to refer themselves"""

    def __init__(self):
        super().__init__(detail="Cannot refer yourself", error_code="SELF_REFERRAL")


class DuplicateReferralException(ConflictException):
    """Referred user already has a referral record"""

    def __init__(self):
        super().__init__(detail="User has already been referred", error_code="DUPLICATE_REFERRAL")


class InvalidReferralCodeException(BadRequestException):
    """Referral code validation failed"""

    def __init__(self, detail: str = "Invalid referral code"):
        super().__init__(detail=detail, error_code="INVALID_REFERRAL_CODE")


# Eligibility / fraud errors
class WalletNotEligibleException(ForbiddenException):
    """Wallet is blacklisted or bound to too many accounts"""

    def __init__(self, reason: str):
        super().__init__(detail=reason, error_code="WALLET_NOT_ELIGIBLE")


class WalletAlreadyBoundException(ConflictException):
    """Account already has a different wallet linked"""

    def __init__(self, detail: str = "A different wallet is already linked to this account"):
        super().__init__(detail=detail, error_code="WALLET_ALREADY_BOUND")


class IpNotEligibleException(ForbiddenException):
    """IP address is blacklisted or over the account limit"""

    def __init__(self, reason: str):
        super().__init__(detail=reason, error_code="IP_NOT_ELIGIBLE")


# External-system errors
class TransferRejectedException(BadRequestException):
    """Chain transfer was rejected; retrying needs user action"""

    def __init__(self, detail: str):
        super().__init__(detail=detail, error_code="TRANSFER_REJECTED")
        self.retryable = False


class ChainUnavailableException(ServiceUnavailableException):
    """Transient chain failure; the ledger was not touched so retrying is safe"""

    def __init__(self, detail: str = "Blockchain network unavailable, please retry"):
        super().__init__(detail=detail, error_code="CHAIN_UNAVAILABLE")
        self.retryable = True


# Settlement errors
class SettlementException(CamlyException):
    """Chain transfer confirmed but the ledger could not be updated"""

    def __init__(self, detail: str = "Settlement pending reconciliation", error_code: str = "SETTLEMENT_FAILED"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code=error_code
        )


async def camly_exception_handler(request: Request, exc: CamlyException) -> JSONResponse:
    """Render service exceptions with a stable error envelope"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.error_code,
                "message": exc.detail
            }
        },
        headers=exc.headers,
    )
