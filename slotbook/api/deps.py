from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from slotbook.core.config import settings
from slotbook.core.security import Principal, decode_token
from slotbook.db.session import SessionLocal
from slotbook.services.notifier import Notifier, connection_registry
from slotbook.services.orchestrator import ReservationOrchestrator
from slotbook.services.payment_gateway import PaymentGateway, get_payment_gateway
from slotbook.services.reconciliation import PaymentReconciliationService

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    """Resolve the caller from the bearer token issued by the identity provider."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    principal = decode_token(credentials.credentials)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def get_current_partner(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_partner:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Partner access required")
    return principal


@lru_cache
def get_notifier() -> Notifier:
    return Notifier(SessionLocal, connection_registry)


def get_orchestrator(gateway: PaymentGateway = Depends(get_payment_gateway)) -> ReservationOrchestrator:
    return ReservationOrchestrator(gateway, require_partner_approval=settings.REQUIRE_PARTNER_APPROVAL)


def get_reconciliation(
    gateway: PaymentGateway = Depends(get_payment_gateway),
    orchestrator: ReservationOrchestrator = Depends(get_orchestrator),
) -> PaymentReconciliationService:
    return PaymentReconciliationService(gateway, orchestrator)
