"""Permission delegation endpoints."""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, status

from app.api.v1.deps import get_current_user, get_delegation_ledger, get_store, require_permission
from app.core.exceptions import UserNotFoundError
from app.models import User
from app.schemas.delegation import (
    DelegationCreate,
    DelegationListResponse,
    DelegationResponse,
    EmergencyElevationCreate,
)
from app.services.delegation import DelegationLedger
from app.services.store import RecordStore

router = APIRouter()


def _load_user(store: RecordStore, user_id: int) -> User:
    user = store.get_user(user_id)
    if user is None:
        raise UserNotFoundError(f"User {user_id} not found")
    return user


@router.get("", response_model=DelegationListResponse)
def list_delegations(
    user: Annotated[User, Depends(get_current_user)],
    ledger: Annotated[DelegationLedger, Depends(get_delegation_ledger)],
) -> DelegationListResponse:
    """Active delegations the caller granted and received."""
    return DelegationListResponse(
        granted=[DelegationResponse.model_validate(d) for d in ledger.active_for_grantor(user)],
        received=[DelegationResponse.model_validate(d) for d in ledger.active_for_grantee(user)],
    )


@router.post("", response_model=DelegationResponse, status_code=status.HTTP_201_CREATED)
def create_delegation(
    body: DelegationCreate,
    user: Annotated[User, Depends(require_permission("delegation:create"))],
    store: Annotated[RecordStore, Depends(get_store)],
    ledger: Annotated[DelegationLedger, Depends(get_delegation_ledger)],
) -> DelegationResponse:
    """Delegate a subset of the caller's own permissions to a lower-ranked user."""
    grantee = _load_user(store, body.to_user_id)
    delegation = ledger.delegate(
        user,
        grantee,
        body.permissions,
        timedelta(minutes=body.ttl_minutes),
        delegation_type=body.delegation_type,
        reason=body.reason,
    )
    return DelegationResponse.model_validate(delegation)


@router.post("/emergency", response_model=DelegationResponse, status_code=status.HTTP_201_CREATED)
def create_emergency_elevation(
    body: EmergencyElevationCreate,
    user: Annotated[User, Depends(get_current_user)],
    store: Annotated[RecordStore, Depends(get_store)],
    ledger: Annotated[DelegationLedger, Depends(get_delegation_ledger)],
) -> DelegationResponse:
    """Temporary elevation for incidents. Requires system:elevate; always audited."""
    target = _load_user(store, body.target_user_id)
    ttl = timedelta(minutes=body.ttl_minutes) if body.ttl_minutes is not None else None
    delegation = ledger.emergency_elevation(user, target, body.permissions, body.reason, ttl=ttl)
    return DelegationResponse.model_validate(delegation)


@router.delete("/{delegation_id}", response_model=DelegationResponse)
def revoke_delegation(
    delegation_id: int,
    user: Annotated[User, Depends(get_current_user)],
    ledger: Annotated[DelegationLedger, Depends(get_delegation_ledger)],
) -> DelegationResponse:
    """Revoke a delegation (grantor, or anyone outranking the grantor)."""
    return DelegationResponse.model_validate(ledger.revoke(delegation_id, user))
