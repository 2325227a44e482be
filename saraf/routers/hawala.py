"""Hawala router.

Authentication happens upstream; this service trusts the ``X-Actor-Id``
header set by the auth gateway. Status updates and listings require it,
creation falls back to ``anonymous``.
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from saraf.models import (
    HawalaCreateIn,
    HawalaCreateOut,
    HawalaListOut,
    HawalaStats,
    NotificationRecord,
    StatusUpdateIn,
    TrackingOut,
    Transaction,
)
from saraf.services.hawala.lifecycle import HawalaLifecycle

router = APIRouter(prefix="/hawala", tags=["hawala"])

ANONYMOUS_ACTOR = "anonymous"


def get_lifecycle(request: Request) -> HawalaLifecycle:
    return request.app.state.services.lifecycle


def optional_actor(x_actor_id: Optional[str] = Header(None)) -> str:
    return (x_actor_id or "").strip() or ANONYMOUS_ACTOR


def require_actor(x_actor_id: Optional[str] = Header(None)) -> str:
    actor = (x_actor_id or "").strip()
    if not actor:
        raise HTTPException(status_code=401, detail="authorized actor required")
    return actor


@router.post(
    "",
    response_model=HawalaCreateOut,
    status_code=201,
    summary="Create a hawala transfer",
)
def create_hawala(
    payload: HawalaCreateIn,
    actor: str = Depends(optional_actor),
    lifecycle: HawalaLifecycle = Depends(get_lifecycle),
):
    txn = lifecycle.create(payload, actor_id=actor)
    return HawalaCreateOut(
        reference_code=txn.reference_code,
        transaction_id=txn.id,
        status=txn.status,
        from_amount=txn.from_amount,
        to_amount=txn.to_amount,
    )


@router.get("/stats", response_model=HawalaStats, summary="Counts per status")
def hawala_stats(lifecycle: HawalaLifecycle = Depends(get_lifecycle)):
    return lifecycle.stats()


@router.get(
    "/track/{code}",
    response_model=TrackingOut,
    summary="Track a hawala by reference code",
)
def track_hawala(code: str, lifecycle: HawalaLifecycle = Depends(get_lifecycle)):
    return lifecycle.track(code)


@router.post(
    "/status",
    response_model=Transaction,
    summary="Move a hawala to a new status",
)
def update_status(
    payload: StatusUpdateIn,
    actor: str = Depends(require_actor),
    lifecycle: HawalaLifecycle = Depends(get_lifecycle),
):
    return lifecycle.transition(
        payload.transaction_id, payload.status, actor_id=actor, notes=payload.notes
    )


@router.get("", response_model=HawalaListOut, summary="Hawalas created by the caller")
def list_hawalas(
    actor: str = Depends(require_actor),
    lifecycle: HawalaLifecycle = Depends(get_lifecycle),
):
    return lifecycle.list_for(actor)


@router.get(
    "/{transaction_id}/notifications",
    response_model=List[NotificationRecord],
    summary="Notification deliveries for a hawala",
    dependencies=[Depends(require_actor)],
)
def hawala_notifications(
    transaction_id: str,
    lifecycle: HawalaLifecycle = Depends(get_lifecycle),
):
    return lifecycle.notifications(transaction_id)
