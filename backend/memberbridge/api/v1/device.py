"""Device linking routes (TV pairing by short code)"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from memberbridge.api.deps import (
    client_ip,
    get_current_principal,
    get_optional_principal,
    get_rate_limiter,
)
from memberbridge.config import settings
from memberbridge.core.database import get_db
from memberbridge.core.exceptions import ValidationError
from memberbridge.core.security import TokenPayload
from memberbridge.metrics import DEVICE_CODES_CREATED, DEVICE_LINKS_CONFIRMED
from memberbridge.schemas.device import DeviceCodeRequest, DeviceCodeResponse, DeviceStatusResponse
from memberbridge.services.audit_service import audit_service
from memberbridge.services.device_link_service import device_link_service
from memberbridge.services.rate_limiter import RateLimiter
from memberbridge.services.user_service import user_service

router = APIRouter()


def _require_code(*candidates: Optional[str]) -> str:
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    raise ValidationError("Device code is required")


@router.post("/code", response_model=DeviceCodeResponse)
def create_device_code(
    request: Request,
    db: Session = Depends(get_db),
    principal: Optional[TokenPayload] = Depends(get_optional_principal),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Generate a pairing code for a device without a keyboard

    Creation is capped per hour, per user when an access token is presented
    and per client IP otherwise.
    """
    rate_key = f"user_{principal.user_id}" if principal else client_ip(request)
    limiter.enforce(
        f"device_code:{rate_key}",
        settings.DEVICE_CODE_RATE_LIMIT_PER_HOUR,
        3600,
        "Too many device codes requested. Please try again later.",
    )

    grant = device_link_service.create_code(db)
    DEVICE_CODES_CREATED.inc()
    return DeviceCodeResponse(device_code=grant.code, expires_in=grant.expires_in)


@router.post("/poll", response_model=DeviceStatusResponse, response_model_exclude_none=True)
def poll_device_code(
    body: Optional[DeviceCodeRequest] = None,
    code: Optional[str] = Query(default=None),
    device_code_query: Optional[str] = Query(default=None, alias="deviceCode"),
    db: Session = Depends(get_db),
):
    """
    Poll a code's activation status

    Unknown and expired codes both report ``activated: false``.
    """
    device_code = _require_code(body.device_code if body else None, code, device_code_query)
    status = device_link_service.poll(db, device_code)
    return DeviceStatusResponse(activated=status.activated, user_id=status.user_id)


@router.get("/poll", response_model=DeviceStatusResponse, response_model_exclude_none=True)
def poll_device_code_get(
    code: Optional[str] = Query(default=None),
    device_code_query: Optional[str] = Query(default=None, alias="deviceCode"),
    db: Session = Depends(get_db),
):
    """Poll via query string (?code=AB12CD34)"""
    device_code = _require_code(code, device_code_query)
    status = device_link_service.poll(db, device_code)
    return DeviceStatusResponse(activated=status.activated, user_id=status.user_id)


@router.post("/confirm", response_model=DeviceStatusResponse)
def confirm_device_code(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[DeviceCodeRequest] = None,
    code: Optional[str] = Query(default=None),
    principal: TokenPayload = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """
    Link a code to the authenticated user

    Confirming an already linked code returns the existing owner unchanged.
    """
    device_code = _require_code(body.device_code if body else None, code)

    user_service.ensure_user(
        db,
        user_id=principal.user_id,
        email=principal.email,
        has_active_membership=principal.has_active_membership,
    )
    status = device_link_service.confirm(db, device_code, principal.user_id)
    DEVICE_LINKS_CONFIRMED.inc()

    audit_service.dispatch(
        background_tasks,
        user_id=principal.user_id,
        action="device.confirm",
        target_type="device_code",
        target_id=device_code.upper(),
        ip_address=client_ip(request),
        metadata={"owner_id": status.user_id},
    )
    return DeviceStatusResponse(activated=True, user_id=status.user_id)
