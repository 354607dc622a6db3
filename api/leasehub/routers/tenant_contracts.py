from typing import Optional
from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlmodel import Session
from ..auth import AccessContext, require_tenant
from ..db import get_session
from ..identity import IdentityImage, IdentityServices, get_identity_services, verify_identity
from ..models import IdentityStatus
from ..notifications import NotificationEmitter, get_emitter
from ..renewal import request_extend
from ..schemas import ExtendRequest, SignatureSubmit, TenantDataUpdate
from ..workflow import (
    list_contracts,
    load_contract,
    mark_seen,
    serialize_contract,
    sign_by_tenant,
    update_my_data,
)

router = APIRouter()


@router.get("")
def my_contracts(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_tenant),
):
    return list_contracts(session, ctx, status=status, page=page, limit=limit)


@router.get("/{contract_id}")
def my_contract(
    contract_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_tenant),
):
    contract = mark_seen(session, load_contract(session, contract_id, ctx))
    return serialize_contract(contract)


@router.patch("/{contract_id}")
def update_my_contract(
    contract_id: int,
    data: TenantDataUpdate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_tenant),
):
    contract = load_contract(session, contract_id, ctx)
    contract = update_my_data(
        session,
        contract,
        ctx,
        party_b=data.party_b,
        bikes=data.bikes,
        roommates=data.roommates,
        expected_version=data.version,
    )
    return {"message": "Details saved", "contract": serialize_contract(contract)}


@router.post("/{contract_id}/identity")
def submit_identity(
    contract_id: int,
    cccd_front: Optional[UploadFile] = File(None, alias="cccdFront"),
    cccd_back: Optional[UploadFile] = File(None, alias="cccdBack"),
    selfie: Optional[UploadFile] = File(None),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_tenant),
    services: IdentityServices = Depends(get_identity_services),
    emitter: NotificationEmitter = Depends(get_emitter),
):
    contract = load_contract(session, contract_id, ctx)
    uploads = {"cccdFront": cccd_front, "cccdBack": cccd_back, "selfie": selfie}
    images = {
        name: IdentityImage.from_upload(upload, services.max_bytes) if upload else None
        for name, upload in uploads.items()
    }
    contract = verify_identity(session, contract, ctx, images, services, emitter)
    verification = contract.identity_verification
    if verification["status"] == IdentityStatus.VERIFIED.value:
        message = "Identity verified"
    else:
        message = f"Identity verification failed: {verification['rejectedReason']}"
    return {"message": message, "identityVerification": verification}


@router.post("/{contract_id}/sign")
def tenant_sign(
    contract_id: int,
    data: SignatureSubmit,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_tenant),
    emitter: NotificationEmitter = Depends(get_emitter),
):
    contract = load_contract(session, contract_id, ctx)
    contract = sign_by_tenant(session, contract, ctx, data.signature_url, emitter, expected_version=data.version)
    return {"message": "Contract signed", "status": contract.status}


@router.post("/{contract_id}/extend")
def extend_contract(
    contract_id: int,
    data: ExtendRequest,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_tenant),
    emitter: NotificationEmitter = Depends(get_emitter),
):
    contract = load_contract(session, contract_id, ctx)
    contract = request_extend(session, contract, ctx, data.months, data.note, emitter)
    return {"message": "Renewal request sent", "renewalRequest": contract.renewal_request}
