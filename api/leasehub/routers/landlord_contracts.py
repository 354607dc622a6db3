from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session
from ..auth import AccessContext, require_landlord_side
from ..db import get_session
from ..notifications import NotificationEmitter, get_emitter
from ..renewal import respond_renewal
from ..schemas import (
    ContractEdit,
    ContractFromContact,
    RenewalAnswer,
    SignatureSubmit,
    TemplateUpsert,
    VersionOnly,
)
from ..templates import serialize_template, upsert_template
from ..workflow import (
    confirm_move_in,
    create_from_contact,
    edit_data,
    list_contracts,
    load_contract,
    send_to_tenant,
    serialize_contract,
    sign_by_landlord,
)

router = APIRouter()


@router.put("/templates/{building_id}")
def save_template(
    building_id: int,
    data: TemplateUpsert,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_landlord_side),
):
    descriptors = None
    if data.descriptors is not None:
        descriptors = [d.model_dump(by_alias=True) for d in data.descriptors]
    template = upsert_template(
        session,
        ctx,
        building_id,
        name=data.name,
        descriptors=descriptors,
        default_term_ids=data.default_term_ids,
        default_regulation_ids=data.default_regulation_ids,
        status=data.status,
    )
    return {"message": "Template saved", "template": serialize_template(template)}


@router.post("/contracts/from-contact")
def create_contract(
    data: ContractFromContact,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_landlord_side),
):
    contract = create_from_contact(session, ctx, data.contact_id)
    return {"message": "Contract ready", "contract": serialize_contract(contract)}


@router.get("/contracts")
def list_landlord_contracts(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_landlord_side),
):
    return list_contracts(session, ctx, status=status, page=page, limit=limit)


@router.get("/contracts/{contract_id}")
def get_contract(
    contract_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_landlord_side),
):
    return serialize_contract(load_contract(session, contract_id, ctx))


@router.put("/contracts/{contract_id}")
def update_contract(
    contract_id: int,
    data: ContractEdit,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_landlord_side),
):
    contract = load_contract(session, contract_id, ctx)
    contract = edit_data(
        session,
        contract,
        ctx,
        data.changes(),
        mark_ready=data.mark_ready,
        expected_version=data.version,
    )
    return {"message": "Contract updated", "contract": serialize_contract(contract)}


@router.post("/contracts/{contract_id}/sign-landlord")
def landlord_sign(
    contract_id: int,
    data: SignatureSubmit,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_landlord_side),
):
    contract = load_contract(session, contract_id, ctx)
    contract = sign_by_landlord(session, contract, ctx, data.signature_url, expected_version=data.version)
    return {"message": "Contract signed", "status": contract.status}


@router.post("/contracts/{contract_id}/send-to-tenant")
def send_contract(
    contract_id: int,
    data: Optional[VersionOnly] = None,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_landlord_side),
    emitter: NotificationEmitter = Depends(get_emitter),
):
    contract = load_contract(session, contract_id, ctx)
    contract = send_to_tenant(session, contract, ctx, emitter, expected_version=data.version if data else None)
    return {"message": "Contract sent to tenant", "status": contract.status}


@router.post("/contracts/{contract_id}/renewal")
def answer_renewal(
    contract_id: int,
    data: RenewalAnswer,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_landlord_side),
    emitter: NotificationEmitter = Depends(get_emitter),
):
    contract = load_contract(session, contract_id, ctx)
    contract = respond_renewal(session, contract, ctx, data.approve, data.note, emitter)
    message = "Renewal approved" if data.approve else "Renewal rejected"
    return {"message": message, "renewalRequest": contract.renewal_request}


@router.post("/contracts/{contract_id}/confirm-move-in")
def move_in(
    contract_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_landlord_side),
):
    contract = load_contract(session, contract_id, ctx)
    room = confirm_move_in(session, contract, ctx)
    return {
        "message": "Move-in confirmed",
        "roomStatus": room.status,
        "currentTenantIds": room.current_tenant_ids,
    }
