"""Contract status machine.

Every operation follows the same order: load, check the caller's version,
guard the current status, run the business guards, then mutate and save in a
single compare-and-set write. Nothing is written when a guard fails.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import Session, col, select

from .audit import append_event
from .auth import AccessContext, can_act_on_contract, can_manage_building
from .errors import (
    IdentityNotVerified,
    InputError,
    NotFoundError,
    OccupancyExceeded,
    StateGuardError,
    VersionConflict,
)
from .models import (
    Account,
    Contact,
    Contract,
    ContractStatus,
    ContractTemplate,
    DEFAULT_TEMPLATE_FIELDS,
    IdentityStatus,
    Room,
)
from .normalize import is_empty
from .notifications import NotificationEmitter
from .utils import utcnow
from .validation import ensure_required_fields

logger = logging.getLogger(__name__)

S = ContractStatus

ALLOWED_STATUSES: Dict[str, frozenset] = {
    "edit_data": frozenset({S.DRAFT.value}),
    "sign_by_landlord": frozenset(s.value for s in S if s is not S.COMPLETED),
    "send_to_tenant": frozenset({S.READY_FOR_SIGN.value, S.SIGNED_BY_LANDLORD.value}),
    "update_my_data": frozenset({S.SENT_TO_TENANT.value}),
    "submit_identity": frozenset({S.SENT_TO_TENANT.value}),
    "sign_by_tenant": frozenset({S.SENT_TO_TENANT.value, S.SIGNED_BY_LANDLORD.value}),
    "request_extend": frozenset({S.COMPLETED.value}),
    "respond_renewal": frozenset({S.COMPLETED.value}),
    "confirm_move_in": frozenset({S.COMPLETED.value}),
}

OPERATION_LABELS = {
    "edit_data": "edit the contract",
    "sign_by_landlord": "sign as landlord",
    "send_to_tenant": "send the contract to the tenant",
    "update_my_data": "update tenant details",
    "submit_identity": "submit identity documents",
    "sign_by_tenant": "sign as tenant",
    "request_extend": "request a renewal",
    "respond_renewal": "answer a renewal request",
    "confirm_move_in": "confirm move-in",
}

# contractTerms keys that may change in any status
NON_STRUCTURAL_TERMS = frozenset({"no", "signPlace"})
IDENTITY_LOCKED_FIELDS = ("name", "dob", "idNumber", "address")


def guard_status(contract: Contract, operation: str) -> None:
    allowed = ALLOWED_STATUSES[operation]
    if contract.status not in allowed:
        raise StateGuardError(
            f"Cannot {OPERATION_LABELS[operation]} while the contract is '{contract.status}'",
            contract.status,
            allowedStatuses=sorted(allowed),
        )


def check_version(contract: Contract, expected_version: Optional[int]) -> None:
    if expected_version is not None and expected_version != contract.version:
        raise VersionConflict(contract.version)


def save_contract(session: Session, contract: Contract) -> Contract:
    """Commit pending changes only if nobody else bumped the version meanwhile."""
    read_version = contract.version
    contract.updated_at = utcnow()
    session.add(contract)
    session.flush()
    result = session.execute(
        update(Contract)
        .where(Contract.id == contract.id, Contract.version == read_version)
        .values(version=read_version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        current = session.get(Contract, contract.id)
        raise VersionConflict(current.version if current else read_version)
    set_committed_value(contract, "version", read_version + 1)
    session.commit()
    session.refresh(contract)
    return contract


def load_contract(session: Session, contract_id: int, actor: AccessContext) -> Contract:
    contract = session.get(Contract, contract_id)
    if not contract or not can_act_on_contract(actor, contract):
        raise NotFoundError("Contract not found")
    return contract


def template_fields(session: Session, contract: Contract) -> List[dict]:
    template = session.get(ContractTemplate, contract.template_id) if contract.template_id else None
    if not template:
        return DEFAULT_TEMPLATE_FIELDS
    return template.field_descriptors or DEFAULT_TEMPLATE_FIELDS


def account_to_party(account: Optional[Account]) -> dict:
    if not account:
        return {}
    return {
        "name": account.full_name or "",
        "dob": account.dob,
        "address": account.address or "",
        "idNumber": "",
        "idIssuedDate": None,
        "idIssuedPlace": "",
        "phone": account.phone or "",
        "email": account.email or "",
    }


def _trim(entry: dict) -> dict:
    return {k: (v.strip() if isinstance(v, str) else v) for k, v in (entry or {}).items()}


def clean_entries(entries: Iterable[dict], required_key: str) -> List[dict]:
    cleaned = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        trimmed = _trim(entry)
        if is_empty(trimmed.get(required_key)):
            continue
        cleaned.append(trimmed)
    return cleaned


def build_occupants(party_b: dict, roommates: Iterable[dict]) -> List[dict]:
    people = [party_b or {}] + list(roommates or [])
    return [p for p in people if not is_empty(p.get("name"))]


# ---------- landlord side ----------

def create_from_contact(session: Session, actor: AccessContext, contact_id: int) -> Contract:
    contact = session.get(Contact, contact_id)
    if (
        not contact
        or contact.is_deleted
        or not can_manage_building(actor, contact.landlord_id, contact.building_id)
    ):
        raise NotFoundError("Contact request not found")

    existing = session.exec(select(Contract).where(Contract.contact_id == contact.id)).first()
    if existing:
        return existing

    template = session.exec(
        select(ContractTemplate).where(
            ContractTemplate.building_id == contact.building_id,
            ContractTemplate.status == "active",
        )
    ).first()
    if not template:
        raise InputError("Building has no active contract template", buildingId=contact.building_id)

    landlord = session.get(Account, contact.landlord_id)
    tenant = session.get(Account, contact.tenant_id)
    room = session.get(Room, contact.room_id)

    contract = Contract(
        contact_id=contact.id,
        landlord_id=contact.landlord_id,
        tenant_id=contact.tenant_id,
        building_id=contact.building_id,
        room_id=contact.room_id,
        template_id=template.id,
        party_a=account_to_party(landlord),
        party_b=account_to_party(tenant),
        contract_terms={"price": room.price} if room and room.price is not None else {},
        room_snapshot={"number": room.room_number} if room else {},
        term_ids=list(template.default_term_ids or []),
        regulation_ids=list(template.default_regulation_ids or []),
        status=S.DRAFT.value,
    )
    session.add(contract)
    session.flush()
    append_event(session, contract.id, actor.actor, "created", {"contact_id": contact.id})
    session.commit()
    session.refresh(contract)
    logger.info("Contract %s created from contact %s", contract.id, contact.id)
    return contract


def _is_structural(changes: Dict[str, Any]) -> bool:
    for key, value in changes.items():
        if key == "contractTerms" and isinstance(value, dict) and set(value) <= NON_STRUCTURAL_TERMS:
            continue
        return True
    return False


def edit_data(
    session: Session,
    contract: Contract,
    actor: AccessContext,
    changes: Dict[str, Any],
    mark_ready: bool = False,
    expected_version: Optional[int] = None,
) -> Contract:
    check_version(contract, expected_version)
    changes = {k: v for k, v in changes.items() if v is not None}
    if not changes and not mark_ready:
        raise InputError("Nothing to update")
    if mark_ready or _is_structural(changes):
        guard_status(contract, "edit_data")

    if "partyA" in changes:
        contract.party_a = {**(contract.party_a or {}), **changes["partyA"]}
    if "contractTerms" in changes:
        contract.contract_terms = {**(contract.contract_terms or {}), **changes["contractTerms"]}
    if "roomSnapshot" in changes:
        contract.room_snapshot = {**(contract.room_snapshot or {}), **changes["roomSnapshot"]}
    if "fieldValues" in changes:
        contract.field_values = [
            {"key": fv["key"], "value": fv.get("value")}
            for fv in changes["fieldValues"]
            if isinstance(fv, dict) and fv.get("key")
        ]
    if "termIds" in changes:
        contract.term_ids = list(changes["termIds"])
    if "regulationIds" in changes:
        contract.regulation_ids = list(changes["regulationIds"])
    if mark_ready:
        contract.status = S.READY_FOR_SIGN.value

    append_event(session, contract.id, actor.actor, "edited", {
        "fields": sorted(changes),
        "status": contract.status,
    })
    return save_contract(session, contract)


def sign_by_landlord(
    session: Session,
    contract: Contract,
    actor: AccessContext,
    signature_url: str,
    expected_version: Optional[int] = None,
) -> Contract:
    if is_empty(signature_url):
        raise InputError("signatureUrl is required")
    check_version(contract, expected_version)
    guard_status(contract, "sign_by_landlord")
    ensure_required_fields(template_fields(session, contract), contract)

    contract.landlord_signature_url = signature_url
    if contract.tenant_signature_url:
        contract.status = S.COMPLETED.value
        contract.completed_at = utcnow()
    else:
        contract.status = S.SIGNED_BY_LANDLORD.value
    append_event(session, contract.id, actor.actor, "signed_by_landlord", {"status": contract.status})
    save_contract(session, contract)
    logger.info("Contract %s signed by landlord -> %s", contract.id, contract.status)
    return contract


def send_to_tenant(
    session: Session,
    contract: Contract,
    actor: AccessContext,
    emitter: NotificationEmitter,
    expected_version: Optional[int] = None,
) -> Contract:
    check_version(contract, expected_version)
    guard_status(contract, "send_to_tenant")
    ensure_required_fields(template_fields(session, contract), contract)

    contract.status = S.SENT_TO_TENANT.value
    contract.sent_to_tenant_at = utcnow()
    append_event(session, contract.id, actor.actor, "sent_to_tenant", {})
    save_contract(session, contract)
    emitter.sent_to_tenant(contract)
    return contract


def confirm_move_in(session: Session, contract: Contract, actor: AccessContext) -> Room:
    guard_status(contract, "confirm_move_in")
    room = session.get(Room, contract.room_id)
    if not room:
        raise NotFoundError("Room not found")
    total = max(len(contract.occupants or []), 1)
    if room.max_tenants and total > room.max_tenants:
        raise OccupancyExceeded(total, room.max_tenants)

    room.status = "rented"
    room.current_contract_id = contract.id
    room.current_tenant_ids = [contract.tenant_id]
    session.add(room)
    append_event(session, contract.id, actor.actor, "move_in_confirmed", {"room_id": room.id})
    session.commit()
    session.refresh(room)
    return room


# ---------- tenant side ----------

def update_my_data(
    session: Session,
    contract: Contract,
    actor: AccessContext,
    party_b: Optional[dict] = None,
    bikes: Optional[List[dict]] = None,
    roommates: Optional[List[dict]] = None,
    expected_version: Optional[int] = None,
) -> Contract:
    check_version(contract, expected_version)
    guard_status(contract, "update_my_data")

    new_b = dict(contract.party_b or {})
    if party_b is not None:
        patch = _trim(party_b)
        verification = contract.identity_verification or {}
        if verification.get("status") == IdentityStatus.VERIFIED.value:
            locked = [k for k in IDENTITY_LOCKED_FIELDS if k in patch and patch[k] != new_b.get(k)]
            if locked:
                raise InputError("Identity details cannot change after verification", fields=locked)
        new_b.update(patch)
    new_bikes = clean_entries(bikes, "plate") if bikes is not None else list(contract.bikes or [])
    new_roommates = clean_entries(roommates, "name") if roommates is not None else list(contract.roommates or [])

    occupants = build_occupants(new_b, new_roommates)
    room = session.get(Room, contract.room_id)
    if not room:
        raise NotFoundError("Room not found")
    if len(occupants) > room.max_tenants:
        raise OccupancyExceeded(len(occupants), room.max_tenants)

    contract.party_b = new_b
    contract.bikes = new_bikes
    contract.roommates = new_roommates
    contract.occupants = occupants
    append_event(session, contract.id, actor.actor, "tenant_data_updated", {"occupants": len(occupants)})
    return save_contract(session, contract)


def sign_by_tenant(
    session: Session,
    contract: Contract,
    actor: AccessContext,
    signature_url: str,
    emitter: NotificationEmitter,
    expected_version: Optional[int] = None,
) -> Contract:
    if is_empty(signature_url):
        raise InputError("signatureUrl is required")
    check_version(contract, expected_version)
    guard_status(contract, "sign_by_tenant")
    verification = contract.identity_verification or {}
    if verification.get("status") != IdentityStatus.VERIFIED.value:
        raise IdentityNotVerified(
            "Identity verification must succeed before signing",
            identityStatus=verification.get("status"),
        )

    contract.tenant_signature_url = signature_url
    if contract.landlord_signature_url:
        contract.status = S.COMPLETED.value
        contract.completed_at = utcnow()
    else:
        contract.status = S.SIGNED_BY_TENANT.value
    append_event(session, contract.id, actor.actor, "signed_by_tenant", {"status": contract.status})
    save_contract(session, contract)
    emitter.signed_by_tenant(contract)
    logger.info("Contract %s signed by tenant -> %s", contract.id, contract.status)
    return contract


def mark_seen(session: Session, contract: Contract) -> Contract:
    if contract.tenant_seen_at is None:
        contract.tenant_seen_at = utcnow()
        session.add(contract)
        session.commit()
        session.refresh(contract)
    return contract


def serialize_contract(contract: Contract) -> dict:
    return {
        "id": contract.id,
        "contactId": contract.contact_id,
        "landlordId": contract.landlord_id,
        "tenantId": contract.tenant_id,
        "buildingId": contract.building_id,
        "roomId": contract.room_id,
        "templateId": contract.template_id,
        "partyA": contract.party_a,
        "partyB": contract.party_b,
        "contractTerms": contract.contract_terms,
        "roomSnapshot": contract.room_snapshot,
        "fieldValues": contract.field_values,
        "termIds": contract.term_ids,
        "regulationIds": contract.regulation_ids,
        "roommates": contract.roommates,
        "bikes": contract.bikes,
        "occupants": contract.occupants,
        "status": contract.status,
        "landlordSignatureUrl": contract.landlord_signature_url,
        "tenantSignatureUrl": contract.tenant_signature_url,
        "completedAt": contract.completed_at,
        "sentToTenantAt": contract.sent_to_tenant_at,
        "tenantSeenAt": contract.tenant_seen_at,
        "identityVerification": contract.identity_verification,
        "renewalRequest": contract.renewal_request,
        "version": contract.version,
        "createdAt": contract.created_at,
        "updatedAt": contract.updated_at,
    }


def list_contracts(
    session: Session,
    actor: AccessContext,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    query = select(Contract)
    if actor.role == "resident":
        query = query.where(Contract.tenant_id == actor.account_id)
    elif actor.role == "landlord":
        query = query.where(Contract.landlord_id == actor.account_id)
    elif actor.role == "staff":
        query = query.where(col(Contract.building_id).in_(actor.building_ids or [-1]))
    if status:
        query = query.where(Contract.status == status)
    rows = session.exec(query.order_by(col(Contract.updated_at).desc(), col(Contract.id).desc())).all()
    start = (page - 1) * limit
    return {
        "items": [serialize_contract(c) for c in rows[start:start + limit]],
        "total": len(rows),
        "page": page,
        "limit": limit,
    }
