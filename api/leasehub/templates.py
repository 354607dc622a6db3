import logging
from typing import List, Optional
from sqlmodel import Session, select

from .auth import AccessContext, can_manage_building
from .errors import InputError, NotFoundError
from .models import ContractTemplate, DEFAULT_TEMPLATE_FIELDS
from .normalize import is_empty
from .utils import utcnow

logger = logging.getLogger(__name__)

FIELD_TYPES = ("text", "number", "date")


def clean_descriptors(descriptors: Optional[List[dict]]) -> List[dict]:
    if not descriptors:
        return [dict(d) for d in DEFAULT_TEMPLATE_FIELDS]
    cleaned, seen = [], set()
    for index, descriptor in enumerate(descriptors):
        pdf_field = (descriptor.get("pdfField") or "").strip()
        key = (descriptor.get("key") or "").strip()
        if is_empty(pdf_field) or is_empty(key):
            raise InputError(f"Template field #{index + 1} needs both pdfField and key")
        if pdf_field in seen:
            raise InputError(f"Duplicate template field '{pdf_field}'")
        type_ = descriptor.get("type") or "text"
        if type_ not in FIELD_TYPES:
            raise InputError(f"Unsupported field type '{type_}' for '{pdf_field}'")
        seen.add(pdf_field)
        cleaned.append({
            "pdfField": pdf_field,
            "key": key,
            "type": type_,
            "required": bool(descriptor.get("required")),
        })
    return cleaned


def upsert_template(
    session: Session,
    actor: AccessContext,
    building_id: int,
    name: Optional[str] = None,
    descriptors: Optional[List[dict]] = None,
    default_term_ids: Optional[List[int]] = None,
    default_regulation_ids: Optional[List[int]] = None,
    status: Optional[str] = None,
) -> ContractTemplate:
    template = session.exec(
        select(ContractTemplate).where(ContractTemplate.building_id == building_id)
    ).first()
    if template:
        if not can_manage_building(actor, template.owner_id, building_id):
            raise NotFoundError("Template not found")
    else:
        # the owner of a new template is the landlord creating it
        if actor.role != "landlord":
            raise InputError("Only the building's landlord can create its contract template")
        template = ContractTemplate(building_id=building_id, owner_id=actor.account_id)

    if status is not None and status not in ("active", "inactive"):
        raise InputError("status must be 'active' or 'inactive'")

    if name is not None:
        template.name = name.strip() or template.name
    if descriptors is not None or not template.field_descriptors:
        template.field_descriptors = clean_descriptors(descriptors)
    if default_term_ids is not None:
        template.default_term_ids = list(default_term_ids)
    if default_regulation_ids is not None:
        template.default_regulation_ids = list(default_regulation_ids)
    if status is not None:
        template.status = status
    template.updated_at = utcnow()
    session.add(template)
    session.commit()
    session.refresh(template)
    logger.info("Template for building %s saved by %s", building_id, actor.actor)
    return template


def serialize_template(template: ContractTemplate) -> dict:
    return {
        "id": template.id,
        "buildingId": template.building_id,
        "ownerId": template.owner_id,
        "name": template.name,
        "fields": template.field_descriptors,
        "defaultTermIds": template.default_term_ids,
        "defaultRegulationIds": template.default_regulation_ids,
        "status": template.status,
        "updatedAt": template.updated_at,
    }
