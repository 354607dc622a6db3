from sqlmodel import Session, select
from .models import ContractEvent
from .utils import canonical_json, sha256_bytes

def append_event(session: Session, contract_id: int, actor: str, type_: str, meta: dict) -> ContractEvent:
    # staged only; committed together with the transition it records
    last = session.exec(
        select(ContractEvent).where(ContractEvent.contract_id == contract_id).order_by(ContractEvent.id.desc())
    ).first()
    prev_hash = last.hash if last else "0" * 64
    payload = {"actor": actor, "type": type_, "meta": meta}
    event = ContractEvent(
        contract_id=contract_id,
        actor=actor,
        type=type_,
        meta_json=canonical_json(payload),
        prev_hash=prev_hash,
    )
    event.hash = sha256_bytes((prev_hash + event.meta_json).encode())
    session.add(event)
    session.flush()
    return event
