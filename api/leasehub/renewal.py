"""Renewal requests and the room-overlap check that gates them."""

import logging
from datetime import date, timedelta
from typing import List, Optional, Tuple
from dateutil.relativedelta import relativedelta
from sqlmodel import Session, col, select

from .audit import append_event
from .auth import AccessContext
from .config import REMINDER_DAYS_AHEAD, RENEWAL_WINDOW_DAYS
from .errors import InputError, RenewalConflict
from .models import Contract, ContractStatus, RenewalStatus
from .normalize import to_date
from .notifications import NotificationEmitter
from .utils import utcnow
from .workflow import guard_status, save_contract

logger = logging.getLogger(__name__)

# statuses whose date range still occupies the room
LIVE_STATUSES = (
    ContractStatus.DRAFT.value,
    ContractStatus.SENT_TO_TENANT.value,
    ContractStatus.SIGNED_BY_TENANT.value,
    ContractStatus.SIGNED_BY_LANDLORD.value,
    ContractStatus.COMPLETED.value,
)


def add_months(start: date, months: int) -> date:
    return start + relativedelta(months=months)


def intervals_overlap(s1: date, e1: date, s2: date, e2: date) -> bool:
    """Closed intervals: touching on a boundary day counts as overlap."""
    return s1 <= e2 and s2 <= e1


def format_month_range(start: date, end: date) -> str:
    return f"{start:%m/%Y} - {end:%m/%Y}"


def contract_period(contract: Contract) -> Tuple[Optional[date], Optional[date]]:
    terms = contract.contract_terms or {}
    return to_date(terms.get("startDate")), to_date(terms.get("endDate"))


def find_conflicting_contract(
    session: Session, contract: Contract, start: date, end: date
) -> Optional[Tuple[Contract, date, date]]:
    siblings = session.exec(
        select(Contract)
        .where(
            Contract.room_id == contract.room_id,
            Contract.id != contract.id,
            col(Contract.status).in_(LIVE_STATUSES),
        )
        .order_by(Contract.id)
    ).all()
    for sibling in siblings:
        s_start, s_end = contract_period(sibling)
        if s_start is None or s_end is None:
            continue
        if intervals_overlap(start, end, s_start, s_end):
            return sibling, s_start, s_end
    return None


def _positive_months(months) -> int:
    if isinstance(months, bool) or not isinstance(months, int) or months <= 0:
        raise InputError("months must be a positive whole number", months=months)
    return months


def request_extend(
    session: Session,
    contract: Contract,
    actor: AccessContext,
    months: int,
    note: Optional[str],
    emitter: NotificationEmitter,
    today: Optional[date] = None,
) -> Contract:
    guard_status(contract, "request_extend")
    months = _positive_months(months)
    current = contract.renewal_request or {}
    if current.get("status") == RenewalStatus.PENDING.value:
        raise InputError("A renewal request is already pending", renewalRequest=current)

    _, end = contract_period(contract)
    if end is None:
        raise InputError("Contract has no end date")
    today = today or utcnow().date()
    days_left = (end - today).days
    if days_left < 0 or days_left > RENEWAL_WINDOW_DAYS:
        raise InputError(
            f"Renewal can only be requested within {RENEWAL_WINDOW_DAYS} days before the contract ends",
            daysUntilExpiry=days_left,
        )

    requested_end = add_months(end, months)
    conflict = find_conflicting_contract(session, contract, end, requested_end)
    if conflict:
        sibling, s_start, s_end = conflict
        raise RenewalConflict(sibling.id, format_month_range(s_start, s_end))

    contract.renewal_request = {
        "months": months,
        "requestedEndDate": requested_end.isoformat(),
        "note": (note or "").strip(),
        "status": RenewalStatus.PENDING.value,
        "requestedAt": utcnow().isoformat(),
        "requestedById": actor.account_id,
        "requestedByRole": actor.role,
    }
    append_event(session, contract.id, actor.actor, "renewal_requested", {
        "months": months,
        "requested_end": requested_end.isoformat(),
    })
    save_contract(session, contract)
    emitter.renewal_requested(contract)
    return contract


def respond_renewal(
    session: Session,
    contract: Contract,
    actor: AccessContext,
    approve: bool,
    note: Optional[str],
    emitter: NotificationEmitter,
) -> Contract:
    guard_status(contract, "respond_renewal")
    current = contract.renewal_request or {}
    if current.get("status") != RenewalStatus.PENDING.value:
        raise InputError("There is no pending renewal request")

    terms = dict(contract.contract_terms or {})
    if approve:
        _, end = contract_period(contract)
        requested_end = to_date(current.get("requestedEndDate"))
        if end and requested_end:
            # siblings may have appeared since the request was made
            conflict = find_conflicting_contract(session, contract, end, requested_end)
            if conflict:
                sibling, s_start, s_end = conflict
                raise RenewalConflict(sibling.id, format_month_range(s_start, s_end))
        terms["endDate"] = current.get("requestedEndDate")
        contract.contract_terms = terms

    status = RenewalStatus.APPROVED if approve else RenewalStatus.REJECTED
    contract.renewal_request = {
        **current,
        "status": status.value,
        "respondedAt": utcnow().isoformat(),
        "respondedById": actor.account_id,
        "responseNote": (note or "").strip(),
    }
    append_event(session, contract.id, actor.actor, f"renewal_{status.value}", {})
    save_contract(session, contract)
    emitter.renewal_answered(contract)
    return contract


def send_expiry_reminders(
    session: Session,
    emitter: NotificationEmitter,
    today: Optional[date] = None,
    days_ahead: int = REMINDER_DAYS_AHEAD,
) -> List[int]:
    """Notify tenants whose completed contract ends exactly ``days_ahead`` days from today."""
    target = (today or utcnow().date()) + timedelta(days=days_ahead)
    contracts = session.exec(
        select(Contract).where(Contract.status == ContractStatus.COMPLETED.value)
    ).all()
    reminded = []
    for contract in contracts:
        _, end = contract_period(contract)
        if end != target:
            continue
        emitter.expiry_reminder(contract, end.isoformat())
        reminded.append(contract.id)
    logger.info("Expiry reminders for %s: %s contract(s)", target.isoformat(), len(reminded))
    return reminded
