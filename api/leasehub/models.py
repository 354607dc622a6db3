from typing import List, Optional
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, DateTime, JSON
from sqlmodel import SQLModel, Field as ORMField
from .utils import utcnow


def _timestamp(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


class ContractStatus(str, Enum):
    DRAFT = "draft"
    READY_FOR_SIGN = "ready_for_sign"
    SIGNED_BY_LANDLORD = "signed_by_landlord"
    SENT_TO_TENANT = "sent_to_tenant"
    SIGNED_BY_TENANT = "signed_by_tenant"
    COMPLETED = "completed"


class IdentityStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class RenewalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# pdfField -> data key mapping used when a landlord saves a template without fields
DEFAULT_TEMPLATE_FIELDS = [
    {"pdfField": "contractNo", "key": "contract.no", "type": "text", "required": False},
    {"pdfField": "signPlace", "key": "contract.signPlace", "type": "text", "required": False},
    {"pdfField": "signDate_day", "key": "contract.signDate.day", "type": "number", "required": True},
    {"pdfField": "signDate_month", "key": "contract.signDate.month", "type": "number", "required": True},
    {"pdfField": "signDate_year", "key": "contract.signDate.year", "type": "number", "required": True},
    {"pdfField": "A_name", "key": "A.name", "type": "text", "required": True},
    {"pdfField": "A_dob", "key": "A.dob", "type": "date", "required": False},
    {"pdfField": "A_address", "key": "A.address", "type": "text", "required": False},
    {"pdfField": "A_idNumber", "key": "A.idNumber", "type": "text", "required": True},
    {"pdfField": "A_idIssuedDate", "key": "A.idIssuedDate", "type": "date", "required": False},
    {"pdfField": "A_idIssuedPlace", "key": "A.idIssuedPlace", "type": "text", "required": False},
    {"pdfField": "A_phone", "key": "A.phone", "type": "text", "required": False},
    {"pdfField": "B_name", "key": "B.name", "type": "text", "required": True},
    {"pdfField": "B_dob", "key": "B.dob", "type": "date", "required": False},
    {"pdfField": "B_address", "key": "B.address", "type": "text", "required": False},
    {"pdfField": "B_idNumber", "key": "B.idNumber", "type": "text", "required": True},
    {"pdfField": "B_idIssuedDate", "key": "B.idIssuedDate", "type": "date", "required": False},
    {"pdfField": "B_idIssuedPlace", "key": "B.idIssuedPlace", "type": "text", "required": False},
    {"pdfField": "B_phone", "key": "B.phone", "type": "text", "required": False},
    {"pdfField": "roomNumber", "key": "room.number", "type": "text", "required": True},
    {"pdfField": "price", "key": "contract.price", "type": "number", "required": True},
    {"pdfField": "deposit", "key": "contract.deposit", "type": "number", "required": False},
    {"pdfField": "startDate", "key": "contract.startDate", "type": "date", "required": True},
    {"pdfField": "endDate", "key": "contract.endDate", "type": "date", "required": True},
]


class Account(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    email: str
    role: str = "resident"  # landlord|staff|resident|admin
    full_name: str = ""
    dob: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class Room(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    building_id: int = ORMField(index=True)
    room_number: str
    price: Optional[float] = None
    max_tenants: int = 1
    status: str = "available"
    current_contract_id: Optional[int] = None
    current_tenant_ids: List[int] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))


class Contact(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    landlord_id: int = ORMField(index=True)
    tenant_id: int
    building_id: int
    room_id: int
    status: str = "accepted"
    is_deleted: bool = False
    created_at: datetime = ORMField(default_factory=utcnow, sa_column=_timestamp())


class ContractTemplate(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    building_id: int = ORMField(index=True, unique=True)
    owner_id: int
    name: str = "Room rental contract"
    field_descriptors: List[dict] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))
    default_term_ids: List[int] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))
    default_regulation_ids: List[int] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: str = "active"
    created_at: datetime = ORMField(default_factory=utcnow, sa_column=_timestamp())
    updated_at: datetime = ORMField(default_factory=utcnow, sa_column=_timestamp())


class Contract(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    contact_id: int = ORMField(index=True)
    landlord_id: int = ORMField(index=True)
    tenant_id: int = ORMField(index=True)
    building_id: int
    room_id: int = ORMField(index=True)
    template_id: Optional[int] = None

    party_a: dict = ORMField(default_factory=dict, sa_column=Column(JSON, nullable=False))
    party_b: dict = ORMField(default_factory=dict, sa_column=Column(JSON, nullable=False))
    contract_terms: dict = ORMField(default_factory=dict, sa_column=Column(JSON, nullable=False))
    room_snapshot: dict = ORMField(default_factory=dict, sa_column=Column(JSON, nullable=False))
    field_values: List[dict] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))
    term_ids: List[int] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))
    regulation_ids: List[int] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))

    roommates: List[dict] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))
    bikes: List[dict] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))
    occupants: List[dict] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))

    status: str = ORMField(default=ContractStatus.DRAFT.value, index=True)
    landlord_signature_url: Optional[str] = None
    tenant_signature_url: Optional[str] = None
    completed_at: Optional[datetime] = ORMField(default=None, sa_column=_timestamp(nullable=True))
    sent_to_tenant_at: Optional[datetime] = ORMField(default=None, sa_column=_timestamp(nullable=True))
    tenant_seen_at: Optional[datetime] = ORMField(default=None, sa_column=_timestamp(nullable=True))

    identity_verification: Optional[dict] = ORMField(default=None, sa_column=Column(JSON, nullable=True))
    renewal_request: Optional[dict] = ORMField(default=None, sa_column=Column(JSON, nullable=True))

    version: int = 1
    created_at: datetime = ORMField(default_factory=utcnow, sa_column=_timestamp())
    updated_at: datetime = ORMField(default_factory=utcnow, sa_column=_timestamp())


class ContractEvent(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    contract_id: int = ORMField(index=True)
    actor: str  # system|landlord:<id>|tenant:<id>|staff:<id>
    type: str   # created|edited|signed_by_landlord|sent_to_tenant|identity_*|signed_by_tenant|renewal_*
    meta_json: str = "{}"
    at: datetime = ORMField(default_factory=utcnow, sa_column=_timestamp())
    prev_hash: Optional[str] = None
    hash: Optional[str] = None
