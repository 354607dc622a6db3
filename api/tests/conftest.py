import os
from types import SimpleNamespace
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

from leasehub.main import app  # noqa: E402
from leasehub import db as db_module  # noqa: E402
from leasehub import storage as storage_module  # noqa: E402
from leasehub.db import get_session  # noqa: E402
from leasehub.identity import IdentityServices, get_identity_services  # noqa: E402
from leasehub.models import (  # noqa: E402
    Account,
    Contact,
    Contract,
    ContractTemplate,
    DEFAULT_TEMPLATE_FIELDS,
    Room,
)
from leasehub.notifications import NotificationEmitter, get_notifier  # noqa: E402
from leasehub.utils import make_token  # noqa: E402


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.messages: List[dict] = []
        self.fail = fail

    def publish(self, topic: str, payload: dict) -> None:
        if self.fail:
            raise ConnectionError("broadcast channel down")
        self.messages.append({"topic": topic, **payload})

    def events(self) -> List[str]:
        return [m["event"] for m in self.messages]


class FakeProvider:
    """Returns queued responses in order; an exception instance is raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[tuple] = []

    def _next(self, *paths):
        self.calls.append(tuple(os.path.exists(p) for p in paths))
        result = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(result, Exception):
            raise result
        return result

    def recognize(self, front_path: str, back_path: str) -> dict:
        return self._next(front_path, back_path)

    def compare(self, id_path: str, selfie_path: str) -> dict:
        return self._next(id_path, selfie_path)


def ocr_payload(**overrides) -> dict:
    record = {
        "fullname": "NGUYỄN VĂN AN",
        "dob": "15/04/1998",
        "id": "001098012345",
        "address": "Số 12 Ngõ 5, Phường Dịch Vọng, Quận Cầu Giấy, Hà Nội",
    }
    record.update(overrides)
    return {"errorCode": 0, "errorMessage": "", "data": [record]}


def face_payload(similarity=92.4) -> dict:
    return {"code": "200", "data": {"similarity": similarity, "isMatch": True}}


def auth_headers(role: str, account_id: int, building_ids=None) -> Dict[str, str]:
    token = make_token({"role": role, "account_id": account_id, "building_ids": building_ids or []})
    return {"X-Access-Token": token}


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session(test_engine, setup_db):
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_upload_file(local_path: str, key: str, content_type: str = "application/octet-stream") -> str:
        with open(local_path, "rb") as fh:
            store[key] = fh.read()
        return f"https://files.test/contracts/{key}"

    monkeypatch.setattr(storage_module, "upload_file", fake_upload_file)
    return store


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def emitter(notifier):
    return NotificationEmitter(notifier)


@pytest.fixture
def upload_dir(tmp_path):
    return str(tmp_path / "identity")


@pytest.fixture
def identity_services(upload_dir):
    return IdentityServices(
        ocr=FakeProvider(ocr_payload()),
        face_match=FakeProvider(face_payload()),
        upload_dir=upload_dir,
        threshold=80,
        max_attempts=0,
    )


@pytest.fixture
def client(test_engine, setup_db, mock_storage, notifier, identity_services):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_identity_services] = lambda: identity_services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def seeded(session):
    landlord = Account(email="landlord@example.com", role="landlord", full_name="Trần Thị Bình",
                       dob="1980-02-01", phone="0901000001", address="Hà Nội")
    tenant = Account(email="tenant@example.com", role="resident", full_name="Nguyễn Văn An",
                     dob="1998-04-15", phone="0901000002", address="Cầu Giấy, Hà Nội")
    outsider = Account(email="other@example.com", role="resident", full_name="Lê Văn C")
    session.add(landlord); session.add(tenant); session.add(outsider)
    session.commit()

    room = Room(building_id=7, room_number="101", price=3500000, max_tenants=2)
    session.add(room)
    session.commit()

    contact = Contact(landlord_id=landlord.id, tenant_id=tenant.id, building_id=7, room_id=room.id)
    template = ContractTemplate(building_id=7, owner_id=landlord.id,
                                field_descriptors=[dict(d) for d in DEFAULT_TEMPLATE_FIELDS],
                                default_term_ids=[1, 2], default_regulation_ids=[5])
    session.add(contact); session.add(template)
    session.commit()

    return SimpleNamespace(
        landlord_id=landlord.id,
        tenant_id=tenant.id,
        outsider_id=outsider.id,
        room_id=room.id,
        contact_id=contact.id,
        template_id=template.id,
        building_id=7,
        landlord_headers=auth_headers("landlord", landlord.id),
        tenant_headers=auth_headers("resident", tenant.id),
        outsider_headers=auth_headers("resident", outsider.id),
    )


def complete_terms(**overrides) -> dict:
    terms = {
        "no": "HD-101",
        "signPlace": "Hà Nội",
        "price": 3500000,
        "deposit": 3500000,
        "startDate": "2025-01-01",
        "endDate": "2026-01-01",
        "signDate": {"day": 28, "month": 12, "year": 2024},
    }
    terms.update(overrides)
    return terms


@pytest.fixture
def make_contract(session, seeded):
    """Insert a fully filled contract directly in the given status."""

    def factory(status="draft", **fields):
        values = dict(
            contact_id=seeded.contact_id,
            landlord_id=seeded.landlord_id,
            tenant_id=seeded.tenant_id,
            building_id=seeded.building_id,
            room_id=seeded.room_id,
            template_id=seeded.template_id,
            party_a={"name": "Trần Thị Bình", "idNumber": "001080000111", "phone": "0901000001"},
            party_b={
                "name": "Nguyễn Văn An",
                "dob": "1998-04-15T00:00:00.000Z",
                "idNumber": "001098012345",
                "address": "Cầu Giấy, Hà Nội",
            },
            contract_terms=complete_terms(),
            room_snapshot={"number": "101"},
            status=status,
        )
        values.update(fields)
        contract = Contract(**values)
        session.add(contract)
        session.commit()
        session.refresh(contract)
        return contract

    return factory


@pytest.fixture
def terms():
    return complete_terms


@pytest.fixture
def headers_for():
    return auth_headers
