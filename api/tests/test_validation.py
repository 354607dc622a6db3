import pytest

from leasehub.errors import RequiredFieldsMissing
from leasehub.models import Contract
from leasehub.validation import ensure_required_fields, find_missing_required_fields

DESCRIPTORS = [
    {"pdfField": "A_name", "key": "A.name", "type": "text", "required": True},
    {"pdfField": "B_idNumber", "key": "B.idNumber", "type": "text", "required": True},
    {"pdfField": "price", "key": "contract.price", "type": "number", "required": True},
    {"pdfField": "signDate_day", "key": "contract.signDate.day", "type": "number", "required": True},
    {"pdfField": "roomNumber", "key": "room.number", "type": "text", "required": True},
    {"pdfField": "deposit", "key": "contract.deposit", "type": "number", "required": False},
]


def contract(**fields):
    values = dict(contact_id=1, landlord_id=1, tenant_id=2, building_id=1, room_id=1)
    values.update(fields)
    return Contract(**values)


def test_reports_every_missing_required_field():
    c = contract(party_a={"name": "  "}, contract_terms={"price": 0})
    missing = find_missing_required_fields(DESCRIPTORS, c)
    assert [m["key"] for m in missing] == [
        "A.name",
        "B.idNumber",
        "contract.signDate.day",
        "room.number",
    ]
    assert missing[0] == {"key": "A.name", "pdfField": "A_name", "type": "text"}


def test_non_required_fields_are_never_reported():
    c = contract(
        party_a={"name": "Bình"},
        party_b={"idNumber": "0010"},
        contract_terms={"price": 1, "signDate": {"day": 1}},
        room_snapshot={"number": "101"},
    )
    assert find_missing_required_fields(DESCRIPTORS, c) == []


def test_field_values_override_snapshot():
    c = contract(
        party_a={"name": "Bình"},
        party_b={"idNumber": "0010"},
        contract_terms={"price": 1, "signDate": {"day": 1}},
        room_snapshot={},
        field_values=[{"key": "room.number", "value": "A2"}, {"key": "A.name", "value": ""}],
    )
    missing = find_missing_required_fields(DESCRIPTORS, c)
    assert [m["key"] for m in missing] == ["A.name"]


def test_ensure_raises_with_full_list():
    with pytest.raises(RequiredFieldsMissing) as exc:
        ensure_required_fields(DESCRIPTORS, contract())
    body = exc.value.to_body()
    assert exc.value.status_code == 422
    assert body["code"] == "VALIDATION_REQUIRED_MISSING"
    assert len(body["missing"]) == 5
