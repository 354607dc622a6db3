import os

import pytest
import requests

from leasehub.errors import ProviderRejected, ProviderUnavailable
from leasehub.identity import (
    SubstringAddressMatcher,
    decide_identity,
    extract_face_result,
    extract_face_score,
    extract_ocr_data,
)
from leasehub.providers import FaceMatchClient, OcrClient

from conftest import FakeProvider, face_payload, ocr_payload

JPEG = b"\xff\xd8\xff\xe0fake-jpeg"


def image_files(*names):
    names = names or ("cccdFront", "cccdBack", "selfie")
    return {name: (f"{name}.jpg", JPEG, "image/jpeg") for name in names}


def submit(client, contract_id, headers, files=None):
    return client.post(
        f"/api/contracts/{contract_id}/identity",
        files=files if files is not None else image_files(),
        headers=headers,
    )


def staged_files(upload_dir):
    return os.listdir(upload_dir) if os.path.isdir(upload_dir) else []


def test_matching_identity_is_verified_and_unlocks_signing(
    client, seeded, make_contract, mock_storage, notifier, upload_dir
):
    contract = make_contract("sent_to_tenant")
    resp = submit(client, contract.id, seeded.tenant_headers)
    assert resp.status_code == 200, resp.text
    verification = resp.json()["identityVerification"]
    assert verification["status"] == "verified"
    assert verification["faceMatchScore"] == 92
    assert verification["rejectedReason"] is None
    assert verification["verifiedAt"]
    assert verification["ocrData"]["idNumber"] == "001098012345"
    assert verification["rawProviderResponse"]["ocr"]["data"][0]["fullname"] == "NGUYỄN VĂN AN"
    assert verification["cccdFrontUrl"].startswith(
        f"https://files.test/contracts/contracts/{contract.id}/identity/{seeded.tenant_id}/"
    )
    assert len(mock_storage) == 3
    assert staged_files(upload_dir) == []
    assert notifier.messages[-1]["event"] == "contract.identity_checked"
    assert notifier.messages[-1]["identityStatus"] == "verified"

    again = submit(client, contract.id, seeded.tenant_headers)
    assert again.status_code == 400
    assert "already verified" in again.json()["message"]

    signed = client.post(
        f"/api/contracts/{contract.id}/sign",
        json={"signatureUrl": "https://files.test/sig-b.png"},
        headers=seeded.tenant_headers,
    )
    assert signed.json()["status"] == "signed_by_tenant"


def test_mismatch_is_persisted_as_failed(client, seeded, make_contract, identity_services):
    identity_services.ocr = FakeProvider(ocr_payload(fullname="TRẦN VĂN AN"))
    identity_services.face_match = FakeProvider(face_payload(70))
    contract = make_contract("sent_to_tenant")

    resp = submit(client, contract.id, seeded.tenant_headers)
    assert resp.status_code == 200
    verification = resp.json()["identityVerification"]
    assert verification["status"] == "failed"
    assert verification["verifiedAt"] is None
    assert verification["rejectedReason"] == "name mismatch; face match score below threshold (70 < 80)"
    assert verification["attempts"] == 1

    sign = client.post(
        f"/api/contracts/{contract.id}/sign",
        json={"signatureUrl": "https://files.test/sig-b.png"},
        headers=seeded.tenant_headers,
    )
    assert sign.status_code == 400

    identity_services.ocr = FakeProvider(ocr_payload())
    identity_services.face_match = FakeProvider(face_payload(81))
    retry = submit(client, contract.id, seeded.tenant_headers)
    assert retry.json()["identityVerification"]["status"] == "verified"
    assert retry.json()["identityVerification"]["attempts"] == 2


def test_dob_only_mismatch_fails_and_blocks_signing(client, seeded, make_contract, identity_services):
    identity_services.ocr = FakeProvider(ocr_payload(dob="16/04/1998"))
    contract = make_contract("sent_to_tenant")

    resp = submit(client, contract.id, seeded.tenant_headers)
    assert resp.status_code == 200, resp.text
    verification = resp.json()["identityVerification"]
    assert verification["status"] == "failed"
    assert verification["rejectedReason"] == "date of birth mismatch"
    assert verification["checks"] == {
        "name": True,
        "idNumber": True,
        "dob": False,
        "address": True,
        "face": True,
    }

    sign = client.post(
        f"/api/contracts/{contract.id}/sign",
        json={"signatureUrl": "https://files.test/sig-b.png"},
        headers=seeded.tenant_headers,
    )
    assert sign.status_code == 400
    assert sign.json()["code"] == "IDENTITY_NOT_VERIFIED"
    detail = client.get(f"/api/contracts/{contract.id}", headers=seeded.tenant_headers).json()
    assert detail["status"] == "sent_to_tenant"
    assert detail["tenantSignatureUrl"] is None


def test_attempt_cap_blocks_resubmission(client, seeded, make_contract, identity_services):
    identity_services.max_attempts = 1
    contract = make_contract("sent_to_tenant", identity_verification={"status": "failed", "attempts": 1})
    resp = submit(client, contract.id, seeded.tenant_headers)
    assert resp.status_code == 400
    assert resp.json()["attempts"] == 1


def test_provider_outage_leaves_identity_unset(
    client, seeded, make_contract, identity_services, mock_storage, upload_dir
):
    identity_services.ocr = FakeProvider(ProviderUnavailable("OCR provider is unreachable, please try again later"))
    contract = make_contract("sent_to_tenant")

    resp = submit(client, contract.id, seeded.tenant_headers)
    assert resp.status_code == 502
    assert identity_services.ocr.calls == [(True, True)]
    assert staged_files(upload_dir) == []
    assert mock_storage == {}

    detail = client.get(f"/api/contracts/{contract.id}", headers=seeded.tenant_headers).json()
    assert detail["identityVerification"] is None
    assert detail["version"] == 1


def test_ocr_rejection_message_is_passed_through(client, seeded, make_contract, identity_services, upload_dir):
    identity_services.ocr = FakeProvider({"errorCode": 3, "errorMessage": "Unable to find ID card in the image", "data": []})
    contract = make_contract("sent_to_tenant")
    resp = submit(client, contract.id, seeded.tenant_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Unable to find ID card in the image"
    assert staged_files(upload_dir) == []


def test_face_match_http_error_rejects_submission(
    client, seeded, make_contract, identity_services, mock_storage, upload_dir
):
    http = FakeHttp(FakeResponse(400, {"code": "407", "message": "No face detected in selfie"}))
    identity_services.face_match = FaceMatchClient(url="https://face.test", api_key="k", timeout=3, http=http)
    contract = make_contract("sent_to_tenant")

    resp = submit(client, contract.id, seeded.tenant_headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "PROVIDER_REJECTED"
    assert resp.json()["message"] == "No face detected in selfie"
    assert http.calls == 1
    assert staged_files(upload_dir) == []
    assert mock_storage == {}

    detail = client.get(f"/api/contracts/{contract.id}", headers=seeded.tenant_headers).json()
    assert detail["identityVerification"] is None
    assert detail["version"] == 1


def test_face_match_error_code_in_body_rejects_submission(
    client, seeded, make_contract, identity_services, upload_dir
):
    identity_services.face_match = FakeProvider({"code": "408", "message": "Selfie is too blurry", "data": {}})
    contract = make_contract("sent_to_tenant")

    resp = submit(client, contract.id, seeded.tenant_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Selfie is too blurry"
    assert staged_files(upload_dir) == []
    detail = client.get(f"/api/contracts/{contract.id}", headers=seeded.tenant_headers).json()
    assert detail["identityVerification"] is None


def test_each_missing_image_is_named(client, seeded, make_contract, identity_services):
    contract = make_contract("sent_to_tenant")
    resp = submit(client, contract.id, seeded.tenant_headers, files=image_files("cccdFront"))
    assert resp.status_code == 400
    assert resp.json()["missing"] == ["cccdBack", "selfie"]
    assert "back of ID card" in resp.json()["message"]
    assert identity_services.ocr.calls == []


def test_non_image_upload_is_rejected(client, seeded, make_contract):
    contract = make_contract("sent_to_tenant")
    files = image_files()
    files["selfie"] = ("selfie.gif", b"GIF89a", "image/gif")
    resp = submit(client, contract.id, seeded.tenant_headers, files=files)
    assert resp.status_code == 400
    assert resp.json()["field"] == "selfie"


def test_identity_requires_sent_status(client, seeded, make_contract):
    contract = make_contract("signed_by_landlord")
    resp = submit(client, contract.id, seeded.tenant_headers)
    assert resp.status_code == 400
    assert resp.json()["currentStatus"] == "signed_by_landlord"


def test_identity_details_locked_after_verification(client, seeded, make_contract):
    contract = make_contract("sent_to_tenant", identity_verification={"status": "verified"})
    resp = client.patch(
        f"/api/contracts/{contract.id}",
        json={"partyB": {"name": "Someone Else"}},
        headers=seeded.tenant_headers,
    )
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["name"]


DECLARED = {
    "name": "nguyen van an",
    "dob": "1998-04-15T00:00:00.000Z",
    "idNumber": "001098012345",
    "address": [{"street": "Old"}, {"district": "Cầu Giấy", "province": "Hà Nội"}],
}


@pytest.mark.parametrize("score,verified", [(80, True), (79, False), (100, True), (None, True)])
def test_face_threshold_boundary(score, verified):
    extracted = extract_ocr_data(ocr_payload())
    decision = decide_identity(DECLARED, extracted, score, threshold=80)
    assert decision.verified is verified
    assert decision.face_applicable is (score is not None)


def test_no_selfie_skips_face_check():
    extracted = extract_ocr_data(ocr_payload())
    decision = decide_identity(DECLARED, extracted, 10, selfie_supplied=False)
    assert decision.verified
    assert "face" not in decision.checks


def test_every_failed_check_is_labelled():
    extracted = extract_ocr_data(ocr_payload(fullname="X", dob="01/01/2000", id="999", address="Đà Nẵng"))
    decision = decide_identity(DECLARED, extracted, 50, threshold=80)
    assert decision.reasons == [
        "name mismatch",
        "ID number mismatch",
        "date of birth mismatch",
        "address mismatch",
        "face match score below threshold (50 < 80)",
    ]


def test_empty_declared_values_never_match():
    extracted = extract_ocr_data(ocr_payload())
    decision = decide_identity({}, extracted, None)
    assert not decision.verified
    assert not any(decision.checks.values())


def test_ocr_alternate_field_names():
    raw = {"errorCode": "0", "data": [{"name": "A", "date_of_birth": "1/2/1990", "number": "12", "home_town": "Huế"}]}
    assert extract_ocr_data(raw) == {"name": "A", "dob": "1/2/1990", "idNumber": "12", "address": "Huế"}


def test_ocr_without_records_is_rejected():
    with pytest.raises(ProviderRejected):
        extract_ocr_data({"errorCode": 0, "data": []})


@pytest.mark.parametrize("raw,expected", [
    ({"data": {"similarity": 79.5}}, 80),
    ({"data": {"similarity": 79.49}}, 79),
    ({"data": {"similarity": "88"}}, 88),
    ({"data": {}}, None),
    ({"data": {"similarity": "n/a"}}, None),
    ({}, None),
    (None, None),
])
def test_face_score_rounding(raw, expected):
    assert extract_face_score(raw) == expected


def test_face_result_accepts_success_without_similarity():
    assert extract_face_result({"code": "200", "data": {"similarity": 85.2}}) == 85
    assert extract_face_result({"code": 200, "data": {}}) is None
    assert extract_face_result({"errorCode": 0, "data": {"similarity": 10}}) == 10


@pytest.mark.parametrize("raw", [
    {"code": "407", "message": "No face detected"},
    {"errorCode": 5, "errorMessage": "Bad image", "data": {"similarity": 99}},
    None,
    [],
])
def test_face_result_rejects_error_answers(raw):
    with pytest.raises(ProviderRejected):
        extract_face_result(raw)


def test_address_matcher_is_case_insensitive_substring():
    matcher = SubstringAddressMatcher()
    assert matcher.matches("cầu giấy", "Quận CẦU GIẤY, Hà Nội")
    assert not matcher.matches("", "Hà Nội")
    assert not matcher.matches("Đống Đa", "Quận Cầu Giấy")


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        if self.payload is None:
            raise ValueError("no json")
        return self.payload


class FakeHttp:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def post(self, url, files=None, headers=None, timeout=None):
        self.calls += 1
        assert timeout == 3
        assert headers == {"api-key": "k"}
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def images(tmp_path):
    front, back = tmp_path / "front.jpg", tmp_path / "back.jpg"
    front.write_bytes(JPEG)
    back.write_bytes(JPEG)
    return str(front), str(back)


def test_provider_retries_once_on_transport_error(images):
    http = FakeHttp(requests.ConnectionError("reset"), FakeResponse(200, ocr_payload()))
    client = OcrClient(url="https://ocr.test", api_key="k", timeout=3, http=http)
    assert client.recognize(*images)["errorCode"] == 0
    assert http.calls == 2


def test_provider_gives_up_after_retry(images):
    http = FakeHttp(requests.Timeout("slow"), FakeResponse(503))
    client = OcrClient(url="https://ocr.test", api_key="k", timeout=3, http=http)
    with pytest.raises(ProviderUnavailable):
        client.recognize(*images)
    assert http.calls == 2


def test_provider_rejection_is_not_retried(images):
    http = FakeHttp(FakeResponse(400, {"errorCode": 7, "errorMessage": "Invalid image"}))
    client = OcrClient(url="https://ocr.test", api_key="k", timeout=3, http=http)
    with pytest.raises(ProviderRejected) as exc:
        client.recognize(*images)
    assert http.calls == 1
    assert exc.value.message == "Invalid image"
    assert exc.value.extra["httpStatus"] == 400


def test_provider_rejection_without_body_names_the_status(images):
    http = FakeHttp(FakeResponse(413))
    client = FaceMatchClient(url="https://face.test", api_key="k", timeout=3, http=http)
    with pytest.raises(ProviderRejected) as exc:
        client.compare(*images)
    assert exc.value.message == "face-match provider rejected the request (HTTP 413)"


def test_public_url_points_into_bucket():
    from leasehub.storage import public_url

    assert public_url("contracts/1/identity/2/a.jpg").endswith("/contracts/contracts/1/identity/2/a.jpg")
