"""eKYC verification of the tenant against the declared party B data.

A submission stages the three images on local disk, runs OCR on the ID card
and face matching on ID front + selfie, compares the extracted data with the
contract and persists a verdict. Provider transport problems and provider
error answers abort the submission and leave the previous verdict untouched;
a data mismatch is a normal ``failed`` verdict.
"""

import logging
import math
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol
from uuid import uuid4
from sqlmodel import Session

from . import storage
from .audit import append_event
from .auth import AccessContext
from .config import (
    FACE_MATCH_THRESHOLD,
    IDENTITY_MAX_ATTEMPTS,
    IDENTITY_MAX_BYTES,
    IDENTITY_PROVIDER,
    IDENTITY_UPLOAD_DIR,
)
from .errors import InputError, ProviderRejected
from .models import Contract, IdentityStatus
from .normalize import (
    fold_text,
    is_empty,
    normalize_address,
    normalize_dob,
    normalize_id_number,
    normalize_name,
)
from .notifications import NotificationEmitter
from .providers import FaceMatchClient, OcrClient, provider_message
from .utils import utcnow
from .workflow import guard_status, save_contract

logger = logging.getLogger(__name__)

IMAGE_FIELDS = ("cccdFront", "cccdBack", "selfie")
IMAGE_LABELS = {
    "cccdFront": "front of ID card",
    "cccdBack": "back of ID card",
    "selfie": "selfie",
}
ALLOWED_IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}

# provider status codes that mean the call itself succeeded
SUCCESS_CODES = frozenset({"0", "200"})

# alternate field names used by OCR providers, first non-empty wins
OCR_ALIASES = {
    "name": ("fullname", "name", "full_name"),
    "dob": ("dob", "date_of_birth", "birthday"),
    "idNumber": ("id", "number", "id_number"),
    "address": ("address", "permanent_address", "home_town"),
}


@dataclass
class IdentityImage:
    filename: str
    content_type: str
    data: bytes

    @classmethod
    def from_upload(cls, upload, max_bytes: int = IDENTITY_MAX_BYTES) -> "IdentityImage":
        # one extra byte so oversize uploads are detectable without reading everything
        return cls(
            filename=upload.filename or "",
            content_type=(upload.content_type or "").lower(),
            data=upload.file.read(max_bytes + 1),
        )


class AddressMatcher(Protocol):
    def matches(self, declared: str, extracted: str) -> bool: ...


class SubstringAddressMatcher:
    """Declared address must appear inside the (usually longer) OCR address."""

    def matches(self, declared: str, extracted: str) -> bool:
        declared, extracted = fold_text(declared), fold_text(extracted)
        return bool(declared) and bool(extracted) and declared in extracted


class IdentityServices:
    def __init__(
        self,
        ocr: Optional[OcrClient] = None,
        face_match: Optional[FaceMatchClient] = None,
        upload: Optional[Callable[[str, str, str], str]] = None,
        address_matcher: Optional[AddressMatcher] = None,
        threshold: int = FACE_MATCH_THRESHOLD,
        max_attempts: int = IDENTITY_MAX_ATTEMPTS,
        upload_dir: str = IDENTITY_UPLOAD_DIR,
        max_bytes: int = IDENTITY_MAX_BYTES,
        provider: str = IDENTITY_PROVIDER,
    ):
        self.ocr = ocr or OcrClient()
        self.face_match = face_match or FaceMatchClient()
        self.upload = upload
        self.address_matcher = address_matcher or SubstringAddressMatcher()
        self.threshold = threshold
        self.max_attempts = max_attempts
        self.upload_dir = upload_dir
        self.max_bytes = max_bytes
        self.provider = provider

    def store(self, local_path: str, key: str, content_type: str) -> str:
        upload = self.upload or storage.upload_file
        return upload(local_path, key, content_type)


_default_services: Optional[IdentityServices] = None


def get_identity_services() -> IdentityServices:
    global _default_services
    if _default_services is None:
        _default_services = IdentityServices()
    return _default_services


def check_images(images: Dict[str, Optional[IdentityImage]], max_bytes: int = IDENTITY_MAX_BYTES) -> None:
    missing = [name for name in IMAGE_FIELDS if not images.get(name) or not images[name].data]
    if missing:
        labels = ", ".join(IMAGE_LABELS[name] for name in missing)
        raise InputError(f"Missing identity image(s): {labels}", missing=missing)
    for name in IMAGE_FIELDS:
        image = images[name]
        if image.content_type not in ALLOWED_IMAGE_TYPES:
            raise InputError(
                f"Only JPG / PNG / WEBP images are accepted ({IMAGE_LABELS[name]})",
                field=name,
            )
        if len(image.data) > max_bytes:
            raise InputError(
                f"Image for {IMAGE_LABELS[name]} is larger than {max_bytes // (1024 * 1024)} MB",
                field=name,
            )


@contextmanager
def staged_images(images: Dict[str, IdentityImage], upload_dir: str) -> Iterator[Dict[str, str]]:
    """Write images to ``upload_dir``; the files are removed on every exit path."""
    os.makedirs(upload_dir, exist_ok=True)
    paths: Dict[str, str] = {}
    try:
        for name, image in images.items():
            suffix = ALLOWED_IMAGE_TYPES.get(image.content_type, "")
            path = os.path.join(upload_dir, f"{uuid4().hex}-{name}{suffix}")
            with open(path, "wb") as fh:
                fh.write(image.data)
            paths[name] = path
        yield paths
    finally:
        for path in paths.values():
            if os.path.exists(path):
                os.remove(path)


def _first_record(raw: dict) -> dict:
    data = raw.get("data")
    if isinstance(data, list):
        return data[0] if data and isinstance(data[0], dict) else {}
    return data if isinstance(data, dict) else {}


def _pick(record: dict, names) -> Any:
    for name in names:
        value = record.get(name)
        if not is_empty(value):
            return value
    return None


def extract_ocr_data(raw: dict) -> Dict[str, Any]:
    code = raw.get("errorCode")
    if code and str(code) != "0":
        raise ProviderRejected(raw.get("errorMessage") or "ID card could not be read", errorCode=code)
    record = _first_record(raw)
    if not record:
        raise ProviderRejected("No ID card data was found in the submitted images")
    return {key: _pick(record, names) for key, names in OCR_ALIASES.items()}


def extract_face_score(raw: Optional[dict]) -> Optional[int]:
    """Similarity 0-100 rounded half up, or None when the provider gave none."""
    data = (raw or {}).get("data")
    if not isinstance(data, dict):
        return None
    similarity = data.get("similarity")
    if similarity is None or isinstance(similarity, bool):
        return None
    try:
        value = float(similarity)
    except (TypeError, ValueError):
        return None
    if math.isnan(value):
        return None
    return max(0, min(100, int(math.floor(value + 0.5))))


def extract_face_result(raw: Any) -> Optional[int]:
    """Score from a successful face-match answer; an error answer rejects the submission.

    A success that carries no similarity yields ``None`` (face check not applicable).
    """
    if not isinstance(raw, dict):
        raise ProviderRejected("Face match returned no result")
    for key in ("code", "errorCode"):
        code = raw.get(key)
        if code is not None and str(code) not in SUCCESS_CODES:
            raise ProviderRejected(provider_message(raw) or "Face match failed", errorCode=code)
    return extract_face_score(raw)


@dataclass
class IdentityDecision:
    checks: Dict[str, bool]
    reasons: List[str] = field(default_factory=list)
    face_applicable: bool = False

    @property
    def verified(self) -> bool:
        return not self.reasons


def decide_identity(
    declared: dict,
    extracted: dict,
    face_score: Optional[int],
    selfie_supplied: bool = True,
    threshold: int = FACE_MATCH_THRESHOLD,
    address_matcher: Optional[AddressMatcher] = None,
) -> IdentityDecision:
    matcher = address_matcher or SubstringAddressMatcher()
    declared = declared or {}

    name = normalize_name(declared.get("name"))
    id_number = normalize_id_number(declared.get("idNumber"))
    dob = normalize_dob(declared.get("dob"))
    checks = {
        "name": bool(name) and name == normalize_name(extracted.get("name")),
        "idNumber": bool(id_number) and id_number == normalize_id_number(extracted.get("idNumber")),
        "dob": dob is not None and dob == normalize_dob(extracted.get("dob")),
        "address": matcher.matches(
            normalize_address(declared.get("address")),
            normalize_address(extracted.get("address")),
        ),
    }
    labels = {
        "name": "name mismatch",
        "idNumber": "ID number mismatch",
        "dob": "date of birth mismatch",
        "address": "address mismatch",
    }
    reasons = [labels[key] for key, ok in checks.items() if not ok]

    decision = IdentityDecision(checks=checks, reasons=reasons)
    if selfie_supplied and face_score is not None:
        decision.face_applicable = True
        decision.checks["face"] = face_score >= threshold
        if not decision.checks["face"]:
            reasons.append(f"face match score below threshold ({face_score} < {threshold})")
    return decision


def verify_identity(
    session: Session,
    contract: Contract,
    actor: AccessContext,
    images: Dict[str, Optional[IdentityImage]],
    services: IdentityServices,
    emitter: NotificationEmitter,
) -> Contract:
    guard_status(contract, "submit_identity")
    previous = contract.identity_verification or {}
    if previous.get("status") == IdentityStatus.VERIFIED.value:
        raise InputError("Identity is already verified for this contract")
    attempts = int(previous.get("attempts") or 0)
    if services.max_attempts and attempts >= services.max_attempts:
        raise InputError(
            "Too many identity verification attempts, please contact the landlord",
            attempts=attempts,
        )
    check_images(images, services.max_bytes)

    folder = f"contracts/{contract.id}/identity/{contract.tenant_id}"
    with staged_images({name: images[name] for name in IMAGE_FIELDS}, services.upload_dir) as paths:
        raw_ocr = services.ocr.recognize(paths["cccdFront"], paths["cccdBack"])
        ocr_data = extract_ocr_data(raw_ocr)
        raw_face = services.face_match.compare(paths["cccdFront"], paths["selfie"])
        score = extract_face_result(raw_face)
        urls = {
            f"{name}Url": services.store(
                paths[name],
                f"{folder}/{os.path.basename(paths[name])}",
                images[name].content_type,
            )
            for name in IMAGE_FIELDS
        }

    decision = decide_identity(
        contract.party_b,
        ocr_data,
        score,
        selfie_supplied=True,
        threshold=services.threshold,
        address_matcher=services.address_matcher,
    )
    status = IdentityStatus.VERIFIED if decision.verified else IdentityStatus.FAILED
    now = utcnow()
    contract.identity_verification = {
        **urls,
        "ocrData": ocr_data,
        "faceMatchScore": score,
        "provider": services.provider,
        "status": status.value,
        "checks": decision.checks,
        "verifiedAt": now.isoformat() if decision.verified else None,
        "rejectedReason": "; ".join(decision.reasons) or None,
        "rawProviderResponse": {"ocr": raw_ocr, "faceMatch": raw_face},
        "attempts": attempts + 1,
        "submittedAt": now.isoformat(),
    }
    append_event(session, contract.id, actor.actor, f"identity_{status.value}", {
        "score": score,
        "reasons": decision.reasons,
    })
    save_contract(session, contract)
    logger.info("Identity check for contract %s: %s", contract.id, status.value)
    emitter.identity_checked(contract)
    return contract
