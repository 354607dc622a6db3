"""Template required-field checks that gate signing and sending."""

from typing import Any, Dict, Iterable, List
from .errors import RequiredFieldsMissing
from .models import Contract
from .normalize import is_empty

_MISSING = object()


def build_data_root(contract: Contract) -> Dict[str, Any]:
    return {
        "A": contract.party_a or {},
        "B": contract.party_b or {},
        "contract": contract.contract_terms or {},
        "room": contract.room_snapshot or {},
    }


def _walk(root: Any, key: str) -> Any:
    node = root
    for part in key.split("."):
        if isinstance(node, dict):
            node = node.get(part)
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return None
        if node is None:
            return None
    return node


def resolve_field_value(key: str, root: Dict[str, Any], field_values: Iterable[dict]) -> Any:
    """An explicit ``fieldValues`` entry wins over the snapshot path."""
    override = _MISSING
    for entry in field_values or []:
        if entry.get("key") == key:
            override = entry.get("value")
            break
    if override is not _MISSING:
        return override
    return _walk(root, key)


def find_missing_required_fields(descriptors: Iterable[dict], contract: Contract) -> List[dict]:
    root = build_data_root(contract)
    missing = []
    for descriptor in descriptors or []:
        if not descriptor.get("required"):
            continue
        key = descriptor.get("key")
        if not key:
            continue
        value = resolve_field_value(key, root, contract.field_values)
        if is_empty(value):
            missing.append({
                "key": key,
                "pdfField": descriptor.get("pdfField"),
                "type": descriptor.get("type", "text"),
            })
    return missing


def ensure_required_fields(descriptors: Iterable[dict], contract: Contract) -> None:
    missing = find_missing_required_fields(descriptors, contract)
    if missing:
        raise RequiredFieldsMissing(missing)
