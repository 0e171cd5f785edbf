"""Read and check service account key files before building Sheets credentials."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

__all__ = [
    "CredentialsFileInvalidError",
    "REQUIRED_FIELDS",
    "load_service_account_data",
]

SERVICE_ACCOUNT_TYPE = "service_account"

REQUIRED_FIELDS: Sequence[str] = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
    "token_uri",
)


class CredentialsFileInvalidError(Exception):
    """The key file cannot be read or does not describe a service account."""


def _read_payload(path: Path) -> Mapping[str, Any]:
    try:
        text = path.read_text(encoding="utf-8-sig").strip()
    except OSError as exc:
        raise CredentialsFileInvalidError(f"Credentials file could not be read: {exc}") from exc
    if not text:
        raise CredentialsFileInvalidError("Service account JSON is empty.")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CredentialsFileInvalidError(f"JSON parse error: {exc.msg}") from exc
    if not isinstance(payload, Mapping):
        raise CredentialsFileInvalidError("Service account JSON must be an object.")
    return payload


def _missing_fields(payload: Mapping[str, Any]) -> List[str]:
    missing = {
        name
        for name in REQUIRED_FIELDS
        if not isinstance(payload.get(name), str) or not payload[name].strip()
    }
    if payload.get("type") != SERVICE_ACCOUNT_TYPE:
        missing.add("type")
    return sorted(missing)


def _pem(key: str) -> str:
    # Keys pasted through environment files often carry literal "\n" escapes
    text = key.replace("\r\n", "\n").replace("\r", "\n").replace("\\n", "\n")
    return text if text.endswith("\n") else text + "\n"


def load_service_account_data(path: Path) -> Dict[str, Any]:
    """Return the key file's content with a normalised PEM private key.

    The file itself is left untouched.
    """

    payload = _read_payload(Path(path).expanduser())
    missing = _missing_fields(payload)
    if missing:
        raise CredentialsFileInvalidError(f"JSON missing fields: {', '.join(missing)}")

    info = dict(payload)
    info["private_key"] = _pem(info["private_key"])
    return info
