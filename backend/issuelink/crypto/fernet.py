from __future__ import annotations

import json

from cryptography.fernet import Fernet, InvalidToken

from issuelink.core.settings import get_settings


def _fernet(key: str | None = None) -> Fernet:
    if key is None:
        key = get_settings().fernet_key
    return Fernet(key.encode("utf-8"))


def encrypt_str(value: str) -> str:
    return _fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_str(value: str) -> str:
    try:
        return _fernet().decrypt(value.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise ValueError("Invalid encrypted token") from e


def seal_json(payload: dict, *, key: str) -> str:
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return _fernet(key).encrypt(raw.encode("utf-8")).decode("utf-8")


def open_json(token: str, *, key: str) -> dict:
    try:
        raw = _fernet(key).decrypt(token.encode("utf-8"))
    except InvalidToken as e:
        raise ValueError("Invalid sealed payload") from e
    data = json.loads(raw.decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Sealed payload is not an object")
    return data
