"""Encrypted persistence for the application session issued after verification."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING, cast

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from sqlalchemy import text

from phoneverify.verification.exchange import StoredSession

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from .db import SessionFactory

logger = logging.getLogger(__name__)

SEAL_VERSION = 1
SESSION_KEY_BYTES = 32
AES_GCM_NONCE_BYTES = 12
_HKDF_INFO = b"phoneverify/app-session-token/v1"
_DECRYPTION_ERROR_MESSAGE = "unable to decrypt stored session token with session key"


class SessionStoreError(RuntimeError):
    """Base exception for application session persistence operations."""

    @classmethod
    def undecryptable_token(cls) -> SessionStoreError:
        """Build deterministic error for tokens sealed with another key."""
        return cls(_DECRYPTION_ERROR_MESSAGE)

    @classmethod
    def invalid_user_payload(cls) -> SessionStoreError:
        """Build deterministic error for stored user JSON that is not an object."""
        message = "Stored session user payload is not a JSON object."
        return cls(message)

    @classmethod
    def non_bytes_payload(cls) -> SessionStoreError:
        """Build deterministic decode error for non-bytes token payloads."""
        message = "Stored session token payload is not bytes."
        return cls(message)

    @classmethod
    def empty_secret(cls, path: Path) -> SessionStoreError:
        """Build deterministic error for an empty session secret file."""
        message = f"Session secret file is empty: {path.as_posix()}."
        return cls(message)


def derive_session_key(secret: bytes) -> bytes:
    """Derive the AES-256 session key from configured secret material."""
    return HKDF(
        algorithm=hashes.SHA256(),
        length=SESSION_KEY_BYTES,
        salt=None,
        info=_HKDF_INFO,
    ).derive(secret)


def resolve_session_key(secret_file: Path | None) -> bytes:
    """Load the session secret from disk, or use a per-process ephemeral key."""
    if secret_file is None:
        logger.warning(
            "No session secret configured; stored sessions will not survive restart",
        )
        return derive_session_key(secrets.token_bytes(SESSION_KEY_BYTES))
    secret = secret_file.read_bytes().strip()
    if not secret:
        raise SessionStoreError.empty_secret(secret_file)
    return derive_session_key(secret)


def seal_token(*, token: str, session_key: bytes) -> bytes:
    """Encrypt a session token with AES-GCM under the session key."""
    nonce = secrets.token_bytes(AES_GCM_NONCE_BYTES)
    ciphertext = AESGCM(session_key).encrypt(nonce, token.encode("utf-8"), None)
    payload = {
        "version": SEAL_VERSION,
        "nonce": _encode_bytes(nonce),
        "ciphertext": _encode_bytes(ciphertext),
    }
    return json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")


def open_token(*, sealed: bytes, session_key: bytes) -> str:
    """Decrypt a sealed session token, raising SessionStoreError on mismatch."""
    try:
        payload_obj = cast("object", json.loads(sealed.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SessionStoreError.undecryptable_token() from exc
    if not isinstance(payload_obj, dict):
        raise SessionStoreError.undecryptable_token()
    payload = cast("dict[str, object]", payload_obj)
    if payload.get("version") != SEAL_VERSION:
        raise SessionStoreError.undecryptable_token()

    nonce = _decode_bytes(payload.get("nonce"))
    ciphertext = _decode_bytes(payload.get("ciphertext"))
    try:
        plaintext = AESGCM(session_key).decrypt(nonce, ciphertext, None)
    except (InvalidTag, ValueError) as exc:
        raise SessionStoreError.undecryptable_token() from exc
    return plaintext.decode("utf-8")


class AppSessionStore:
    """Repository for the single persisted application session."""

    _read_session_factory: SessionFactory
    _write_session_factory: SessionFactory
    _session_key: bytes

    def __init__(
        self,
        *,
        read_session_factory: SessionFactory,
        write_session_factory: SessionFactory,
        session_key: bytes,
    ) -> None:
        """Create store with explicit read/write session dependencies."""
        self._read_session_factory = read_session_factory
        self._write_session_factory = write_session_factory
        self._session_key = session_key

    async def save_session(
        self,
        *,
        token: str,
        user: Mapping[str, object],
        phone_number: str,
    ) -> StoredSession:
        """Encrypt and persist the session, replacing any previous one."""
        statement = text(
            """
            INSERT INTO app_sessions (id, token_encrypted, user_json, phone_number)
            VALUES (1, :token_encrypted, :user_json, :phone_number)
            ON CONFLICT(id) DO UPDATE SET
                token_encrypted = excluded.token_encrypted,
                user_json = excluded.user_json,
                phone_number = excluded.phone_number,
                created_at = CURRENT_TIMESTAMP,
                updated_at = CURRENT_TIMESTAMP
            RETURNING created_at
            """,
        )
        async with self._write_session_factory() as session:
            result = await session.execute(
                statement,
                {
                    "token_encrypted": seal_token(
                        token=token,
                        session_key=self._session_key,
                    ),
                    "user_json": json.dumps(dict(user), separators=(",", ":")),
                    "phone_number": phone_number,
                },
            )
            row = result.mappings().one()
            await session.commit()
        row_map = cast("Mapping[str, object]", cast("object", row))
        return StoredSession(
            token=token,
            user=dict(user),
            phone_number=phone_number,
            created_at=_parse_timestamp(row_map.get("created_at")),
        )

    async def load_session(self) -> StoredSession | None:
        """Load and decrypt the stored session, returning None if unset."""
        statement = text(
            """
            SELECT token_encrypted, user_json, phone_number, created_at
            FROM app_sessions
            WHERE id = 1
            """,
        )
        async with self._read_session_factory() as session:
            result = await session.execute(statement)
            row = result.mappings().one_or_none()
        if row is None:
            return None

        row_map = cast("Mapping[str, object]", cast("object", row))
        token = open_token(
            sealed=_coerce_blob_bytes(row_map.get("token_encrypted")),
            session_key=self._session_key,
        )
        return StoredSession(
            token=token,
            user=_decode_user(row_map.get("user_json")),
            phone_number=str(row_map.get("phone_number")),
            created_at=_parse_timestamp(row_map.get("created_at")),
        )

    async def clear_session(self) -> bool:
        """Delete the stored session and return True when one existed."""
        statement = text("DELETE FROM app_sessions WHERE id = 1 RETURNING id")
        async with self._write_session_factory() as session:
            result = await session.execute(statement)
            row = result.mappings().one_or_none()
            await session.commit()
        return row is not None


def _decode_user(value: object) -> dict[str, object]:
    if not isinstance(value, str):
        raise SessionStoreError.invalid_user_payload()
    try:
        decoded = cast("object", json.loads(value))
    except json.JSONDecodeError as exc:
        raise SessionStoreError.invalid_user_payload() from exc
    if not isinstance(decoded, dict):
        raise SessionStoreError.invalid_user_payload()
    return cast("dict[str, object]", decoded)


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    return datetime.fromisoformat(value).replace(tzinfo=UTC)


def _coerce_blob_bytes(value: object) -> bytes:
    """Normalize SQLite BLOB payload variants to plain bytes."""
    if isinstance(value, bytes):
        return value
    if isinstance(value, bytearray):
        return bytes(value)
    if isinstance(value, memoryview):
        return value.tobytes()
    raise SessionStoreError.non_bytes_payload()


def _encode_bytes(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _decode_bytes(encoded: object) -> bytes:
    if not isinstance(encoded, str):
        raise SessionStoreError.undecryptable_token()
    try:
        return base64.b64decode(encoded.encode("ascii"), validate=True)
    except (UnicodeEncodeError, binascii.Error, ValueError) as exc:
        raise SessionStoreError.undecryptable_token() from exc
