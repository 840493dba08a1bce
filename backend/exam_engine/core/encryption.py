"""
At-rest encryption for question content.

Question text, option text and explanations may be stored as a JSON
envelope::

    {"ciphertext": "...", "iv": "...", "tag": "...", "salt": "..."}

(all base64). Each field gets its own random salt and IV; the AES-256-GCM
key is derived from ``QUESTION_ENCRYPTION_KEY`` with PBKDF2-HMAC-SHA256.
Values that are not an envelope are treated as plaintext and returned as-is,
so encrypted and plaintext questions can coexist in one bank.
"""
import base64
import json
import os
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from exam_engine.core.config import settings

IV_LENGTH = 12
TAG_LENGTH = 16
SALT_LENGTH = 32
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100000

_ENVELOPE_KEYS = frozenset({"ciphertext", "iv", "tag", "salt"})


class DecryptionError(Exception):
    """Raised when an encrypted field cannot be decrypted."""


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def _parse_envelope(value: str) -> Optional[Dict[str, str]]:
    stripped = value.lstrip()
    if not stripped.startswith("{"):
        return None
    try:
        parsed = json.loads(stripped)
    except ValueError:
        return None
    if not isinstance(parsed, dict) or not _ENVELOPE_KEYS.issubset(parsed):
        return None
    return parsed


def is_encrypted(value: Optional[str]) -> bool:
    """Whether ``value`` is an encryption envelope."""
    return value is not None and _parse_envelope(value) is not None


def encrypt_field(plaintext: str, passphrase: Optional[str] = None) -> str:
    """
    Encrypt a single field into a JSON envelope.

    Args:
        plaintext: Value to encrypt
        passphrase: Key passphrase (defaults to ``settings.QUESTION_ENCRYPTION_KEY``)

    Returns:
        JSON envelope string suitable for storing in a text column

    Raises:
        ValueError: If no passphrase is configured
    """
    passphrase = passphrase or settings.QUESTION_ENCRYPTION_KEY
    if not passphrase:
        raise ValueError("QUESTION_ENCRYPTION_KEY is not configured")

    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(passphrase, salt)).encrypt(
        iv, plaintext.encode("utf-8"), None
    )
    # AESGCM appends the tag to the ciphertext; the envelope stores them apart.
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    envelope = {
        "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
        "iv": base64.b64encode(iv).decode("ascii"),
        "tag": base64.b64encode(tag).decode("ascii"),
        "salt": base64.b64encode(salt).decode("ascii"),
    }
    return json.dumps(envelope)


def decrypt_field(value: Optional[str], passphrase: Optional[str] = None) -> Optional[str]:
    """
    Decrypt a field if it is an envelope; pass plaintext through.

    Args:
        value: Stored column value
        passphrase: Key passphrase (defaults to ``settings.QUESTION_ENCRYPTION_KEY``)

    Returns:
        Plaintext value, or None when ``value`` is None

    Raises:
        DecryptionError: If the value is an envelope but cannot be decrypted
            (missing key, wrong key, or tampered data)
    """
    if value is None:
        return None
    envelope = _parse_envelope(value)
    if envelope is None:
        return value

    passphrase = passphrase or settings.QUESTION_ENCRYPTION_KEY
    if not passphrase:
        raise DecryptionError(
            "Encrypted question content found but QUESTION_ENCRYPTION_KEY is not set"
        )

    try:
        ciphertext = base64.b64decode(envelope["ciphertext"])
        iv = base64.b64decode(envelope["iv"])
        tag = base64.b64decode(envelope["tag"])
        salt = base64.b64decode(envelope["salt"])
    except (ValueError, TypeError) as e:
        raise DecryptionError(f"Malformed encryption envelope: {e}") from e

    if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
        raise DecryptionError("Malformed encryption envelope: bad IV or tag length")

    try:
        plaintext = AESGCM(_derive_key(passphrase, salt)).decrypt(
            iv, ciphertext + tag, None
        )
    except InvalidTag as e:
        raise DecryptionError("Authentication failed while decrypting field") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted field is not valid UTF-8") from e
