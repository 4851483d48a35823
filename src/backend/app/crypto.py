import base64
import binascii
import hashlib
import json
from typing import Any, Dict, Optional
from nacl import exceptions as nacl_exc
from nacl import secret, utils

from .config import encryption_key


def _derive_key(secret_key: str) -> bytes:
    # Derive a 32-byte key via SHA-256
    return hashlib.sha256(secret_key.encode("utf-8")).digest()


def _box() -> secret.SecretBox:
    return secret.SecretBox(_derive_key(encryption_key()))


def encrypt_text(plain: str) -> str:
    box = _box()
    nonce = utils.random(secret.SecretBox.NONCE_SIZE)
    ct = box.encrypt(plain.encode("utf-8"), nonce)
    # urlsafe so the blob can travel in headers and query strings untouched
    return base64.urlsafe_b64encode(bytes(ct)).decode("ascii")


def decrypt_text(enc_b64: str) -> Optional[str]:
    if not enc_b64:
        return None
    try:
        raw = base64.urlsafe_b64decode(enc_b64.encode("ascii"))
        pt = _box().decrypt(raw)
        return pt.decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError, TypeError, nacl_exc.CryptoError):
        return None


def seal(data: Dict[str, Any]) -> str:
    """Encrypt a JSON-serializable mapping into an opaque token."""
    return encrypt_text(json.dumps(data, separators=(",", ":")))


def unseal(token: str) -> Optional[Dict[str, Any]]:
    """Inverse of :func:`seal`. Returns None for anything that does not open to a JSON object."""
    plain = decrypt_text(token)
    if plain is None:
        return None
    try:
        data = json.loads(plain)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
