"""Token cache persistence with optional encryption at rest.

The cache is serialized as JSON. When a secret is configured the JSON is
sealed with AES-256-GCM under a SHA-256 digest of the secret and stored as
``hex(nonce):hex(ciphertext)``. Plain JSON is always accepted on read so a
cache written before a secret was configured keeps working.
"""

import hashlib
import json
import os
import secrets
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = structlog.get_logger(__name__)

NONCE_SIZE = 12
DEFAULT_EXPIRES_IN = 3600


class CryptoError(Exception):
    """Raised when the token cache cannot be decrypted or parsed."""
    pass


@dataclass
class TokenCache:
    """OAuth tokens plus the timestamps driving refresh and idle expiry."""

    access_token: str
    expires_at: float
    last_used_at: float
    refresh_token: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_token_response(
        cls,
        data: Dict[str, Any],
        now: float,
        previous_refresh_token: Optional[str] = None
    ) -> "TokenCache":
        """Build a cache from a token endpoint response issued at `now`."""
        if not data.get("access_token"):
            raise ValueError("Token response has no access_token")

        try:
            expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN

        known = {"access_token", "refresh_token", "expires_in", "expires_at", "last_used_at"}
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            expires_at=now + max(expires_in, 1),
            last_used_at=now,
            extra={k: v for k, v in data.items() if k not in known}
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenCache":
        try:
            return cls(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token"),
                expires_at=float(data["expires_at"]),
                last_used_at=float(data.get("last_used_at") or 0),
                extra=dict(data.get("extra") or {})
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CryptoError(f"Token cache is malformed: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def is_idle(self, now: float, idle_timeout: float) -> bool:
        return bool(self.last_used_at) and now - self.last_used_at > idle_timeout

    def needs_touch(self, now: float, touch_interval: float) -> bool:
        return not self.last_used_at or now - self.last_used_at > touch_interval

    def is_fresh(self, now: float, margin: float) -> bool:
        return now < self.expires_at - margin


def _derive_key(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt_data(data: Dict[str, Any], secret: Optional[str]) -> str:
    """Serialize `data`, sealing it when a secret is configured."""
    text = json.dumps(data)
    if not secret:
        return text

    nonce = secrets.token_bytes(NONCE_SIZE)
    ciphertext = AESGCM(_derive_key(secret)).encrypt(nonce, text.encode("utf-8"), None)
    return f"{nonce.hex()}:{ciphertext.hex()}"


def decrypt_data(text: str, secret: Optional[str]) -> Dict[str, Any]:
    """Inverse of `encrypt_data`.

    Raises:
        CryptoError: If the content looks encrypted but cannot be opened with
            the configured secret, or is not valid JSON
    """
    stripped = text.strip()

    if stripped.startswith("{"):
        try:
            return json.loads(stripped)
        except json.JSONDecodeError as e:
            raise CryptoError(f"Token cache is not valid JSON: {e}")

    if not secret:
        raise CryptoError("Token cache is encrypted but no secret is configured")

    parts = stripped.split(":")
    if len(parts) != 2:
        raise CryptoError("Invalid cache format or encrypted with a different key")

    try:
        nonce = bytes.fromhex(parts[0])
        ciphertext = bytes.fromhex(parts[1])
        plaintext = AESGCM(_derive_key(secret)).decrypt(nonce, ciphertext, None)
        data = json.loads(plaintext.decode("utf-8"))
    except InvalidTag:
        raise CryptoError("Token cache was encrypted with a different secret")
    except ValueError as e:
        raise CryptoError(f"Token cache could not be decrypted: {e}")

    if not isinstance(data, dict):
        raise CryptoError("Token cache does not contain an object")
    return data


class TokenStore:
    """Reads and writes the token cache file."""

    def __init__(self, path: Union[str, Path], secret: Optional[str] = None):
        self.path = Path(path)
        self.secret = secret

    @property
    def encrypted(self) -> bool:
        return bool(self.secret)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> TokenCache:
        content = self.path.read_text(encoding="utf-8")
        return TokenCache.from_dict(decrypt_data(content, self.secret))

    def save(self, cache: TokenCache) -> None:
        content = encrypt_data(cache.to_dict(), self.secret)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)

        logger.debug("Token cache saved", encrypted=self.encrypted)

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)
        logger.debug("Token cache removed", path=str(self.path))
