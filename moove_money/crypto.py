"""
Ed25519 account identities for signing ledger invocations.

Uses Ed25519 signatures via PyNaCl. The rest of the package only relies on
``address``, ``public_key_hex`` and ``sign(message)``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

PRIVATE_KEY_PREFIX = "ed25519-priv-"
PUBLIC_KEY_PREFIX = "ed25519-pub-"

# Authentication-key scheme byte for single Ed25519 keys.
ED25519_SCHEME = b"\x00"


def _strip_hex(value: str, prefix: str) -> str:
    value = value.strip()
    if value.startswith(prefix):
        value = value[len(prefix):]
    if value.startswith("0x"):
        value = value[2:]
    return value


def address_from_public_key(public_key: bytes) -> str:
    """Derive the account address: sha3-256(public_key || scheme)."""
    return "0x" + hashlib.sha3_256(public_key + ED25519_SCHEME).hexdigest()


class LocalAccount:
    """
    An account whose private key is held in memory.

    Example:
        >>> account = LocalAccount.generate()
        >>> signature = account.sign(b"payload")
    """

    def __init__(self, signing_key: SigningKey):
        self._signing_key = signing_key
        self.address = address_from_public_key(bytes(signing_key.verify_key))

    @classmethod
    def generate(cls) -> "LocalAccount":
        return cls(SigningKey.generate())

    @classmethod
    def from_private_key(cls, private_key: str) -> "LocalAccount":
        """
        Load an account from a hex private key.

        Accepts the Movement CLI form (``ed25519-priv-0x...``) as well as
        bare hex with or without ``0x``.
        """
        key_hex = _strip_hex(private_key, PRIVATE_KEY_PREFIX)
        return cls(SigningKey(key_hex, encoder=HexEncoder))

    @property
    def public_key_hex(self) -> str:
        return "0x" + self._signing_key.verify_key.encode(encoder=HexEncoder).decode("utf-8")

    @property
    def private_key_hex(self) -> str:
        return "0x" + self._signing_key.encode(encoder=HexEncoder).decode("utf-8")

    def sign(self, message: bytes) -> bytes:
        return self._signing_key.sign(message).signature

    def export(self) -> "AccountRecord":
        return AccountRecord(
            address=self.address,
            private_key=PRIVATE_KEY_PREFIX + self.private_key_hex,
            public_key=PUBLIC_KEY_PREFIX + self.public_key_hex,
        )

    def __repr__(self) -> str:
        return f"LocalAccount({self.address})"


@dataclass
class AccountRecord:
    """Serializable form of a generated account."""

    address: str
    private_key: str
    public_key: str


def verify_signature(public_key_hex: str, message: bytes, signature: bytes) -> bool:
    """
    Verify an Ed25519 signature.

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        verify_key = VerifyKey(_strip_hex(public_key_hex, PUBLIC_KEY_PREFIX), encoder=HexEncoder)
        verify_key.verify(message, signature)
        return True
    except BadSignatureError:
        return False
