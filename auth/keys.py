"""
auth/keys.py -- RSA signing key for the token service.

The private key lives at Settings.private_key_path (<config_path>/keys/auth/private.pem),
PKCS#8 PEM, unencrypted, file mode 0600. It is created on first start and
reused afterwards, so tokens survive restarts. Deleting the file logs every
user out at the next restart.

KeyPair carries PEM strings because python-jose accepts PEM directly for
RS256 and that keeps this module the only place that touches the
cryptography primitives.

A key file that exists but cannot be parsed raises KeyLoadError. That is
fatal at startup; the file is never silently replaced.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger("hearthgate.auth.keys")

_KEY_SIZE = 2048
_PUBLIC_EXPONENT = 65537


class KeyLoadError(RuntimeError):
    """The signing key file exists but is unreadable or corrupt."""


@dataclass(frozen=True)
class KeyPair:
    private_pem: str
    public_pem: str


def _pair_from_private(private_key: rsa.RSAPrivateKey) -> KeyPair:
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return KeyPair(private_pem=private_pem.decode("ascii"), public_pem=public_pem.decode("ascii"))


def generate_key_pair() -> KeyPair:
    """Return a fresh 2048-bit RSA key pair."""
    private_key = rsa.generate_private_key(public_exponent=_PUBLIC_EXPONENT, key_size=_KEY_SIZE)
    return _pair_from_private(private_key)


def load_key_pair(path: Path) -> KeyPair:
    try:
        private_key = serialization.load_pem_private_key(path.read_bytes(), password=None)
    except (OSError, ValueError, TypeError) as exc:
        raise KeyLoadError(f"Cannot load signing key from {path}: {exc}") from exc
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise KeyLoadError(f"Signing key at {path} is not an RSA key.")
    return _pair_from_private(private_key)


def load_or_create_key_pair(path: Path) -> KeyPair:
    """Load the key at path, generating and persisting a new one if the file is missing."""
    if path.exists():
        key_pair = load_key_pair(path)
        logger.info("Loaded signing key from %s", path)
        return key_pair

    key_pair = generate_key_pair()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # O_EXCL: never clobber a key another process wrote in the meantime.
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as fh:
            fh.write(key_pair.private_pem)
    except OSError as exc:
        raise KeyLoadError(f"Cannot write signing key to {path}: {exc}") from exc
    logger.warning("Generated a new signing key at %s", path)
    return key_pair
