"""Encryption of per-user API keys stored alongside user settings."""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from pocket_rag.core.errors import ConfigurationError

IV_LENGTH = 16
TAG_LENGTH = 16


def _derive_key(master_key: str) -> bytes:
    if not master_key:
        raise ConfigurationError("MASTER_KEY not configured")
    return master_key[:32].ljust(32, "0").encode("utf-8")[:32]


def encrypt_secret(plaintext: str, master_key: str) -> str:
    """Encrypt ``plaintext`` as hex ``iv | tag | ciphertext``."""
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(master_key)).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return (iv + tag + ciphertext).hex()


def decrypt_secret(encrypted: str, master_key: str) -> str:
    """Reverse :func:`encrypt_secret`; raises ConfigurationError on a bad key or payload."""
    key = _derive_key(master_key)
    try:
        raw = bytes.fromhex(encrypted)
    except ValueError as exc:
        raise ConfigurationError("Encrypted secret is not valid hex") from exc
    if len(raw) < IV_LENGTH + TAG_LENGTH:
        raise ConfigurationError("Encrypted secret is truncated")
    iv = raw[:IV_LENGTH]
    tag = raw[IV_LENGTH : IV_LENGTH + TAG_LENGTH]
    ciphertext = raw[IV_LENGTH + TAG_LENGTH :]
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise ConfigurationError("Encrypted secret could not be decrypted") from exc
    return plaintext.decode("utf-8")


__all__ = ["encrypt_secret", "decrypt_secret"]
