"""
DOCATTEST Attestation Evidence Policies

The core treats the ``signature`` passed to ``verify`` as opaque evidence.
Deployments that want it checked plug a SignaturePolicy into the controller;
the default accepts any value, including none.

Ed25519SignaturePolicy verifies a raw Ed25519 signature (base64url, no
padding) by the attestor's registered key over the canonical attestation
message ``{"document_id": ..., "field_hash": ...}``.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import base64
import binascii
from abc import ABC, abstractmethod
from typing import Any, Dict, Union

from cryptography.exceptions import InvalidSignature as CryptoInvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from docattest.canonical import jcs_canonicalize
from docattest.errors import InvalidIdentity, InvalidSignature
from docattest.hardening import Validators


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


def attestation_message(document_id: int, field_hash: str) -> bytes:
    """Canonical bytes an attestor signs for one field of one document."""
    return jcs_canonicalize({"document_id": document_id, "field_hash": field_hash})


def sign_attestation(private_key: Ed25519PrivateKey, document_id: int, field_hash: str) -> str:
    return b64url_encode(private_key.sign(attestation_message(document_id, field_hash)))


class SignaturePolicy(ABC):
    """Decides whether attestation evidence is acceptable."""

    @abstractmethod
    def check(self, document_id: int, field_hash: str, attestor: str, signature: Any) -> None:
        """Raise InvalidSignature to reject; return None to accept."""


class AcceptAnySignature(SignaturePolicy):
    """Reference behavior: evidence is carried through unvalidated."""

    def check(self, document_id: int, field_hash: str, attestor: str, signature: Any) -> None:
        return None


class Ed25519SignaturePolicy(SignaturePolicy):
    """Require an Ed25519 signature by the attestor's registered key."""

    def __init__(self):
        self._keys: Dict[str, Ed25519PublicKey] = {}

    def register_key(self, identity: str, public_key: Union[bytes, Ed25519PublicKey]) -> None:
        if Validators.is_null_identity(identity):
            raise InvalidIdentity("Cannot register a key for the null identity")
        if isinstance(public_key, bytes):
            if len(public_key) != 32:
                raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(public_key)}")
            public_key = Ed25519PublicKey.from_public_bytes(public_key)
        self._keys[identity] = public_key

    def check(self, document_id: int, field_hash: str, attestor: str, signature: Any) -> None:
        key = self._keys.get(attestor)
        if key is None:
            raise InvalidSignature(
                f"No signing key registered for {attestor}",
                document_id=document_id,
                field_hash=field_hash,
            )

        if isinstance(signature, str):
            try:
                signature = b64url_decode(signature)
            except (binascii.Error, ValueError) as e:
                raise InvalidSignature(
                    f"Signature is not base64url: {e}",
                    document_id=document_id,
                    field_hash=field_hash,
                ) from e
        if not isinstance(signature, bytes) or len(signature) != 64:
            raise InvalidSignature(
                "Ed25519 signature must be 64 bytes",
                document_id=document_id,
                field_hash=field_hash,
            )

        try:
            key.verify(signature, attestation_message(document_id, field_hash))
        except CryptoInvalidSignature as e:
            raise InvalidSignature(
                f"Signature does not verify for {attestor}",
                document_id=document_id,
                field_hash=field_hash,
            ) from e
