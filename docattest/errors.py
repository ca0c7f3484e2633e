"""
DOCATTEST Error Taxonomy

Every precondition failure in the attestation core surfaces as one of the
exceptions below. Each carries a stable machine-readable ``code`` and the
context that produced it, so callers (CLI, service adapters, audit log) can
report the failure without parsing messages.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict


class DocumentAttestationError(Exception):
    """Base exception for all attestation core failures."""

    code = "error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "context": {k: v for k, v in self.context.items() if v is not None},
        }


class NotFound(DocumentAttestationError):
    """Referenced document (or registry entry) does not exist."""
    code = "not_found"


class Unauthorized(DocumentAttestationError):
    """Caller lacks the required role or ownership."""
    code = "unauthorized"


class UnauthorizedVerifier(DocumentAttestationError):
    """Supplied identity is not a member of the verifier directory."""
    code = "unauthorized_verifier"


class InvalidInput(DocumentAttestationError):
    """Malformed or mismatched arguments."""
    code = "invalid_input"


class DuplicateId(DocumentAttestationError):
    """External id is already bound to a document."""
    code = "duplicate_id"


class InvalidState(DocumentAttestationError):
    """Operation is not valid for the document's current status."""
    code = "invalid_state"


class AlreadyVerified(DocumentAttestationError):
    """Field attestation latch is already set."""
    code = "already_verified"


class ThresholdNotMet(DocumentAttestationError):
    """Verified field count has not reached the document threshold."""
    code = "threshold_not_met"


class AlreadyExists(DocumentAttestationError):
    """Ownership registry collision."""
    code = "already_exists"


class InvalidIdentity(DocumentAttestationError):
    """Null identity used where a real identity is required."""
    code = "invalid_identity"


class ReentrantCall(DocumentAttestationError):
    """A mutation was entered again before the enclosing one committed."""
    code = "reentrant_call"


class InvalidSignature(Unauthorized):
    """Attestation evidence rejected by the configured signature policy."""
    code = "invalid_signature"


class InvariantViolation(Exception):
    """Internal state machine invariant violated; indicates a bug, not a caller error."""
    pass
