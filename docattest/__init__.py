"""
DOCATTEST: Document Field Attestation Registry

Owners declare documents as a set of field hashes and name, for each field,
the one authorized verifier allowed to attest it. A document is VERIFIED once
the number of attested fields reaches its threshold.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                       DOCUMENT ATTESTATION CORE                          │
    │                                                                          │
    │  CONTROL                                                                 │
    │    lifecycle.py     State machine, authorization gates, serialization   │
    │    signatures.py    Optional attestation evidence policies (Ed25519)    │
    │                                                                          │
    │  REGISTRIES                                                              │
    │    ownership.py     Mint-only owner mapping and per-owner balances      │
    │    verifiers.py     Administrator-controlled verifier allow-list        │
    │    documents.py     Document metadata, thresholds, statuses, ids        │
    │    fields.py        Field -> verifier assignments and one-way latches   │
    │                                                                          │
    │  SUPPORT                                                                 │
    │    events.py        Notifications: append-only store and sync bus       │
    │    hardening.py     Validation, execution guard, invariant checks       │
    │    observability.py Structured logging and hash-chained audit trail     │
    │    config.py        YAML + environment configuration                    │
    │    snapshot.py      Schema-validated JSON persistence                   │
    │    cli.py           docattest command line                              │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Field hash: opaque identifier of one document field, typically a digest
    of the field's name and value. Only the hash is ever stored.

    Verifier: identity on the administrator's allow-list. Only listed
    identities can be assigned to fields; removal does not revoke existing
    assignments.

    Threshold: ``min_field_verify``. Promotion to VERIFIED fires on the
    attestation that makes the verified count exactly equal to it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.3.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import DOCATTEST modules on first access."""

    if name in ("DocumentLifecycleController",):
        from docattest import lifecycle
        return getattr(lifecycle, name)

    if name in ("Document", "DocumentStatus", "DocumentStore", "UNBOUND_DOCUMENT_ID"):
        from docattest import documents
        return getattr(documents, name)

    if name in ("FieldAssignment", "FieldVerificationLedger"):
        from docattest import fields
        return getattr(fields, name)

    if name in ("OwnershipRegistry",):
        from docattest import ownership
        return getattr(ownership, name)

    if name in ("AdminCapability", "VerifierDirectory"):
        from docattest import verifiers
        return getattr(verifiers, name)

    if name in ("DocumentAttestationError", "NotFound", "Unauthorized", "UnauthorizedVerifier",
                "InvalidInput", "DuplicateId", "InvalidState", "AlreadyVerified",
                "ThresholdNotMet", "AlreadyExists", "InvalidIdentity", "ReentrantCall",
                "InvalidSignature", "InvariantViolation"):
        from docattest import errors
        return getattr(errors, name)

    if name in ("Event", "EventBus", "EventStore", "EventRecord", "DocumentCreated",
                "FieldAssignmentAdded", "VerifierSetChanged", "FieldVerified",
                "DocumentVerified"):
        from docattest import events
        return getattr(events, name)

    if name in ("SignaturePolicy", "AcceptAnySignature", "Ed25519SignaturePolicy",
                "sign_attestation"):
        from docattest import signatures
        return getattr(signatures, name)

    if name in ("NULL_ADDRESS", "field_hash"):
        from docattest import hardening
        return getattr(hardening, name)

    if name in ("export_state", "restore_state", "save_snapshot", "load_snapshot",
                "state_lock", "SnapshotError"):
        from docattest import snapshot
        return getattr(snapshot, name)

    raise AttributeError(f"module 'docattest' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Control
    "DocumentLifecycleController",
    # Registries
    "Document",
    "DocumentStatus",
    "DocumentStore",
    "UNBOUND_DOCUMENT_ID",
    "FieldAssignment",
    "FieldVerificationLedger",
    "OwnershipRegistry",
    "AdminCapability",
    "VerifierDirectory",
    # Errors
    "DocumentAttestationError",
    "NotFound",
    "Unauthorized",
    "UnauthorizedVerifier",
    "InvalidInput",
    "DuplicateId",
    "InvalidState",
    "AlreadyVerified",
    "ThresholdNotMet",
    "AlreadyExists",
    "InvalidIdentity",
    "ReentrantCall",
    "InvalidSignature",
    "InvariantViolation",
    # Events
    "Event",
    "EventBus",
    "EventStore",
    "EventRecord",
    "DocumentCreated",
    "FieldAssignmentAdded",
    "VerifierSetChanged",
    "FieldVerified",
    "DocumentVerified",
    # Signatures
    "SignaturePolicy",
    "AcceptAnySignature",
    "Ed25519SignaturePolicy",
    "sign_attestation",
    # Helpers
    "NULL_ADDRESS",
    "field_hash",
    # Persistence
    "export_state",
    "restore_state",
    "save_snapshot",
    "load_snapshot",
    "state_lock",
    "SnapshotError",
]
