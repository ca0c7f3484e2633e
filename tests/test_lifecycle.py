"""
Document lifecycle controller tests.

Covers creation, field assignment, attestation, forced acceptance, the
authorization gates in front of each, and the all-or-nothing behavior of
rejected calls.

Run with: pytest tests/test_lifecycle.py -v

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from docattest.documents import DocumentStatus, UNBOUND_DOCUMENT_ID
from docattest.errors import (
    AlreadyExists,
    AlreadyVerified,
    DuplicateId,
    InvalidIdentity,
    InvalidInput,
    InvalidState,
    NotFound,
    ThresholdNotMet,
    Unauthorized,
    UnauthorizedVerifier,
)
from docattest.events import (
    DocumentCreated,
    DocumentVerified,
    FieldAssignmentAdded,
    FieldVerified,
    VerifierSetChanged,
    document_stream,
)
from docattest.hardening import NULL_ADDRESS
from docattest.lifecycle import DocumentLifecycleController

ADMIN = "0x" + "a" * 40
OWNER = "0x" + "1" * 40
OTHER = "0x" + "2" * 40
V1 = "0x" + "b1" * 20
V2 = "0x" + "b2" * 20
V3 = "0x" + "b3" * 20


def _state(ctl, doc_id):
    """Everything observable about one document, for before/after comparison."""
    doc = ctl.get_document(doc_id)
    return (
        doc.to_dict(),
        [(a.field_hash, a.verifier, a.attested) for a in ctl.get_fields(doc_id)],
        ctl.event_store.total_events,
    )


# =============================================================================
# SCENARIOS
# =============================================================================

class TestScenarios:
    """End-to-end lifecycle walkthroughs."""

    def test_two_verifiers_reach_verified(self, two_field_doc):
        """A: first attestation confirms, second one verifies and notifies."""
        ctl, doc_id = two_field_doc

        assert ctl.verify(V1, doc_id, "h1") is DocumentStatus.CONFIRMING
        doc = ctl.get_document(doc_id)
        assert doc.field_verified_count == 1
        assert not ctl.is_document_verified(doc_id)

        assert ctl.verify(V2, doc_id, "h2") is DocumentStatus.VERIFIED
        doc = ctl.get_document(doc_id)
        assert doc.field_verified_count == 2
        assert ctl.is_document_verified(doc_id)

        stream = ctl.event_store.read_stream(document_stream(doc_id))
        verified = [e for e in stream if isinstance(e, DocumentVerified)]
        assert len(verified) == 1
        assert verified[0].verifier == V2

    def test_non_owner_cannot_add_fields(self, two_field_doc):
        """B: a non-owner is rejected and the document is untouched."""
        ctl, doc_id = two_field_doc
        before = _state(ctl, doc_id)

        with pytest.raises(Unauthorized):
            ctl.add_field_to_verify(OTHER, doc_id, ["h3"], [V3])

        assert _state(ctl, doc_id) == before

    def test_add_fields_after_verified_rejected(self, two_field_doc):
        """C: assignments are frozen once the document is verified."""
        ctl, doc_id = two_field_doc
        ctl.verify(V1, doc_id, "h1")
        ctl.verify(V2, doc_id, "h2")

        with pytest.raises(InvalidState):
            ctl.add_field_to_verify(OWNER, doc_id, ["h3"], [V3])

    def test_accept_requires_threshold_then_idempotent(self, two_field_doc):
        """D: accept fails below threshold, succeeds once met, and repeats cleanly."""
        ctl, doc_id = two_field_doc

        with pytest.raises(ThresholdNotMet):
            ctl.accept(OTHER, doc_id)

        ctl.verify(V1, doc_id, "h1")
        with pytest.raises(ThresholdNotMet):
            ctl.accept(OTHER, doc_id)

        ctl.verify(V2, doc_id, "h2")
        assert ctl.accept(OTHER, doc_id) is DocumentStatus.VERIFIED
        assert ctl.accept(OWNER, doc_id) is DocumentStatus.VERIFIED

        doc = ctl.get_document(doc_id)
        assert doc.status is DocumentStatus.VERIFIED
        assert doc.field_verified_count == 2

    def test_removed_verifier_cannot_be_assigned(self):
        """E: add A and B, remove A, then assigning A fails."""
        ctl = DocumentLifecycleController(ADMIN)
        ctl.set_verifiers(ADMIN, [V1, V2])
        ctl.set_verifiers(ADMIN, [V1], remove=True)

        assert not ctl.is_verifier(V1)
        assert ctl.is_verifier(V2)

        with pytest.raises(UnauthorizedVerifier):
            ctl.create_document(OWNER, 7, "n", "u", "h", 1, ["h1"], [V1])

        doc_id = ctl.create_document(OWNER, 7, "n", "u", "h", 1, ["h1"], [V2])
        with pytest.raises(UnauthorizedVerifier):
            ctl.add_field_to_verify(OWNER, doc_id, ["h2"], [V1])


# =============================================================================
# CREATION
# =============================================================================

class TestCreateDocument:
    """Document creation."""

    def test_ids_start_at_one_and_increase(self, controller):
        a = controller.create_document(OWNER, 1, "a", "u", "h", 1, ["f"], [V1])
        b = controller.create_document(OTHER, 2, "b", "u", "h", 1, ["f"], [V1])
        assert (a, b) == (1, 2)
        assert controller.total_documents() == 2

    def test_creation_records_everything(self, controller):
        doc_id = controller.create_document(OWNER, 55, "Deed", "ipfs://deed", "cafe", 3, ["x", "y"], [V1, V2])

        doc = controller.get_document(doc_id)
        assert doc.owner == OWNER
        assert doc.name == "Deed"
        assert doc.uri == "ipfs://deed"
        assert doc.document_hash == "cafe"
        assert doc.min_field_verify == 3
        assert doc.external_id == 55
        assert doc.field_verified_count == 0
        assert doc.status is DocumentStatus.PENDING

        assert controller.owner_of(doc_id) == OWNER
        assert controller.balance_of(OWNER) == 1
        assert controller.get_uri(doc_id) == "ipfs://deed"
        assert controller.get_document_id_by_external_id(55) == doc_id
        assert controller.get_field_verifier(doc_id, "x") == V1
        assert controller.get_field_verifier(doc_id, "y") == V2

    def test_creation_emits_created_then_assignment(self, controller):
        doc_id = controller.create_document(OWNER, 9, "n", "u", "h", 1, ["f1"], [V1])

        events = controller.event_store.read_stream(document_stream(doc_id))
        assert [type(e) for e in events] == [DocumentCreated, FieldAssignmentAdded]
        assert events[0].owner == OWNER
        assert events[0].document_id == doc_id
        assert events[1].field_hashes == ["f1"]
        assert events[1].verifier_identities == [V1]

    def test_empty_field_arrays_allowed(self, controller):
        doc_id = controller.create_document(OWNER, 9, "n", "u", "h", 0, [], [])
        assert controller.get_fields(doc_id) == []

    def test_length_mismatch_rejected(self, controller):
        with pytest.raises(InvalidInput):
            controller.create_document(OWNER, 9, "n", "u", "h", 1, ["f1", "f2"], [V1])

    def test_duplicate_external_id_rejected(self, controller):
        controller.create_document(OWNER, 9, "n", "u", "h", 1, ["f1"], [V1])
        with pytest.raises(DuplicateId):
            controller.create_document(OTHER, 9, "n2", "u2", "h2", 1, ["f1"], [V1])

    def test_unknown_verifier_rejected(self, controller):
        with pytest.raises(UnauthorizedVerifier):
            controller.create_document(OWNER, 9, "n", "u", "h", 1, ["f1"], [OTHER])

    def test_null_caller_rejected(self, controller):
        with pytest.raises(AlreadyExists):
            controller.create_document(NULL_ADDRESS, 9, "n", "u", "h", 1, ["f1"], [V1])

    def test_failed_creation_consumes_nothing(self, controller):
        """Ids, external ids, balances and events are untouched by a rejected create."""
        with pytest.raises(UnauthorizedVerifier):
            controller.create_document(OWNER, 9, "n", "u", "h", 1, ["f1"], [OTHER])

        assert controller.total_documents() == 0
        assert controller.get_document_id_by_external_id(9) == UNBOUND_DOCUMENT_ID
        assert controller.balance_of(OWNER) == 0
        assert controller.event_store.read_stream(document_stream(1)) == []

        doc_id = controller.create_document(OWNER, 9, "n", "u", "h", 1, ["f1"], [V1])
        assert doc_id == 1

    def test_malformed_arguments_rejected(self, controller):
        with pytest.raises(InvalidInput):
            controller.create_document(OWNER, -1, "n", "u", "h", 1, [], [])
        with pytest.raises(InvalidInput):
            controller.create_document(OWNER, 1, "n", "u", "h", True, [], [])
        with pytest.raises(InvalidInput):
            controller.create_document(OWNER, 1, None, "u", "h", 1, [], [])
        with pytest.raises(InvalidInput):
            controller.create_document(OWNER, 1, "n", "u", "h", 1, "f1", V1)
        with pytest.raises(InvalidInput):
            controller.create_document(OWNER, 1, "n", "u", "h", 1, [" "], [V1])

    def test_duplicate_field_in_call_last_wins(self, controller):
        doc_id = controller.create_document(OWNER, 1, "n", "u", "h", 1, ["f", "f"], [V1, V2])
        assert controller.get_field_verifier(doc_id, "f") == V2
        assert len(controller.get_fields(doc_id)) == 1

    def test_text_arguments_stored_verbatim(self, controller):
        """Control characters and long values are kept exactly as declared."""
        long_uri = "ipfs://" + "q" * 10_000
        doc_id = controller.create_document(
            OWNER, 9, "Deed\x00v2", long_uri, "ab\x00cd", 1, ["f\x00x"], [V1],
        )

        doc = controller.get_document(doc_id)
        assert doc.name == "Deed\x00v2"
        assert doc.uri == long_uri
        assert doc.document_hash == "ab\x00cd"

        created = controller.event_store.read_stream(document_stream(doc_id))[0]
        assert created.document_hash == "ab\x00cd"

        assert controller.verify(V1, doc_id, "f\x00x") is DocumentStatus.VERIFIED
        assert not controller.is_field_verified(doc_id, "fx")

    def test_non_string_caller_rejected(self, controller):
        with pytest.raises(InvalidInput):
            controller.create_document(42, 9, "n", "u", "h", 1, ["f1"], [V1])
        assert controller.total_documents() == 0
        assert controller.get_document_id_by_external_id(9) == UNBOUND_DOCUMENT_ID


# =============================================================================
# FIELD ASSIGNMENT
# =============================================================================

class TestAddFieldToVerify:
    """Owner-driven field assignment."""

    def test_owner_adds_fields_while_pending(self, two_field_doc):
        ctl, doc_id = two_field_doc
        ctl.add_field_to_verify(OWNER, doc_id, ["h3"], [V3])

        assert ctl.get_field_verifier(doc_id, "h3") == V3
        events = ctl.event_store.read_stream(document_stream(doc_id))
        assert isinstance(events[-1], FieldAssignmentAdded)
        assert events[-1].field_hashes == ["h3"]

    def test_reassignment_overwrites_verifier(self, two_field_doc):
        ctl, doc_id = two_field_doc
        ctl.add_field_to_verify(OWNER, doc_id, ["h1"], [V3])

        assert ctl.get_field_verifier(doc_id, "h1") == V3
        with pytest.raises(Unauthorized):
            ctl.verify(V1, doc_id, "h1")
        ctl.verify(V3, doc_id, "h1")

    def test_rejected_while_confirming(self, two_field_doc):
        ctl, doc_id = two_field_doc
        ctl.verify(V1, doc_id, "h1")
        with pytest.raises(InvalidState):
            ctl.add_field_to_verify(OWNER, doc_id, ["h3"], [V3])

    def test_missing_document(self, controller):
        with pytest.raises(NotFound):
            controller.add_field_to_verify(OWNER, 42, ["h"], [V1])

    def test_ownership_checked_before_state(self, two_field_doc):
        ctl, doc_id = two_field_doc
        ctl.verify(V1, doc_id, "h1")
        with pytest.raises(Unauthorized):
            ctl.add_field_to_verify(OTHER, doc_id, ["h3"], [V3])

    def test_rejected_call_leaves_no_partial_assignment(self, two_field_doc):
        ctl, doc_id = two_field_doc
        before = _state(ctl, doc_id)

        with pytest.raises(UnauthorizedVerifier):
            ctl.add_field_to_verify(OWNER, doc_id, ["h3", "h4"], [V3, OTHER])

        assert _state(ctl, doc_id) == before
        assert ctl.get_field_verifier(doc_id, "h3") is None


# =============================================================================
# ATTESTATION
# =============================================================================

class TestVerify:
    """Per-field attestation."""

    def test_only_assigned_verifier(self, two_field_doc):
        ctl, doc_id = two_field_doc
        with pytest.raises(Unauthorized):
            ctl.verify(V2, doc_id, "h1")
        with pytest.raises(Unauthorized):
            ctl.verify(OWNER, doc_id, "h1")

    def test_unknown_field_unauthorized(self, two_field_doc):
        ctl, doc_id = two_field_doc
        with pytest.raises(Unauthorized):
            ctl.verify(V1, doc_id, "nope")

    def test_missing_document(self, controller):
        with pytest.raises(NotFound):
            controller.verify(V1, 99, "h1")

    def test_latch_is_one_way(self, two_field_doc):
        ctl, doc_id = two_field_doc
        ctl.verify(V1, doc_id, "h1")
        before = _state(ctl, doc_id)

        with pytest.raises(AlreadyVerified):
            ctl.verify(V1, doc_id, "h1")

        assert _state(ctl, doc_id) == before
        assert ctl.is_field_verified(doc_id, "h1")

    def test_field_verified_event(self, two_field_doc):
        ctl, doc_id = two_field_doc
        ctl.verify(V1, doc_id, "h1", signature="opaque-evidence")

        last = ctl.event_store.read_stream(document_stream(doc_id))[-1]
        assert isinstance(last, FieldVerified)
        assert last.attestor == V1
        assert last.field_hash == "h1"

    def test_removed_verifier_keeps_existing_assignment(self, two_field_doc):
        ctl, doc_id = two_field_doc
        ctl.set_verifiers(ADMIN, [V1], remove=True)
        assert ctl.verify(V1, doc_id, "h1") is DocumentStatus.CONFIRMING

    def test_is_field_verified_never_fails(self, controller):
        assert controller.is_field_verified(12345, "anything") is False

    def test_malformed_caller_or_field_hash_rejected(self, two_field_doc):
        ctl, doc_id = two_field_doc
        before = _state(ctl, doc_id)

        with pytest.raises(InvalidInput):
            ctl.verify(V1, doc_id, ["h1"])
        with pytest.raises(InvalidInput):
            ctl.verify(V1, doc_id, None)
        with pytest.raises(InvalidInput):
            ctl.verify(7, doc_id, "h1")
        with pytest.raises(InvalidInput):
            ctl.accept(7, doc_id)
        with pytest.raises(InvalidInput):
            ctl.add_field_to_verify(7, doc_id, ["h3"], [V3])
        with pytest.raises(InvalidInput):
            ctl.set_verifiers(7, [V3])

        assert _state(ctl, doc_id) == before


# =============================================================================
# THRESHOLD EDGE CASES
# =============================================================================

class TestThreshold:
    """Exact-equality promotion."""

    def test_single_call_can_pass_through_confirming(self, controller):
        doc_id = controller.create_document(OWNER, 1, "n", "u", "h", 1, ["a", "b"], [V1, V2])
        assert controller.verify(V1, doc_id, "a") is DocumentStatus.VERIFIED

    def test_overshoot_does_not_reemit_or_regress(self, controller):
        doc_id = controller.create_document(OWNER, 1, "n", "u", "h", 1, ["a", "b"], [V1, V2])
        controller.verify(V1, doc_id, "a")
        controller.verify(V2, doc_id, "b")

        doc = controller.get_document(doc_id)
        assert doc.status is DocumentStatus.VERIFIED
        assert doc.field_verified_count == 2
        stream = controller.event_store.read_stream(document_stream(doc_id))
        assert sum(isinstance(e, DocumentVerified) for e in stream) == 1

        with pytest.raises(ThresholdNotMet):
            controller.accept(OWNER, doc_id)

    def test_zero_threshold_never_auto_promotes(self, controller):
        doc_id = controller.create_document(OWNER, 1, "n", "u", "h", 0, ["a"], [V1])
        assert controller.verify(V1, doc_id, "a") is DocumentStatus.CONFIRMING
        with pytest.raises(ThresholdNotMet):
            controller.accept(OWNER, doc_id)

    def test_zero_threshold_accept_before_any_verify(self, controller):
        doc_id = controller.create_document(OWNER, 1, "n", "u", "h", 0, ["a"], [V1])
        assert controller.accept(OTHER, doc_id) is DocumentStatus.VERIFIED
        with pytest.raises(InvalidState):
            controller.add_field_to_verify(OWNER, doc_id, ["b"], [V2])

    def test_unreachable_threshold_stays_confirming(self, controller):
        doc_id = controller.create_document(OWNER, 1, "n", "u", "h", 5, ["a"], [V1])
        controller.verify(V1, doc_id, "a")
        assert controller.get_document(doc_id).status is DocumentStatus.CONFIRMING

    def test_accept_emits_on_every_success(self, two_field_doc):
        ctl, doc_id = two_field_doc
        ctl.verify(V1, doc_id, "h1")
        ctl.verify(V2, doc_id, "h2")
        ctl.accept(OTHER, doc_id)
        ctl.accept(OTHER, doc_id)

        stream = ctl.event_store.read_stream(document_stream(doc_id))
        verifiers = [e.verifier for e in stream if isinstance(e, DocumentVerified)]
        assert verifiers == [V2, OTHER, OTHER]


# =============================================================================
# VERIFIER DIRECTORY AND QUERIES
# =============================================================================

class TestVerifierAdministration:
    """Administrator gate."""

    def test_only_admin(self, controller):
        with pytest.raises(Unauthorized):
            controller.set_verifiers(OWNER, [OTHER])
        assert not controller.is_verifier(OTHER)

    def test_null_verifier_rejected_atomically(self, controller):
        with pytest.raises(InvalidIdentity):
            controller.set_verifiers(ADMIN, [OTHER, NULL_ADDRESS])
        assert not controller.is_verifier(OTHER)

    def test_change_notification(self, controller):
        controller.set_verifiers(ADMIN, [OTHER])
        last = controller.events()[-1].event
        assert isinstance(last, VerifierSetChanged)
        assert last.identities == [OTHER]
        assert last.removed is False

    def test_strict_identities(self):
        ctl = DocumentLifecycleController(ADMIN, strict_identities=True)
        with pytest.raises(InvalidInput):
            ctl.set_verifiers(ADMIN, ["alice"])
        ctl.set_verifiers(ADMIN, ["did:key:z6Mk123", V1])
        assert ctl.is_verifier("did:key:z6Mk123")

    def test_null_admin_rejected(self):
        with pytest.raises(InvalidIdentity):
            DocumentLifecycleController(NULL_ADDRESS)


class TestQueries:
    """Read surface."""

    def test_missing_documents(self, controller):
        with pytest.raises(NotFound):
            controller.get_uri(1)
        with pytest.raises(NotFound):
            controller.is_document_verified(1)
        with pytest.raises(NotFound):
            controller.owner_of(1)
        with pytest.raises(NotFound):
            controller.get_fields(1)

    def test_unbound_external_id(self, controller):
        assert controller.get_document_id_by_external_id(404) == UNBOUND_DOCUMENT_ID

    def test_balance_of_null_identity(self, controller):
        with pytest.raises(InvalidIdentity):
            controller.balance_of(NULL_ADDRESS)
        with pytest.raises(InvalidIdentity):
            controller.balance_of("")

    def test_get_document_is_a_copy(self, two_field_doc):
        ctl, doc_id = two_field_doc
        copy = ctl.get_document(doc_id)
        copy.field_verified_count = 99
        assert ctl.get_document(doc_id).field_verified_count == 0


# =============================================================================
# AUDIT TRAIL
# =============================================================================

class TestAudit:
    """Every mutation outcome is audited."""

    def test_success_and_denied_recorded(self, two_field_doc):
        ctl, doc_id = two_field_doc
        with pytest.raises(Unauthorized):
            ctl.verify(OTHER, doc_id, "h1")
        ctl.verify(V1, doc_id, "h1")

        denied = ctl.audit.get_events(outcome="denied")
        assert denied[-1].action == "verify"
        assert denied[-1].details["error"] == "unauthorized"
        success = ctl.audit.get_events(actor=V1, outcome="success")
        assert success[-1].resource_id == str(doc_id)
        assert ctl.audit.verify_chain() == (True, None)

    def test_audit_disabled_by_config(self):
        from docattest.config import get_config_manager

        get_config_manager().set("observability.audit_enabled", False)
        ctl = DocumentLifecycleController(ADMIN)
        assert ctl.audit is None
        ctl.set_verifiers(ADMIN, [V1])
