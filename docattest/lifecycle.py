"""
DOCATTEST Lifecycle Controller

The document verification state machine and the authorization gates in
front of it. One controller instance owns every registry (ownership,
verifier directory, document store, field ledger) plus the notification log;
nothing here is process-global.

State machine
─────────────

    create_document ──▶ PENDING ──verify──▶ CONFIRMING ──verify (count == threshold)──▶ VERIFIED
                           │                    │                                        ▲
                           └────────────────────┴──────accept (count == threshold)───────┘

    add_field_to_verify is only allowed while PENDING.
    Statuses never regress; attestation latches flip false→true exactly once.

Transaction model
─────────────────

    Every mutation runs inside one ExecutionGuard scope: calls from different
    threads are serialized, nested entry from the same thread is rejected
    with ReentrantCall. All preconditions are checked before the first write,
    so a failing call leaves no trace in state. Notifications are appended to
    the EventStore and published on the EventBus only after the writes.

Single-value queries never take the guard. Multi-part reads (snapshot
export) run inside consistent_view(), which holds it, so they never observe
a half-applied mutation.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from docattest.config import ConfigError, get_config
from docattest.documents import Document, DocumentStatus, DocumentStore
from docattest.errors import (
    DocumentAttestationError,
    InvalidInput,
    InvalidState,
    NotFound,
    ThresholdNotMet,
    Unauthorized,
    UnauthorizedVerifier,
)
from docattest.events import (
    VERIFIER_STREAM,
    DocumentCreated,
    DocumentVerified,
    Event,
    EventBus,
    EventRecord,
    EventStore,
    FieldAssignmentAdded,
    FieldVerified,
    VerifierSetChanged,
    document_stream,
)
from docattest.fields import FieldAssignment, FieldVerificationLedger
from docattest.hardening import ExecutionGuard, InvariantChecker, Validators, guarded
from docattest.observability import AuditLogger, Layer, get_correlation_id, get_logger, timed_operation
from docattest.ownership import OwnershipRegistry
from docattest.signatures import AcceptAnySignature, SignaturePolicy
from docattest.verifiers import VerifierDirectory

log = get_logger("controller", Layer.LIFECYCLE)


class DocumentLifecycleController:
    """
    Orchestrates document creation, field assignment, attestation and
    status promotion.

    Every operation takes the authenticated caller identity explicitly.

    Example:
        ctl = DocumentLifecycleController(admin="0xadmin")
        ctl.set_verifiers("0xadmin", ["0xv1", "0xv2"])
        doc_id = ctl.create_document(
            "0xowner", 1001, "Lease", "ipfs://lease", "ab12...", 2,
            ["h1", "h2"], ["0xv1", "0xv2"],
        )
        ctl.verify("0xv1", doc_id, "h1")   # -> CONFIRMING
        ctl.verify("0xv2", doc_id, "h2")   # -> VERIFIED
    """

    def __init__(
        self,
        admin: str,
        *,
        event_bus: Optional[EventBus] = None,
        event_store: Optional[EventStore] = None,
        signature_policy: Optional[SignaturePolicy] = None,
        audit_logger: Optional[AuditLogger] = None,
        strict_identities: Optional[bool] = None,
    ):
        config = get_config()

        self.ownership = OwnershipRegistry()
        self.directory = VerifierDirectory(admin)
        self.documents = DocumentStore()
        self.ledger = FieldVerificationLedger()
        self.event_store = event_store if event_store is not None else EventStore()
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.signature_policy = signature_policy or AcceptAnySignature()

        if audit_logger is None and config.observability.audit_enabled.get():
            audit_logger = AuditLogger(get_logger("audit", Layer.LIFECYCLE))
        self.audit = audit_logger

        if strict_identities is None:
            strict_identities = config.registry.strict_identities.get()
        self.strict_identities = strict_identities

        self._guard = ExecutionGuard("document-lifecycle")

    @classmethod
    def from_config(cls, **kwargs: Any) -> "DocumentLifecycleController":
        """Build a controller whose administrator comes from configuration."""
        admin = get_config().registry.admin_identity.get()
        if Validators.is_null_identity(admin):
            raise ConfigError("registry.admin_identity is not configured (set DOCATTEST_ADMIN)")
        return cls(admin, **kwargs)

    @property
    def admin(self) -> str:
        return self.directory.admin

    @contextmanager
    def consistent_view(self, operation: str = "consistent_view") -> Iterator[None]:
        """Hold the mutation guard for a read spanning several registries."""
        with self._guard.enter(operation):
            yield

    # ─────────────────────────────────────────────────────────────────────
    # internals
    # ─────────────────────────────────────────────────────────────────────

    @contextmanager
    def _audited(self, caller: str, action: str, resource_type: str, resource_id: Any) -> Iterator[None]:
        """Log and audit a rejected operation, then let the error propagate."""
        try:
            yield
        except DocumentAttestationError as e:
            log.warning(
                f"{action} rejected: {e.message}",
                operation=action,
                error_code=e.code,
                caller=caller,
                resource_id=str(resource_id),
            )
            if self.audit is not None:
                self.audit.log(caller, action, resource_type, str(resource_id), "denied", error=e.code)
            raise

    def _record_success(self, caller: str, action: str, resource_type: str, resource_id: Any, **details: Any) -> None:
        if self.audit is not None:
            self.audit.log(caller, action, resource_type, str(resource_id), "success", **details)

    def _commit(self, stream_id: str, events: List[Event]) -> List[EventRecord]:
        """Append notifications for an already-applied mutation, then publish them."""
        correlation_id = get_correlation_id()
        for event in events:
            event.correlation_id = correlation_id
        records = self.event_store.append(stream_id, events)
        for event in events:
            self.event_bus.publish(event)
        return records

    def _check_verifiers(self, identities: Sequence[str]) -> None:
        for identity in identities:
            if not self.directory.is_verifier(identity):
                raise UnauthorizedVerifier(
                    f"{identity} is not an authorized verifier",
                    verifier=identity,
                )

    def _validate_pairs(self, field_hashes: Any, verifier_identities: Any) -> List[Tuple[str, str]]:
        pairs = Validators.validate_assignment_arrays(field_hashes, verifier_identities).raise_if_invalid()
        self._check_verifiers([v for _, v in pairs])
        return pairs

    # ─────────────────────────────────────────────────────────────────────
    # verifier directory
    # ─────────────────────────────────────────────────────────────────────

    @timed_operation(log, "set_verifiers")
    @guarded("set_verifiers")
    def set_verifiers(self, caller: str, identities: Sequence[str], remove: bool = False) -> List[str]:
        """Administrator-only: add (or remove) identities from the verifier allow-list."""
        with self._audited(caller, "set_verifiers", "verifier_directory", "verifiers"):
            Validators.validate_caller(caller).raise_if_invalid()
            capability = self.directory.grant_admin(caller)
            identities = Validators.validate_string_list(identities, "identities").raise_if_invalid()
            if self.strict_identities:
                malformed = [
                    i for i in identities
                    if not Validators.is_null_identity(i) and not Validators.is_well_formed_identity(i)
                ]
                if malformed:
                    raise InvalidInput(f"Malformed verifier identities: {malformed}", identities=malformed)

            affected = self.directory.set_verifiers(capability, identities, remove=bool(remove))

        self._commit(VERIFIER_STREAM, [VerifierSetChanged(identities=list(affected), removed=bool(remove))])
        self._record_success(caller, "set_verifiers", "verifier_directory", "verifiers",
                             identities=affected, removed=bool(remove))
        log.info("Verifier set changed", operation="set_verifiers", identities=affected, removed=bool(remove))
        return affected

    # ─────────────────────────────────────────────────────────────────────
    # document lifecycle
    # ─────────────────────────────────────────────────────────────────────

    @timed_operation(log, "create_document")
    @guarded("create_document")
    def create_document(
        self,
        caller: str,
        external_id: int,
        name: str,
        uri: str,
        document_hash: str,
        min_field_verify: int,
        field_hashes: Sequence[str],
        verifier_identities: Sequence[str],
    ) -> int:
        """
        Create a document owned by ``caller`` and install its field verifiers.

        Raises:
            InvalidInput: mismatched arrays or malformed arguments
            DuplicateId: ``external_id`` already bound
            UnauthorizedVerifier: a listed verifier is not in the directory
            AlreadyExists: ``caller`` is the null identity
        """
        with self._audited(caller, "create_document", "external_id", external_id):
            Validators.validate_caller(caller).raise_if_invalid()
            pairs = Validators.validate_assignment_arrays(field_hashes, verifier_identities).raise_if_invalid()
            external_id = Validators.validate_non_negative_int(external_id, "external_id").raise_if_invalid()
            min_field_verify = Validators.validate_non_negative_int(
                min_field_verify, "min_field_verify"
            ).raise_if_invalid()
            name = Validators.validate_string(name, "name").raise_if_invalid()
            uri = Validators.validate_string(uri, "uri").raise_if_invalid()
            document_hash = Validators.validate_string(document_hash, "document_hash").raise_if_invalid()

            self.documents.check_external_id_free(external_id)
            self._check_verifiers([v for _, v in pairs])

            document_id = self.documents.next_id()
            self.ownership.check_registrable(caller, document_id)

            # all preconditions hold; nothing below can fail on caller input
            self.ownership.register(caller, document_id)
            self.documents.add(Document(
                document_id=document_id,
                owner=caller,
                name=name,
                uri=uri,
                document_hash=document_hash,
                min_field_verify=min_field_verify,
                external_id=external_id,
            ))
            self.ledger.assign(document_id, pairs)

        self._commit(document_stream(document_id), [
            DocumentCreated(
                owner=caller,
                name=name,
                uri=uri,
                document_hash=document_hash,
                external_id=external_id,
                min_field_verify=min_field_verify,
                document_id=document_id,
            ),
            FieldAssignmentAdded(
                document_id=document_id,
                field_hashes=[fh for fh, _ in pairs],
                verifier_identities=[v for _, v in pairs],
            ),
        ])
        self._record_success(caller, "create_document", "document", document_id,
                             external_id=external_id, fields=len(pairs))
        log.info("Document created", operation="create_document",
                 document_id=document_id, owner=caller, external_id=external_id)
        return document_id

    @timed_operation(log, "add_field_to_verify")
    @guarded("add_field_to_verify")
    def add_field_to_verify(
        self,
        caller: str,
        document_id: int,
        field_hashes: Sequence[str],
        verifier_identities: Sequence[str],
    ) -> None:
        """Owner-only: assign (or reassign) field verifiers while the document is PENDING."""
        with self._audited(caller, "add_field_to_verify", "document", document_id):
            Validators.validate_caller(caller).raise_if_invalid()
            document = self.documents.get(document_id)
            if caller != self.ownership.owner_of(document_id):
                raise Unauthorized(
                    f"Only the owner of document {document_id} can add fields",
                    document_id=document_id,
                    caller=caller,
                )
            if document.status is not DocumentStatus.PENDING:
                raise InvalidState(
                    "cannot change document processing",
                    document_id=document_id,
                    status=document.status.value,
                )
            pairs = self._validate_pairs(field_hashes, verifier_identities)

            self.ledger.assign(document_id, pairs)

        self._commit(document_stream(document_id), [
            FieldAssignmentAdded(
                document_id=document_id,
                field_hashes=[fh for fh, _ in pairs],
                verifier_identities=[v for _, v in pairs],
            ),
        ])
        self._record_success(caller, "add_field_to_verify", "document", document_id, fields=len(pairs))
        log.info("Field verifiers assigned", operation="add_field_to_verify",
                 document_id=document_id, fields=len(pairs))

    @timed_operation(log, "verify")
    @guarded("verify")
    def verify(self, caller: str, document_id: int, field_hash: str, signature: Any = None) -> DocumentStatus:
        """
        Attest one field as its assigned verifier.

        Promotes PENDING to CONFIRMING on the first attestation, and to
        VERIFIED on the call where the verified count becomes exactly equal to
        the threshold. Returns the document status after the call.
        """
        with self._audited(caller, "verify", "document", document_id):
            Validators.validate_caller(caller).raise_if_invalid()
            Validators.validate_string(field_hash, "field_hash").raise_if_invalid()
            document = self.documents.get(document_id)
            assigned = self.ledger.assigned_verifier(document_id, field_hash)
            if assigned is None or Validators.is_null_identity(caller) or caller != assigned:
                raise Unauthorized(
                    f"Caller is not the verifier assigned to field {field_hash}",
                    document_id=document_id,
                    field_hash=field_hash,
                    caller=caller,
                )
            self.ledger.check_not_attested(document_id, field_hash)
            self.signature_policy.check(document_id, field_hash, caller, signature)
            InvariantChecker.check_counter_bound(
                "field_verified_count",
                document.field_verified_count + 1,
                self.ledger.assigned_count(document_id),
            )

            self.ledger.attest(document_id, field_hash)
            document.field_verified_count += 1
            events: List[Event] = [
                FieldVerified(document_id=document_id, field_hash=field_hash, attestor=caller)
            ]
            if document.status is DocumentStatus.PENDING:
                self.documents.advance_status(document, DocumentStatus.CONFIRMING)
            if document.field_verified_count == document.min_field_verify:
                self.documents.advance_status(document, DocumentStatus.VERIFIED)
                events.append(DocumentVerified(document_id=document_id, verifier=caller))

        self._commit(document_stream(document_id), events)
        self._record_success(caller, "verify", "document", document_id,
                             field_hash=field_hash, status=document.status.value)
        log.info("Field verified", operation="verify", document_id=document_id,
                 field_hash=field_hash, count=document.field_verified_count,
                 status=document.status.value)
        return document.status

    @timed_operation(log, "accept")
    @guarded("accept")
    def accept(self, caller: str, document_id: int) -> DocumentStatus:
        """Force VERIFIED once the verified count equals the threshold. Open to any caller."""
        with self._audited(caller, "accept", "document", document_id):
            Validators.validate_caller(caller).raise_if_invalid()
            document = self.documents.get(document_id)
            if not document.threshold_met:
                raise ThresholdNotMet(
                    f"Document {document_id} has {document.field_verified_count} of "
                    f"{document.min_field_verify} verified fields",
                    document_id=document_id,
                    verified=document.field_verified_count,
                    required=document.min_field_verify,
                )
            self.documents.advance_status(document, DocumentStatus.VERIFIED)

        self._commit(document_stream(document_id), [
            DocumentVerified(document_id=document_id, verifier=caller),
        ])
        self._record_success(caller, "accept", "document", document_id)
        log.info("Document accepted", operation="accept", document_id=document_id, caller=caller)
        return document.status

    # ─────────────────────────────────────────────────────────────────────
    # queries
    # ─────────────────────────────────────────────────────────────────────

    def get_uri(self, document_id: int) -> str:
        return self.documents.get(document_id).uri

    def get_document_id_by_external_id(self, external_id: int) -> int:
        return self.documents.document_id_for(external_id)

    def is_document_verified(self, document_id: int) -> bool:
        return self.documents.get(document_id).status is DocumentStatus.VERIFIED

    def is_field_verified(self, document_id: int, field_hash: str) -> bool:
        return self.ledger.is_attested(document_id, field_hash)

    def owner_of(self, document_id: int) -> str:
        return self.ownership.owner_of(document_id)

    def balance_of(self, identity: str) -> int:
        return self.ownership.balance_of(identity)

    def is_verifier(self, identity: str) -> bool:
        return self.directory.is_verifier(identity)

    def get_document(self, document_id: int) -> Document:
        """Detached copy of the stored record."""
        return self.documents.snapshot(document_id)

    def get_field_verifier(self, document_id: int, field_hash: str) -> Optional[str]:
        return self.ledger.assigned_verifier(document_id, field_hash)

    def get_fields(self, document_id: int) -> List[FieldAssignment]:
        if self.documents.find(document_id) is None:
            raise NotFound(f"Document {document_id} does not exist", document_id=document_id)
        return self.ledger.fields(document_id)

    def total_documents(self) -> int:
        return len(self.documents)

    def events(
        self,
        from_position: int = 0,
        max_count: Optional[int] = None,
        document_id: Optional[int] = None,
    ) -> List[EventRecord]:
        """
        Page through the notification log. With ``document_id`` the page is
        taken from that document's stream and ``from_position`` counts within it.
        """
        if max_count is None:
            max_count = get_config().events.read_page_size.get()
        if document_id is not None:
            return self.event_store.read_stream_records(document_stream(document_id), from_position, max_count)
        return self.event_store.read_all(from_position, max_count)
