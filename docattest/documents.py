"""
DOCATTEST Document Store

Holds each document's metadata, verification threshold, running verified
field count and status, and the external id binding used for lookups.

Status machine:

    PENDING ──▶ CONFIRMING ──▶ VERIFIED
       │                          ▲
       └──────────────────────────┘   (forced acceptance)

Statuses never regress.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from docattest.errors import DuplicateId, InvariantViolation, NotFound
from docattest.hardening import AtomicCounter, InvariantChecker

UNBOUND_DOCUMENT_ID = 0


class DocumentStatus(Enum):
    """Verification status of a document."""
    PENDING = "pending"
    CONFIRMING = "confirming"
    VERIFIED = "verified"

    @classmethod
    def order(cls) -> List["DocumentStatus"]:
        return [cls.PENDING, cls.CONFIRMING, cls.VERIFIED]

    @property
    def rank(self) -> int:
        return DocumentStatus.order().index(self)

    def is_terminal(self) -> bool:
        return self is DocumentStatus.VERIFIED


@dataclass
class Document:
    """A declared document awaiting per-field attestation."""
    document_id: int
    owner: str
    name: str
    uri: str
    document_hash: str
    min_field_verify: int
    external_id: int
    field_verified_count: int = 0
    status: DocumentStatus = DocumentStatus.PENDING

    @property
    def threshold_met(self) -> bool:
        return self.field_verified_count == self.min_field_verify

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        data = dict(data)
        data["status"] = DocumentStatus(data.get("status", DocumentStatus.PENDING.value))
        return cls(**data)


class DocumentStore:
    """
    In-memory store of documents keyed by internal id.

    Ids start at 1, increase monotonically and are never reused; an id is
    only consumed when a document is actually stored.
    """

    def __init__(self):
        self._documents: Dict[int, Document] = {}
        self._external_ids: Dict[int, int] = {}  # external_id -> document_id
        self._last_id = AtomicCounter(0)

    def next_id(self) -> int:
        """Id the next stored document will receive (does not allocate)."""
        return self._last_id.get() + 1

    def check_external_id_free(self, external_id: int) -> None:
        bound = self._external_ids.get(external_id, UNBOUND_DOCUMENT_ID)
        if bound != UNBOUND_DOCUMENT_ID:
            raise DuplicateId(
                f"External id {external_id} is already bound to document {bound}",
                external_id=external_id,
                document_id=bound,
            )

    def add(self, document: Document) -> Document:
        """Store a fully validated document and bind its external id."""
        self.check_external_id_free(document.external_id)
        if document.document_id != self.next_id():
            raise InvariantViolation(
                f"Document id {document.document_id} is out of sequence (expected {self.next_id()})"
            )
        self._last_id.increment()
        self._documents[document.document_id] = document
        self._external_ids[document.external_id] = document.document_id
        return document

    def get(self, document_id: int) -> Document:
        document = self._documents.get(document_id)
        if document is None:
            raise NotFound(f"Document {document_id} does not exist", document_id=document_id)
        return document

    def find(self, document_id: int) -> Optional[Document]:
        return self._documents.get(document_id)

    def snapshot(self, document_id: int) -> Document:
        """Detached copy for read callers."""
        return replace(self.get(document_id))

    def document_id_for(self, external_id: int) -> int:
        return self._external_ids.get(external_id, UNBOUND_DOCUMENT_ID)

    def advance_status(self, document: Document, target: DocumentStatus) -> bool:
        """Move ``document`` to ``target``. Returns True if the status changed."""
        InvariantChecker.check_status_monotonic(document.status, target, DocumentStatus.order())
        changed = document.status is not target
        document.status = target
        return changed

    def restore(self, documents: List[Document], last_id: int) -> None:
        """Replace contents from a snapshot."""
        self._documents = {d.document_id: d for d in documents}
        self._external_ids = {d.external_id: d.document_id for d in documents}
        self._last_id.reset(max([last_id] + [d.document_id for d in documents]))

    @property
    def last_id(self) -> int:
        return self._last_id.get()

    def __iter__(self) -> Iterator[Document]:
        for document_id in sorted(self._documents):
            yield self._documents[document_id]

    def __len__(self) -> int:
        return len(self._documents)
