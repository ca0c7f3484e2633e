"""
DOCATTEST Field Verification Ledger

Per document, maps each declared field hash to the single identity allowed to
attest it, and keeps a one-way attestation latch per field. Reassigning a
field's verifier never clears an existing latch.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from docattest.errors import AlreadyVerified


@dataclass(frozen=True)
class FieldAssignment:
    """One (document, field) slot and who may attest it."""
    document_id: int
    field_hash: str
    verifier: str
    attested: bool = False


class FieldVerificationLedger:
    """Assignments and attestation latches for every document."""

    def __init__(self):
        self._assignments: Dict[int, Dict[str, str]] = {}  # document_id -> field_hash -> verifier
        self._attested: Dict[int, Dict[str, bool]] = {}  # document_id -> field_hash -> latch

    def assign(self, document_id: int, pairs: Iterable[Tuple[str, str]]) -> None:
        """Install or overwrite (field_hash, verifier) pairs. Pairs must already be validated."""
        slots = self._assignments.setdefault(document_id, {})
        for field_hash, verifier in pairs:
            slots[field_hash] = verifier

    def assigned_verifier(self, document_id: int, field_hash: str) -> Optional[str]:
        return self._assignments.get(document_id, {}).get(field_hash)

    def is_attested(self, document_id: int, field_hash: str) -> bool:
        return self._attested.get(document_id, {}).get(field_hash, False)

    def check_not_attested(self, document_id: int, field_hash: str) -> None:
        if self.is_attested(document_id, field_hash):
            raise AlreadyVerified(
                f"Field {field_hash} of document {document_id} is already verified",
                document_id=document_id,
                field_hash=field_hash,
            )

    def attest(self, document_id: int, field_hash: str) -> None:
        """Flip the latch for a field from false to true, exactly once."""
        self.check_not_attested(document_id, field_hash)
        self._attested.setdefault(document_id, {})[field_hash] = True

    def assigned_count(self, document_id: int) -> int:
        return len(self._assignments.get(document_id, {}))

    def fields(self, document_id: int) -> List[FieldAssignment]:
        slots = self._assignments.get(document_id, {})
        return [
            FieldAssignment(
                document_id=document_id,
                field_hash=fh,
                verifier=verifier,
                attested=self.is_attested(document_id, fh),
            )
            for fh, verifier in sorted(slots.items())
        ]

    def restore(self, assignments: Iterable[FieldAssignment]) -> None:
        """Replace contents from a snapshot."""
        self._assignments = {}
        self._attested = {}
        for a in assignments:
            self._assignments.setdefault(a.document_id, {})[a.field_hash] = a.verifier
            if a.attested:
                self._attested.setdefault(a.document_id, {})[a.field_hash] = True
