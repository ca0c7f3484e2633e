"""
DOCATTEST Ownership Registry

Mint-only mapping from internal document id to the identity that created it,
plus a per-identity owned-document count. Entries are written once at
document creation and are never removed or reassigned: ownership transfer is
deliberately absent from the core.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Dict, Iterator, Tuple

from docattest.errors import AlreadyExists, InvalidIdentity, NotFound
from docattest.hardening import Validators


class OwnershipRegistry:
    """Registry of document owners."""

    def __init__(self):
        self._owners: Dict[int, str] = {}  # document_id -> owner identity
        self._balances: Dict[str, int] = {}  # owner identity -> owned count

    def check_registrable(self, identity: str, document_id: int) -> None:
        """Raise exactly what register() would raise, without mutating."""
        if Validators.is_null_identity(identity):
            raise AlreadyExists(
                "Cannot register a document to the null identity",
                document_id=document_id,
            )
        if document_id in self._owners:
            raise AlreadyExists(
                f"Document {document_id} already has an owner",
                document_id=document_id,
                owner=self._owners[document_id],
            )

    def register(self, identity: str, document_id: int) -> None:
        self.check_registrable(identity, document_id)
        self._balances[identity] = self._balances.get(identity, 0) + 1
        self._owners[document_id] = identity

    def owner_of(self, document_id: int) -> str:
        owner = self._owners.get(document_id)
        if owner is None:
            raise NotFound(f"Document {document_id} has no owner", document_id=document_id)
        return owner

    def balance_of(self, identity: str) -> int:
        if Validators.is_null_identity(identity):
            raise InvalidIdentity("Balance query for the null identity")
        return self._balances.get(identity, 0)

    def exists(self, document_id: int) -> bool:
        return document_id in self._owners

    def items(self) -> Iterator[Tuple[int, str]]:
        """Iterate (document_id, owner) pairs in id order."""
        for document_id in sorted(self._owners):
            yield document_id, self._owners[document_id]

    def __len__(self) -> int:
        return len(self._owners)
