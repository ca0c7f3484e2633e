"""
DOCATTEST Verifier Directory

Administrator-controlled allow-list of identities permitted to attest
document fields. Mutation requires an AdminCapability minted by the
directory for its administrator; membership tests are pure and never fail.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import List, Sequence, Set

from docattest.errors import InvalidIdentity, Unauthorized
from docattest.hardening import CryptoUtils, Validators


@dataclass(frozen=True)
class AdminCapability:
    """Proof that the holder passed the directory's administrator check."""
    holder: str
    token: str = field(repr=False)


class VerifierDirectory:
    """
    Allow-list of field verifiers.

    Example:
        directory = VerifierDirectory(admin="0xadmin...")
        cap = directory.grant_admin("0xadmin...")
        directory.set_verifiers(cap, ["0xv1...", "0xv2..."], remove=False)
        directory.is_verifier("0xv1...")  # True
    """

    def __init__(self, admin: str):
        if Validators.is_null_identity(admin):
            raise InvalidIdentity("Verifier directory requires a non-null administrator")
        self._admin = admin
        self._token = secrets.token_hex(16)
        self._members: Set[str] = set()

    @property
    def admin(self) -> str:
        return self._admin

    def grant_admin(self, caller: str) -> AdminCapability:
        """Issue the mutation capability to the administrator, and only to it."""
        if Validators.is_null_identity(caller) or caller != self._admin:
            raise Unauthorized("Caller is not the verifier administrator", caller=caller)
        return AdminCapability(holder=caller, token=self._token)

    def _check_capability(self, capability: AdminCapability) -> None:
        if not isinstance(capability, AdminCapability) or not CryptoUtils.secure_compare_str(
            capability.token, self._token
        ):
            raise Unauthorized("Invalid administrator capability")

    def set_verifiers(
        self,
        capability: AdminCapability,
        identities: Sequence[str],
        remove: bool = False,
    ) -> List[str]:
        """Add (or remove) every listed identity. Returns the identities as given."""
        self._check_capability(capability)
        identities = list(identities)
        for identity in identities:
            if Validators.is_null_identity(identity):
                raise InvalidIdentity("Null identity cannot be a verifier")

        for identity in identities:
            if remove:
                self._members.discard(identity)
            else:
                self._members.add(identity)
        return identities

    def is_verifier(self, identity: str) -> bool:
        return identity in self._members

    def members(self) -> List[str]:
        return sorted(self._members)
