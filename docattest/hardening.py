"""
DOCATTEST Validation and Hardening Module

Defensive utilities shared by every registry in the attestation core:

1. Input validation
2. Identity handling (null identity detection, normalization)
3. Mutation serialization and re-entrancy protection
4. Status machine invariant enforcement
5. Constant-time comparisons and hashing helpers

Security Model:
    - All inputs are untrusted until validated
    - All preconditions are checked before the first mutation
    - All mutations run inside one serialized execution scope
    - Nested entry into the mutation surface is rejected, never queued

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any, Callable, Iterator, List, Optional, Sequence, TypeVar, Union

from docattest.errors import InvalidInput, InvariantViolation, ReentrantCall


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class ValidationError(Exception):
    """A single field-level validation failure."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> Any:
        """Raise InvalidInput if validation failed, else return the sanitized value."""
        if not self.is_valid:
            messages = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
            raise InvalidInput(
                f"Validation failed: {messages}",
                fields=[e.field for e in self.errors],
            )
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> "ValidationResult":
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> "ValidationResult":
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

NULL_ADDRESS = "0x" + "0" * 40


class Validators:
    """Collection of input validators."""

    ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')
    DID_PATTERN = re.compile(r'^did:[a-z0-9]+:[a-zA-Z0-9._:-]+$')

    @staticmethod
    def is_null_identity(identity: Optional[str]) -> bool:
        """True for None, the empty string and the all-zero address."""
        if identity is None:
            return True
        if not isinstance(identity, str):
            return False
        stripped = identity.strip()
        return not stripped or stripped.lower() == NULL_ADDRESS

    @classmethod
    def is_well_formed_identity(cls, identity: str) -> bool:
        """Address or DID shape; only enforced when strict identities are configured."""
        return bool(cls.ADDRESS_PATTERN.match(identity) or cls.DID_PATTERN.match(identity))

    @staticmethod
    def validate_caller(value: Any, field_name: str = "caller") -> ValidationResult:
        """
        Callers are strings or None. Null identities pass here; each operation
        decides how to reject them.
        """
        if value is not None and not isinstance(value, str):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected identity string, got {type(value).__name__}", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 0,
        max_length: Optional[int] = None,
    ) -> ValidationResult:
        """Validate a string value. The value is returned unchanged."""
        errors = []

        if not isinstance(value, str):
            errors.append(ValidationError(field_name, f"Expected string, got {type(value).__name__}", value))
            return ValidationResult.failure(errors)

        if len(value) < min_length:
            errors.append(ValidationError(field_name, f"Too short (min {min_length} chars)", value))

        if max_length is not None and len(value) > max_length:
            errors.append(ValidationError(field_name, f"Too long (max {max_length} chars)", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(value)

    @classmethod
    def validate_non_negative_int(cls, value: Any, field_name: str) -> ValidationResult:
        """Validate an integer >= 0 (bools are rejected)."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
            ])
        if value < 0:
            return ValidationResult.failure([
                ValidationError(field_name, "Must be non-negative", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_field_hash(cls, value: Any, field_name: str = "field_hash") -> ValidationResult:
        """Field hashes are opaque, but must be non-empty strings."""
        result = cls.validate_string(value, field_name, min_length=1)
        if result.is_valid and not result.sanitized_value.strip():
            return ValidationResult.failure([
                ValidationError(field_name, "Field hash cannot be blank", value)
            ])
        return result

    @classmethod
    def validate_string_list(cls, value: Any, field_name: str) -> ValidationResult:
        """Validate a sequence of strings (a bare string is not a sequence here)."""
        if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected a list, got {type(value).__name__}", value)
            ])
        errors = [
            ValidationError(f"{field_name}[{i}]", f"Expected string, got {type(v).__name__}", v)
            for i, v in enumerate(value)
            if not isinstance(v, str)
        ]
        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(list(value))

    @classmethod
    def validate_assignment_arrays(
        cls,
        field_hashes: Any,
        verifier_identities: Any,
    ) -> ValidationResult:
        """Validate the paired field-hash/verifier arrays used by creation and field assignment."""
        hashes = cls.validate_string_list(field_hashes, "field_hashes")
        verifiers = cls.validate_string_list(verifier_identities, "verifier_identities")
        errors = hashes.errors + verifiers.errors
        if errors:
            return ValidationResult.failure(errors)

        if len(hashes.sanitized_value) != len(verifiers.sanitized_value):
            return ValidationResult.failure([
                ValidationError(
                    "field_hashes",
                    f"Length mismatch: {len(hashes.sanitized_value)} field hashes, "
                    f"{len(verifiers.sanitized_value)} verifiers",
                )
            ])

        for i, fh in enumerate(hashes.sanitized_value):
            result = cls.validate_field_hash(fh, f"field_hashes[{i}]")
            errors.extend(result.errors)
        if errors:
            return ValidationResult.failure(errors)

        return ValidationResult.success(list(zip(hashes.sanitized_value, verifiers.sanitized_value)))


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Hashing helpers. Signature schemes live in docattest.signatures."""

    @staticmethod
    def secure_compare_str(a: str, b: str) -> bool:
        """Constant-time string comparison."""
        return hmac.compare_digest(a.encode(), b.encode())

    @staticmethod
    def hash_sha256(data: Union[str, bytes]) -> str:
        """Compute SHA256 hash."""
        if isinstance(data, str):
            data = data.encode('utf-8')
        return hashlib.sha256(data).hexdigest()


def field_hash(name: str, value: str) -> str:
    """Derive the opaque hash for one named form field and its declared value."""
    return CryptoUtils.hash_sha256(f"{name}\x1f{value}")


# =============================================================================
# THREAD SAFETY
# =============================================================================

class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        """Get current value."""
        with self._lock:
            return self._value

    def reset(self, value: int = 0) -> None:
        """Atomically reset the counter to the given value."""
        with self._lock:
            self._value = value


class ExecutionGuard:
    """
    Serializes the mutation surface and rejects re-entry.

    One lock is held for the whole duration of a mutation, so two callers on
    different threads never interleave effects. A thread that is already
    inside a mutation (for example from an event subscriber invoked while the
    enclosing operation still holds the guard) gets ReentrantCall instead of
    deadlocking or nesting. The lock is released on every exit path.
    """

    def __init__(self, name: str = "mutation"):
        self.name = name
        self._lock = threading.Lock()
        self._local = threading.local()

    @property
    def active(self) -> Optional[str]:
        """Operation currently holding the guard on this thread, if any."""
        return getattr(self._local, "operation", None)

    @contextmanager
    def enter(self, operation: str) -> Iterator[None]:
        current = self.active
        if current is not None:
            raise ReentrantCall(
                f"{operation} cannot run while {current} is in progress",
                operation=operation,
                active_operation=current,
            )
        with self._lock:
            self._local.operation = operation
            try:
                yield
            finally:
                self._local.operation = None


F = TypeVar("F", bound=Callable[..., Any])


def guarded(operation: str) -> Callable[[F], F]:
    """Run a method inside its owner's ``_guard`` ExecutionGuard."""
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            with self._guard.enter(operation):
                return func(self, *args, **kwargs)
        return wrapper  # type: ignore[return-value]
    return decorator


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces status machine invariants."""

    @staticmethod
    def check_status_monotonic(current: Enum, target: Enum, order: Sequence[Enum]) -> None:
        """Statuses only move forward along ``order``; staying put is allowed."""
        if order.index(target) < order.index(current):
            raise InvariantViolation(
                f"Status cannot regress: {current.value} -> {target.value}"
            )

    @staticmethod
    def check_counter_bound(field_name: str, value: int, bound: int) -> None:
        """Ensure a running count never exceeds what could have been counted."""
        if value > bound:
            raise InvariantViolation(f"{field_name} {value} exceeds bound {bound}")
