"""
DOCATTEST Snapshots

The core keeps everything in memory. A snapshot is the JSON document that
carries a controller's full state across processes: administrator, verifier
directory, documents (with the id counter), field assignments with their
latches, and the notification log.

Snapshots are validated against ``schemas/snapshot.schema.json`` before
anything is rebuilt. Restoring never emits notifications; the restored event
log is exactly the one that was exported.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from dataclasses import asdict
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from jsonschema import Draft202012Validator

from docattest.documents import Document
from docattest.events import EventRecord
from docattest.fields import FieldAssignment
from docattest.lifecycle import DocumentLifecycleController
from docattest.observability import Layer, get_logger

SNAPSHOT_VERSION = 1
SCHEMA_PATH = Path(__file__).parent / "schemas" / "snapshot.schema.json"

log = get_logger("snapshot", Layer.SNAPSHOT)


class SnapshotError(Exception):
    """Snapshot file missing, unreadable, or inconsistent."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message if not self.errors else f"{message}: {'; '.join(self.errors)}")


@lru_cache(maxsize=1)
def snapshot_validator() -> Draft202012Validator:
    with open(SCHEMA_PATH, encoding="utf-8") as f:
        schema = json.load(f)
    return Draft202012Validator(schema)


def validate_snapshot(data: Any) -> List[str]:
    """Schema errors for ``data`` (empty if valid)."""
    return [
        f"{error.json_path}: {error.message}"
        for error in snapshot_validator().iter_errors(data)
    ]


def export_state(controller: DocumentLifecycleController) -> Dict[str, Any]:
    """Serialize a controller's full state as of one point between mutations."""
    with controller.consistent_view("export_state"):
        documents = list(controller.documents)
        fields: List[Dict[str, Any]] = []
        for document in documents:
            fields.extend(asdict(a) for a in controller.ledger.fields(document.document_id))

        return {
            "snapshot_version": SNAPSHOT_VERSION,
            "admin": controller.admin,
            "last_document_id": controller.documents.last_id,
            "verifiers": controller.directory.members(),
            "documents": [d.to_dict() for d in documents],
            "fields": fields,
            "events": [r.to_dict() for r in controller.event_store.read_all(0, controller.event_store.total_events)],
        }


def _check_consistency(data: Dict[str, Any]) -> List[str]:
    errors: List[str] = []
    document_ids = [d["document_id"] for d in data["documents"]]
    external_ids = [d["external_id"] for d in data["documents"]]

    if len(set(document_ids)) != len(document_ids):
        errors.append("duplicate document_id")
    if len(set(external_ids)) != len(external_ids):
        errors.append("duplicate external_id")
    if document_ids and max(document_ids) > data["last_document_id"]:
        errors.append("last_document_id is below the highest document_id")

    known = set(document_ids)
    attested: Dict[int, int] = {}
    for f in data["fields"]:
        if f["document_id"] not in known:
            errors.append(f"field {f['field_hash']} references unknown document {f['document_id']}")
        elif f["attested"]:
            attested[f["document_id"]] = attested.get(f["document_id"], 0) + 1

    for d in data["documents"]:
        if d["field_verified_count"] != attested.get(d["document_id"], 0):
            errors.append(
                f"document {d['document_id']}: field_verified_count does not match attested fields"
            )
    return errors


def restore_state(data: Dict[str, Any], **controller_kwargs: Any) -> DocumentLifecycleController:
    """
    Rebuild a controller from exported state.

    Keyword arguments are passed to DocumentLifecycleController (event bus,
    signature policy, audit logger). No notifications are emitted.
    """
    errors = validate_snapshot(data)
    if errors:
        raise SnapshotError("Snapshot does not match schema", errors)
    errors = _check_consistency(data)
    if errors:
        raise SnapshotError("Snapshot is inconsistent", errors)

    controller = DocumentLifecycleController(data["admin"], **controller_kwargs)

    capability = controller.directory.grant_admin(data["admin"])
    controller.directory.set_verifiers(capability, data["verifiers"])

    documents = sorted((Document.from_dict(d) for d in data["documents"]), key=lambda d: d.document_id)
    for document in documents:
        controller.ownership.register(document.owner, document.document_id)
    controller.documents.restore(documents, data["last_document_id"])

    controller.ledger.restore(FieldAssignment(**f) for f in data["fields"])
    controller.event_store.restore([EventRecord.from_dict(r) for r in data["events"]])

    log.info(
        "State restored",
        operation="restore_state",
        documents=len(documents),
        events=len(data["events"]),
    )
    return controller


@contextmanager
def state_lock(path: Union[str, Path]) -> Iterator[Path]:
    """
    Exclusive inter-process lock for the snapshot at ``path``.

    The lock is held on a sidecar ``<name>.lock`` file, so the snapshot itself
    can still be replaced atomically while the lock is held. Whoever loads,
    mutates and saves a snapshot must do all three inside this block.
    """
    path = Path(path)
    lock_path = path.with_name(path.name + ".lock")
    with open(lock_path, "a") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield path
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def save_snapshot(controller: DocumentLifecycleController, path: Union[str, Path]) -> Path:
    """Write the controller's state to ``path`` (replaced atomically)."""
    path = Path(path)
    state = export_state(controller)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=path.name + ".", suffix=".tmp", delete=False
    ) as tmp:
        tmp.write(json.dumps(state, indent=2, sort_keys=True) + "\n")
    try:
        os.replace(tmp.name, path)
    except OSError:
        os.unlink(tmp.name)
        raise
    log.info("Snapshot saved", operation="save_snapshot", path=str(path), documents=len(state["documents"]))
    return path


def load_snapshot(path: Union[str, Path], **controller_kwargs: Any) -> DocumentLifecycleController:
    path = Path(path)
    if not path.exists():
        raise SnapshotError(f"Snapshot not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise SnapshotError(f"Invalid JSON in {path}: {e}") from e
    return restore_state(data, **controller_kwargs)
