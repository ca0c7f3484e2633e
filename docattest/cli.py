#!/usr/bin/env python3
"""
DOCATTEST CLI

Command-line access to a document attestation registry persisted as a
snapshot file. Each invocation loads the snapshot and performs one operation as
``--caller``. Mutations hold an exclusive lock on ``<state>.lock`` from load
through save, so concurrent invocations apply one after another.

Usage:
    docattest [--state PATH] [--caller IDENTITY] <command> <subcommand> [options]

Commands:
    verifiers   Verifier directory (administrator only for changes)
    document    Create, assign, verify, accept and inspect documents
    field       Field attestation status and field hash helper
    owner       Ownership queries
    events      Notification log
    config      Configuration management

Exit codes: 0 success, 2 rejected by the registry, 1 any other failure.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from contextlib import contextmanager
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from docattest import __version__
from docattest.errors import DocumentAttestationError


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        return str(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, dict):
        rows = [v for v in data.values() if isinstance(v, list)]
        if len(rows) == 1 and rows[0] and isinstance(rows[0][0], dict):
            data = rows[0]
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:40] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = []
        lines.append(" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


class DocAttestCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="docattest",
            description="Document field attestation registry",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"docattest {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "table", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error output",
        )
        self.parser.add_argument(
            "--state", "-s",
            help="Snapshot file (default: state.snapshot_path / DOCATTEST_STATE)",
        )
        self.parser.add_argument(
            "--caller", "-c",
            default=os.environ.get("DOCATTEST_CALLER"),
            help="Identity performing the operation (default: $DOCATTEST_CALLER)",
        )
        self.parser.add_argument(
            "--admin",
            help="Administrator identity when creating a new state file",
        )
        self.parser.add_argument(
            "--config",
            help="Additional YAML configuration file",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        self._register_verifier_commands()
        self._register_document_commands()
        self._register_field_commands()
        self._register_owner_commands()
        self._register_event_commands()
        self._register_config_commands()

    def _register_verifier_commands(self) -> None:
        verifiers = self.subparsers.add_parser("verifiers", help="Verifier directory")
        verifiers_sub = verifiers.add_subparsers(dest="subcommand")

        set_cmd = verifiers_sub.add_parser("set", help="Add verifiers (administrator)")
        set_cmd.add_argument("identities", nargs="+", help="Verifier identities")

        remove = verifiers_sub.add_parser("remove", help="Remove verifiers (administrator)")
        remove.add_argument("identities", nargs="+", help="Verifier identities")

        check = verifiers_sub.add_parser("check", help="Check verifier membership")
        check.add_argument("identity", help="Identity to check")

        verifiers_sub.add_parser("list", help="List verifiers")

    def _register_document_commands(self) -> None:
        document = self.subparsers.add_parser("document", help="Document lifecycle")
        document_sub = document.add_subparsers(dest="subcommand")

        # document create
        create = document_sub.add_parser("create", help="Create a document owned by the caller")
        create.add_argument("--external-id", "-e", type=int, required=True, help="External document id")
        create.add_argument("--name", "-n", required=True, help="Document name")
        create.add_argument("--uri", "-u", required=True, help="Document location")
        create.add_argument("--hash", dest="document_hash", required=True, help="Document content hash")
        create.add_argument("--min-verify", "-m", type=int, required=True,
                            help="Verified fields required for VERIFIED")
        create.add_argument("--field", nargs=2, action="append", default=[],
                            metavar=("FIELD_HASH", "VERIFIER"), help="Field and its verifier (repeatable)")

        # document add-fields
        add = document_sub.add_parser("add-fields", help="Assign field verifiers (owner, PENDING only)")
        add.add_argument("document_id", type=int, help="Document id")
        add.add_argument("--field", nargs=2, action="append", default=[],
                         metavar=("FIELD_HASH", "VERIFIER"), help="Field and its verifier (repeatable)")

        # document verify
        verify = document_sub.add_parser("verify", help="Attest a field as its assigned verifier")
        verify.add_argument("document_id", type=int, help="Document id")
        verify.add_argument("field_hash", help="Field hash")
        verify.add_argument("--signature", help="Attestation evidence")

        # document accept
        accept = document_sub.add_parser("accept", help="Force VERIFIED once the threshold is met")
        accept.add_argument("document_id", type=int, help="Document id")

        # document show
        show = document_sub.add_parser("show", help="Show a document and its fields")
        show.add_argument("document_id", type=int, help="Document id")

        # document lookup
        lookup = document_sub.add_parser("lookup", help="Internal id for an external id (0 if unbound)")
        lookup.add_argument("external_id", type=int, help="External document id")

    def _register_field_commands(self) -> None:
        field = self.subparsers.add_parser("field", help="Field attestation")
        field_sub = field.add_subparsers(dest="subcommand")

        status = field_sub.add_parser("status", help="Attestation status of a field")
        status.add_argument("document_id", type=int, help="Document id")
        status.add_argument("field_hash", help="Field hash")

        hash_cmd = field_sub.add_parser("hash", help="Compute a field hash from name and value")
        hash_cmd.add_argument("name", help="Field name")
        hash_cmd.add_argument("value", help="Field value")

    def _register_owner_commands(self) -> None:
        owner = self.subparsers.add_parser("owner", help="Ownership queries")
        owner_sub = owner.add_subparsers(dest="subcommand")

        of = owner_sub.add_parser("of", help="Owner of a document")
        of.add_argument("document_id", type=int, help="Document id")

        balance = owner_sub.add_parser("balance", help="Number of documents owned by an identity")
        balance.add_argument("identity", help="Owner identity")

    def _register_event_commands(self) -> None:
        events = self.subparsers.add_parser("events", help="Notification log")
        events_sub = events.add_subparsers(dest="subcommand")

        list_cmd = events_sub.add_parser("list", help="List notifications in order")
        list_cmd.add_argument("--from", dest="from_position", type=int, default=0, help="Start position (within the document stream with --document)")
        list_cmd.add_argument("--limit", type=int, help="Maximum events (default: events.read_page_size)")
        list_cmd.add_argument("--document", type=int, help="Only events for this document")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., observability.log_level)")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        from docattest.observability import generate_correlation_id, set_correlation_id
        set_correlation_id(generate_correlation_id())

        try:
            if parsed.config:
                from docattest.config import get_config_manager
                get_config_manager().load_from_file(parsed.config)

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except DocumentAttestationError as e:
            if not parsed.quiet:
                print(f"Error: [{e.code}] {e.message}", file=sys.stderr)
            return 2

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except Exception as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command.replace("-", "_")
        subcmd = getattr(args, "subcommand", None)
        if subcmd:
            subcmd = subcmd.replace("-", "_")

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {args.command} {getattr(args, 'subcommand', None) or ''}")

        return handler(args)

    # ─────────────────────────────────────────────────────────────────────
    # state helpers
    # ─────────────────────────────────────────────────────────────────────

    def _state_path(self, args: argparse.Namespace) -> Path:
        from docattest.config import get_config
        return Path(args.state or get_config().state.snapshot_path.get())

    def _load(self, args: argparse.Namespace):
        from docattest.lifecycle import DocumentLifecycleController
        from docattest.snapshot import load_snapshot

        path = self._state_path(args)
        if path.exists():
            return load_snapshot(path)
        if args.admin:
            return DocumentLifecycleController(args.admin)
        return DocumentLifecycleController.from_config()

    def _save(self, args: argparse.Namespace, controller) -> None:
        from docattest.snapshot import save_snapshot
        save_snapshot(controller, self._state_path(args))

    @contextmanager
    def _transaction(self, args: argparse.Namespace) -> Iterator[Any]:
        """Load, mutate and save the snapshot under its inter-process lock."""
        from docattest.snapshot import state_lock

        with state_lock(self._state_path(args)):
            controller = self._load(args)
            yield controller
            self._save(args, controller)

    def _caller(self, args: argparse.Namespace) -> str:
        if not args.caller:
            raise CLIError("--caller (or DOCATTEST_CALLER) is required for this command")
        return args.caller

    @staticmethod
    def _split_fields(pairs: Sequence[Sequence[str]]):
        return [p[0] for p in pairs], [p[1] for p in pairs]

    # ─────────────────────────────────────────────────────────────────────
    # verifier handlers
    # ─────────────────────────────────────────────────────────────────────

    def _handle_verifiers_set(self, args: argparse.Namespace) -> Any:
        with self._transaction(args) as controller:
            added = controller.set_verifiers(self._caller(args), args.identities)
        return {"added": added, "verifiers": controller.directory.members()}

    def _handle_verifiers_remove(self, args: argparse.Namespace) -> Any:
        with self._transaction(args) as controller:
            removed = controller.set_verifiers(self._caller(args), args.identities, remove=True)
        return {"removed": removed, "verifiers": controller.directory.members()}

    def _handle_verifiers_check(self, args: argparse.Namespace) -> Any:
        controller = self._load(args)
        return {"identity": args.identity, "is_verifier": controller.is_verifier(args.identity)}

    def _handle_verifiers_list(self, args: argparse.Namespace) -> Any:
        controller = self._load(args)
        members = controller.directory.members()
        return {"admin": controller.admin, "verifiers": members, "count": len(members)}

    # ─────────────────────────────────────────────────────────────────────
    # document handlers
    # ─────────────────────────────────────────────────────────────────────

    def _handle_document_create(self, args: argparse.Namespace) -> Any:
        field_hashes, verifiers = self._split_fields(args.field)
        with self._transaction(args) as controller:
            document_id = controller.create_document(
                self._caller(args),
                args.external_id,
                args.name,
                args.uri,
                args.document_hash,
                args.min_verify,
                field_hashes,
                verifiers,
            )
        return {"document_id": document_id, "status": controller.get_document(document_id).status.value}

    def _handle_document_add_fields(self, args: argparse.Namespace) -> Any:
        field_hashes, verifiers = self._split_fields(args.field)
        with self._transaction(args) as controller:
            controller.add_field_to_verify(self._caller(args), args.document_id, field_hashes, verifiers)
        return {"document_id": args.document_id, "fields": len(field_hashes)}

    def _handle_document_verify(self, args: argparse.Namespace) -> Any:
        with self._transaction(args) as controller:
            status = controller.verify(self._caller(args), args.document_id, args.field_hash, args.signature)
        return {"document_id": args.document_id, "field_hash": args.field_hash, "status": status.value}

    def _handle_document_accept(self, args: argparse.Namespace) -> Any:
        with self._transaction(args) as controller:
            status = controller.accept(self._caller(args), args.document_id)
        return {"document_id": args.document_id, "status": status.value}

    def _handle_document_show(self, args: argparse.Namespace) -> Any:
        controller = self._load(args)
        document = controller.get_document(args.document_id).to_dict()
        document["fields"] = [asdict(a) for a in controller.get_fields(args.document_id)]
        return document

    def _handle_document_lookup(self, args: argparse.Namespace) -> Any:
        controller = self._load(args)
        return {
            "external_id": args.external_id,
            "document_id": controller.get_document_id_by_external_id(args.external_id),
        }

    # ─────────────────────────────────────────────────────────────────────
    # field, owner and event handlers
    # ─────────────────────────────────────────────────────────────────────

    def _handle_field_status(self, args: argparse.Namespace) -> Any:
        controller = self._load(args)
        return {
            "document_id": args.document_id,
            "field_hash": args.field_hash,
            "verifier": controller.get_field_verifier(args.document_id, args.field_hash),
            "verified": controller.is_field_verified(args.document_id, args.field_hash),
        }

    def _handle_field_hash(self, args: argparse.Namespace) -> Any:
        from docattest.hardening import field_hash
        return {"name": args.name, "field_hash": field_hash(args.name, args.value)}

    def _handle_owner_of(self, args: argparse.Namespace) -> Any:
        controller = self._load(args)
        return {"document_id": args.document_id, "owner": controller.owner_of(args.document_id)}

    def _handle_owner_balance(self, args: argparse.Namespace) -> Any:
        controller = self._load(args)
        return {"identity": args.identity, "balance": controller.balance_of(args.identity)}

    def _handle_events_list(self, args: argparse.Namespace) -> Any:
        controller = self._load(args)
        records = controller.events(args.from_position, args.limit, document_id=args.document)
        events = [
            {
                "sequence": r.sequence_number,
                "stream": r.stream_id,
                "type": r.event.event_type,
                **r.event.payload(),
            }
            for r in records
        ]
        return {"events": events, "count": len(events)}

    # ─────────────────────────────────────────────────────────────────────
    # config handlers
    # ─────────────────────────────────────────────────────────────────────

    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from docattest.config import get_config_manager
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from docattest.config import get_config_manager
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from docattest.config import get_config_manager
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from docattest.config import get_config_manager
        return get_config_manager().export_schema()


def main() -> int:
    """CLI entry point."""
    cli = DocAttestCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
