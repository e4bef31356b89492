#!/usr/bin/env python3
"""
Laptop Registry CLI

Command-line interface over a file-backed registry. Each invocation loads the
snapshot, runs one operation and, for mutating commands, writes the snapshot
back (denied operations included, so the audit trail records them).

Usage:
    lapreg [--registry PATH] [--format json|yaml|table|text] <command> [options]

Commands:
    init          Create a new registry file
    mint          Mint a laptop token
    transfer      Transfer a token
    burn          Burn a token
    describe      Replace a token's description
    repair        Append a repair log to a token
    pause         Pause the registry (admin)
    unpause       Unpause the registry (admin)
    set-admin     Hand over the admin role (admin)
    show          Show a token's details
    owner         Show a token's owner
    holdings      List tokens held by an identity
    logs          List a token's repair logs
    log           Show one repair log
    status        Registry summary
    audit         Query or verify the audit trail
    checkpoint    Build a (signed) state checkpoint
    verify-checkpoint  Verify a signed checkpoint against the registry
    keygen        Generate an Ed25519 signing key
    config        Configuration management

Exit codes:
    0  success
    1  the registry rejected the operation
    2  usage, configuration or file error
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from laptop_registry import __version__
from laptop_registry.audit import AuditEventType
from laptop_registry.config import ConfigError, get_config, get_config_manager
from laptop_registry.observability import (
    RegistryLayer,
    configure_logging,
    generate_correlation_id,
    get_logger,
    set_correlation_id,
)
from laptop_registry.proofs import (
    add_ed25519_proof,
    build_checkpoint,
    generate_ed25519_jwk,
    load_ed25519_private_key_from_jwk,
    load_proof_keypair,
    public_jwk_from_private_jwk,
    verify_checkpoint,
)
from laptop_registry.registry import LaptopRegistry, Response
from laptop_registry.snapshot import SnapshotError, load_registry, registry_lock, save_registry, state_root

logger = get_logger("cli", RegistryLayer.CLI)

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_USAGE = 2


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = EXIT_USAGE):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False).rstrip("\n")
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        if isinstance(data, dict):
            return "\n".join(f"{k}: {v}" for k, v in data.items())
        return str(data)


def _format_table(data: Any) -> str:
    """Format a list of flat records as an ASCII table."""
    rows_data = data
    if isinstance(data, dict):
        lists = [v for v in data.values() if isinstance(v, list) and v and isinstance(v[0], dict)]
        if not lists:
            return "\n".join(f"{k}: {v}" for k, v in data.items())
        rows_data = lists[0]

    if isinstance(rows_data, list) and rows_data and isinstance(rows_data[0], dict):
        headers = list(rows_data[0].keys())
        rows = [[str(row.get(h, ""))[:40] for h in headers] for row in rows_data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = [" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))]
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    return str(data)


def _read_json_file(path: str, what: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise CLIError(f"{what} not found: {path}") from None
    except json.JSONDecodeError as e:
        raise CLIError(f"{what} is not valid JSON: {path}: {e}") from None


class RegistryCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="lapreg",
            description="Laptop ownership and repair-history registry",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"lapreg {__version__}",
        )
        self.parser.add_argument(
            "--registry", "-r",
            help="Registry snapshot file (default: storage.registry_path)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file (default: standard locations)",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Log errors only; usage errors are not printed, rejections still are",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        self._register_token_commands()
        self._register_admin_commands()
        self._register_query_commands()
        self._register_integrity_commands()
        self._register_config_commands()

    def _register_token_commands(self) -> None:
        """Register commands that change tokens."""
        init = self.subparsers.add_parser("init", help="Create a new registry file")
        init.add_argument("--admin", "-a", help="Initial admin (default: identity.initial_admin)")
        init.add_argument("--force", action="store_true", help="Overwrite an existing file")

        mint = self.subparsers.add_parser("mint", help="Mint a laptop token")
        mint.add_argument("--as", dest="caller", required=True, help="Calling identity")
        mint.add_argument("--serial", "-s", required=True, help="Serial number")
        mint.add_argument("--description", "-d", help="Free-text description")

        transfer = self.subparsers.add_parser("transfer", help="Transfer a token")
        transfer.add_argument("--as", dest="caller", required=True, help="Calling identity")
        transfer.add_argument("--token", "-t", type=int, required=True, help="Token ID")
        transfer.add_argument("--to", dest="recipient", required=True, help="Recipient identity")
        transfer.add_argument("--sender", help="Declared sender (default: the caller)")

        burn = self.subparsers.add_parser("burn", help="Burn a token")
        burn.add_argument("--as", dest="caller", required=True, help="Calling identity")
        burn.add_argument("--token", "-t", type=int, required=True, help="Token ID")

        describe = self.subparsers.add_parser("describe", help="Replace a token's description")
        describe.add_argument("--as", dest="caller", required=True, help="Calling identity")
        describe.add_argument("--token", "-t", type=int, required=True, help="Token ID")
        describe.add_argument("--description", "-d", required=True, help="New description")

        repair = self.subparsers.add_parser("repair", help="Append a repair log")
        repair.add_argument("--as", dest="caller", required=True, help="Calling identity (token owner)")
        repair.add_argument("--token", "-t", type=int, required=True, help="Token ID")
        repair.add_argument("--shop", required=True, help="Repair shop identity")
        repair.add_argument("--description", "-d", required=True, help="What was repaired")

    def _register_admin_commands(self) -> None:
        """Register admin-only commands."""
        pause = self.subparsers.add_parser("pause", help="Pause the registry")
        pause.add_argument("--as", dest="caller", required=True, help="Calling identity (admin)")

        unpause = self.subparsers.add_parser("unpause", help="Unpause the registry")
        unpause.add_argument("--as", dest="caller", required=True, help="Calling identity (admin)")

        set_admin = self.subparsers.add_parser("set-admin", help="Hand over the admin role")
        set_admin.add_argument("--as", dest="caller", required=True, help="Calling identity (admin)")
        set_admin.add_argument("--new-admin", required=True, help="New admin identity")

    def _register_query_commands(self) -> None:
        """Register read-only commands."""
        show = self.subparsers.add_parser("show", help="Show a token's details")
        show.add_argument("--token", "-t", type=int, required=True, help="Token ID")

        owner = self.subparsers.add_parser("owner", help="Show a token's owner")
        owner.add_argument("--token", "-t", type=int, required=True, help="Token ID")

        holdings = self.subparsers.add_parser("holdings", help="List tokens held by an identity")
        holdings.add_argument("--owner", "-o", required=True, help="Owner identity")

        logs = self.subparsers.add_parser("logs", help="List a token's repair logs")
        logs.add_argument("--token", "-t", type=int, required=True, help="Token ID")

        log = self.subparsers.add_parser("log", help="Show one repair log")
        log.add_argument("--log", "-l", dest="log_id", type=int, required=True, help="Repair log ID")

        self.subparsers.add_parser("status", help="Registry summary")

    def _register_integrity_commands(self) -> None:
        """Register audit and checkpoint commands."""
        audit = self.subparsers.add_parser("audit", help="Query or verify the audit trail")
        audit.add_argument("--verify", action="store_true", help="Verify the hash chain")
        audit.add_argument("--actor", help="Filter by actor")
        audit.add_argument("--token", "-t", type=int, help="Filter by token ID")
        audit.add_argument(
            "--event",
            choices=[e.value for e in AuditEventType],
            help="Filter by event type",
        )
        audit.add_argument("--limit", "-n", type=int, help="Show only the last N events")

        checkpoint = self.subparsers.add_parser("checkpoint", help="Build a state checkpoint")
        checkpoint.add_argument("--key", "-k", help="Private JWK file to sign with")
        checkpoint.add_argument("--as-of", help="RFC3339 timestamp (default: now)")
        checkpoint.add_argument("--output", "-o", help="Write the checkpoint to a file")

        verify = self.subparsers.add_parser("verify-checkpoint", help="Verify a signed checkpoint")
        verify.add_argument("--checkpoint", required=True, help="Checkpoint JSON file")

        keygen = self.subparsers.add_parser("keygen", help="Generate an Ed25519 signing key")
        keygen.add_argument("--kid", default="key-1", help="Key identifier")
        keygen.add_argument("--output", "-o", help="Write the private JWK to a file")

    def _register_config_commands(self) -> None:
        """Register config subcommands."""
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        config_sub.add_parser("show", help="Show current configuration")

        get = config_sub.add_parser("get", help="Get a configuration value")
        get.add_argument("path", help="Dotted path, e.g. limits.max_repair_logs")

        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    # -------------------------------------------------------------------------
    # Entry
    # -------------------------------------------------------------------------

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return EXIT_OK

        try:
            self._configure(parsed)
            set_correlation_id(generate_correlation_id())
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return EXIT_OK

        except CLIError as e:
            if not parsed.quiet or e.exit_code == EXIT_REJECTED:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (SnapshotError, ConfigError, OSError, ValueError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return EXIT_USAGE

    def _configure(self, args: argparse.Namespace) -> None:
        mgr = get_config_manager()
        if args.config:
            mgr.load_from_file(args.config)
        else:
            mgr.load_defaults()
        obs = mgr.config.observability
        level = "error" if args.quiet else obs.log_level.get()
        configure_logging(level, obs.log_format.get(), sys.stderr)

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command.replace("-", "_")
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {args.command} {subcmd or ''}".strip())

        return handler(args)

    # -------------------------------------------------------------------------
    # Registry plumbing
    # -------------------------------------------------------------------------

    def _registry_path(self, args: argparse.Namespace) -> Path:
        return Path(args.registry or get_config().storage.registry_path.get())

    def _load(self, args: argparse.Namespace) -> LaptopRegistry:
        return load_registry(self._registry_path(args))

    def _mutate(
        self,
        args: argparse.Namespace,
        operation: Callable[[LaptopRegistry], Response],
    ) -> Dict[str, Any]:
        """Load, apply one operation, persist. Denials are persisted too.

        The snapshot stays locked from load through save, so concurrent
        invocations apply their operations one after another.
        """
        path = self._registry_path(args)
        with registry_lock(path):
            registry = load_registry(path)
            response = operation(registry)
            save_registry(registry, path)
        return {"ok": True, "value": self._unwrap(response)}

    @staticmethod
    def _unwrap(response: Response) -> Any:
        if not response.ok:
            message = str(response.error) if response.error is not None else f"[{response.value}]"
            raise CLIError(message, exit_code=EXIT_REJECTED)
        return response.value

    # -------------------------------------------------------------------------
    # Token handlers
    # -------------------------------------------------------------------------

    def _handle_init(self, args: argparse.Namespace) -> Any:
        path = self._registry_path(args)
        registry = LaptopRegistry(args.admin)
        with registry_lock(path):
            if path.exists() and not args.force:
                raise CLIError(f"Registry already exists: {path} (use --force to overwrite)")
            digest = save_registry(registry, path)
        return {"registry": str(path), "admin": registry.get_admin().value, "sha256": digest}

    def _handle_mint(self, args: argparse.Namespace) -> Any:
        result = self._mutate(args, lambda r: r.mint(args.caller, args.serial, args.description))
        return {"token_id": result["value"], "owner": args.caller}

    def _handle_transfer(self, args: argparse.Namespace) -> Any:
        sender = args.sender or args.caller
        self._mutate(args, lambda r: r.transfer(args.caller, args.token, sender, args.recipient))
        return {"token_id": args.token, "from": sender, "to": args.recipient}

    def _handle_burn(self, args: argparse.Namespace) -> Any:
        self._mutate(args, lambda r: r.burn(args.caller, args.token))
        return {"token_id": args.token, "burned": True}

    def _handle_describe(self, args: argparse.Namespace) -> Any:
        self._mutate(args, lambda r: r.update_description(args.caller, args.token, args.description))
        return {"token_id": args.token, "description": args.description}

    def _handle_repair(self, args: argparse.Namespace) -> Any:
        result = self._mutate(
            args,
            lambda r: r.append_repair_log(args.caller, args.token, args.description, args.shop),
        )
        return {"token_id": args.token, "log_id": result["value"], "shop": args.shop}

    # -------------------------------------------------------------------------
    # Admin handlers
    # -------------------------------------------------------------------------

    def _handle_pause(self, args: argparse.Namespace) -> Any:
        self._mutate(args, lambda r: r.pause(args.caller))
        return {"paused": True}

    def _handle_unpause(self, args: argparse.Namespace) -> Any:
        self._mutate(args, lambda r: r.unpause(args.caller))
        return {"paused": False}

    def _handle_set_admin(self, args: argparse.Namespace) -> Any:
        self._mutate(args, lambda r: r.set_admin(args.caller, args.new_admin))
        return {"admin": args.new_admin}

    # -------------------------------------------------------------------------
    # Query handlers
    # -------------------------------------------------------------------------

    def _handle_show(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        details = self._unwrap(registry.get_laptop_details(args.token))
        if details is None:
            return {"token_id": args.token, "status": "not_found"}
        return {"token_id": args.token, "owner": registry.get_owner(args.token).value, **details.to_dict()}

    def _handle_owner(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        return {"token_id": args.token, "owner": self._unwrap(registry.get_owner(args.token))}

    def _handle_holdings(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        with registry.lock:
            tokens = registry.tokens.tokens_of(args.owner)
        return {"owner": args.owner, "tokens": tokens, "count": len(tokens)}

    def _handle_logs(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        log_ids = self._unwrap(registry.get_all_repair_logs(args.token))
        logs = [registry.get_repair_log(log_id).value.to_dict() for log_id in log_ids]
        return {"token_id": args.token, "logs": logs, "count": len(logs)}

    def _handle_log(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        entry = self._unwrap(registry.get_repair_log(args.log_id))
        if entry is None:
            return {"log_id": args.log_id, "status": "not_found"}
        return entry.to_dict()

    def _handle_status(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        with registry.lock:
            valid, _ = registry.audit_log.verify_chain()
            return {
                "registry": str(self._registry_path(args)),
                **registry.state.to_dict(),
                "live_tokens": len(registry.tokens),
                "repair_logs": len(registry.repair_logs),
                "audit_events": len(registry.audit_log),
                "audit_chain_valid": valid,
                "state_root_sha256": state_root(registry),
            }

    # -------------------------------------------------------------------------
    # Integrity handlers
    # -------------------------------------------------------------------------

    def _handle_audit(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        audit = registry.audit_log
        if args.verify:
            valid, index = audit.verify_chain()
            if not valid:
                raise CLIError(f"Audit chain broken at event index {index}", exit_code=EXIT_REJECTED)
            return {"valid": True, "events": len(audit), "head": audit.head}

        events = audit.get_events(
            actor=args.actor,
            event_type=AuditEventType(args.event) if args.event else None,
            resource_id=args.token,
            limit=args.limit,
        )
        return {"events": [e.to_dict() for e in events], "count": len(events)}

    def _handle_checkpoint(self, args: argparse.Namespace) -> Any:
        registry = self._load(args)
        checkpoint = build_checkpoint(registry, as_of=args.as_of)
        if args.key:
            private_key, vm = load_proof_keypair(args.key)
            add_ed25519_proof(checkpoint, private_key, vm)
        if args.output:
            out = Path(args.output)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(json.dumps(checkpoint, indent=2) + "\n", encoding="utf-8")
        return checkpoint

    def _handle_verify_checkpoint(self, args: argparse.Namespace) -> Any:
        checkpoint = _read_json_file(args.checkpoint, "Checkpoint")
        if not isinstance(checkpoint, dict):
            raise CLIError(f"Checkpoint must be a JSON object: {args.checkpoint}")
        errors = verify_checkpoint(checkpoint, self._load(args))
        if errors:
            raise CLIError("; ".join(errors), exit_code=EXIT_REJECTED)
        return {"valid": True, "state_root_sha256": checkpoint["state_root_sha256"]}

    def _handle_keygen(self, args: argparse.Namespace) -> Any:
        jwk = generate_ed25519_jwk(kid=args.kid)
        _, did = load_ed25519_private_key_from_jwk(jwk)
        vm = f"{did}#{args.kid}"
        if not args.output:
            return {"private_jwk": jwk, "verificationMethod": vm}

        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(jwk, indent=2) + "\n", encoding="utf-8")
        logger.info("Signing key written", operation="keygen", path=str(out), verification_method=vm)
        return {"key_file": str(out), "public_jwk": public_jwk_from_private_jwk(jwk), "verificationMethod": vm}

    # -------------------------------------------------------------------------
    # Config handlers
    # -------------------------------------------------------------------------

    def _handle_config(self, args: argparse.Namespace) -> Any:
        raise CLIError("config requires a subcommand: show, get, validate, schema")

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        return {"path": args.path, "value": get_config_manager().get(args.path)}

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return get_config_manager().export_schema()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = RegistryCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
