"""
Operator CLI for reconciling resources against Azure.

    python -m provisioner.cli kinds
    python -m provisioner.cli parse-id <kind> <id>
    python -m provisioner.cli apply <kind> --config resource.json [--new]
    python -m provisioner.cli read <kind> <id> [--config resource.json]
    python -m provisioner.cli delete <kind> <id>

Credentials and default deadlines come from settings (environment or .env).
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import structlog

from provisioner.modules.reconcile.adapters.azure import build_azure_backend
from provisioner.modules.reconcile.domain.adapter import ABSENT, ReconcileAdapter
from provisioner.modules.reconcile.domain.backend import ResourceBackend
from provisioner.modules.reconcile.domain.factory import ResourceKind
from provisioner.modules.reconcile.domain.kinds import ResourceKindRegistry
from provisioner.modules.reconcile.domain.schema import PropertyRecord
from provisioner.shared.core.config import get_settings
from provisioner.shared.core.exceptions import InvalidConfigError, ProvisionerException
from provisioner.shared.core.logging import setup_logging

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_ABSENT = 3

BackendBuilder = Callable[[str], ResourceBackend]


def _azure_backend(type_name: str) -> ResourceBackend:
    return build_azure_backend(type_name, get_settings().azure_credentials())


def _load_config(kind: ResourceKind, path: Optional[str]) -> Optional[PropertyRecord]:
    if not path:
        return None
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise InvalidConfigError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidConfigError(f"Config file {path} must contain a JSON object")
    return kind.record_type.from_config(data)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


async def _run(
    args: argparse.Namespace, kind: ResourceKind, backend_builder: BackendBuilder
) -> int:
    if args.command == "parse-id":
        identity = kind.resolver.parse(args.id)
        _print_json({"id": str(identity), **identity.describe()})
        return EXIT_OK

    backend = backend_builder(kind.type_name)
    adapter: ReconcileAdapter[Any] = ReconcileAdapter(kind, backend)
    try:
        if args.command == "apply":
            config = _load_config(kind, args.config)
            handle = await adapter.apply(config, new_resource=args.new, timeout=args.timeout)
            _print_json({"id": handle})
            return EXIT_OK

        if args.command == "read":
            prior = _load_config(kind, args.config)
            record = await adapter.read(args.id, prior=prior, timeout=args.timeout)
            if record is ABSENT:
                _print_json({"id": args.id, "absent": True})
                return EXIT_ABSENT
            state = record.model_dump(mode="json", exclude_none=True)
            if prior is not None:
                state["drift"] = sorted(prior.without_identity().diff(record.without_identity()))
            _print_json(state)
            return EXIT_OK

        if args.command == "delete":
            await adapter.delete(args.id, timeout=args.timeout)
            _print_json({"id": args.id, "deleted": True})
            return EXIT_OK
    finally:
        await backend.close()

    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="provisioner", description="Reconcile Azure child resources."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("kinds", help="List supported resource kinds.")

    parse_id = subparsers.add_parser("parse-id", help="Parse and validate a resource ID.")
    parse_id.add_argument("kind")
    parse_id.add_argument("id")

    apply = subparsers.add_parser("apply", help="Create or update a resource from a JSON config.")
    apply.add_argument("kind")
    apply.add_argument("--config", required=True, help="Path to a JSON resource configuration.")
    apply.add_argument(
        "--new",
        action="store_true",
        help="Fail if the resource already exists instead of taking it over.",
    )

    read = subparsers.add_parser("read", help="Read the live state of a resource.")
    read.add_argument("kind")
    read.add_argument("id")
    read.add_argument(
        "--config",
        default=None,
        help="Previously applied JSON configuration; reports drift and keeps write-only values.",
    )

    delete = subparsers.add_parser("delete", help="Delete a resource. Missing resources succeed.")
    delete.add_argument("kind")
    delete.add_argument("id")

    for sub in (apply, read, delete):
        sub.add_argument(
            "--timeout",
            type=float,
            default=None,
            help="Deadline in seconds (defaults to the configured per-operation timeout).",
        )
    return parser


def main(
    argv: Optional[Sequence[str]] = None,
    backend_builder: BackendBuilder = _azure_backend,
) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    if args.command == "kinds":
        for type_name in ResourceKindRegistry.type_names():
            print(type_name)
        return EXIT_OK

    try:
        kind = ResourceKindRegistry.get(args.kind)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    try:
        return asyncio.run(_run(args, kind, backend_builder))
    except ProvisionerException as exc:
        logger.error("cli_command_failed", command=args.command, code=exc.code, error=exc.message)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
