"""Entry point for `python -m encrypted_attributes` and the `encattr` CLI script."""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import secrets
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from encrypted_attributes.engine import FernetAttributeEngine, generate_key
from encrypted_attributes.errors import EncryptedAttributeError
from encrypted_attributes.models import AttributePath, EncryptedAttributesConfig
from encrypted_attributes.node_store import NodeAttributes, NodeRepository
from encrypted_attributes.orchestrator import EncryptedAttributes
from encrypted_attributes.settings import RuntimeSettings


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Read and write encrypted node attributes")
    parser.add_argument("--node", default=None, help="Node name (default: ENCATTR_NODE_NAME)")
    parser.add_argument("--store-root", type=Path, default=None, help="Node document directory (default: ENCATTR_NODE_STORE_ROOT)")
    parser.add_argument(
        "--local-mode",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run as a local deployment without key sharing (disables encryption)",
    )
    toggle = parser.add_mutually_exclusive_group()
    toggle.add_argument("--enabled", dest="force", action="store_const", const=True, default=None, help="Force encryption on")
    toggle.add_argument("--disabled", dest="force", action="store_const", const=False, help="Force encryption off")
    parser.add_argument("--allow", default=None, metavar="QUERY", help="Search query for clients allowed to decrypt")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("enabled", help="Print whether encrypted attributes are in effect")
    read = commands.add_parser("read", help="Print the value of an attribute")
    read.add_argument("path", type=AttributePath.parse)
    read_remote = commands.add_parser("read-from-node", help="Print an encrypted attribute of another node")
    read_remote.add_argument("node_id")
    read_remote.add_argument("path", type=AttributePath.parse)
    write = commands.add_parser("write", help="Write an attribute and print its cleartext")
    write.add_argument("path", type=AttributePath.parse)
    source = write.add_mutually_exclusive_group(required=True)
    source.add_argument("--value", default=None, help="Literal value to store")
    source.add_argument("--generate", type=int, default=None, metavar="NBYTES", help="Store a random URL-safe secret")
    commands.add_parser("generate-key", help="Print a new engine key")
    return parser.parse_args(argv)


def _value_source(args: argparse.Namespace) -> Callable[[], Any]:
    if args.generate is not None:
        if args.generate < 8:
            raise ValueError("--generate must be at least 8 bytes")
        return lambda: secrets.token_urlsafe(args.generate)
    return lambda: args.value


def build_helpers(args: argparse.Namespace, settings: RuntimeSettings) -> tuple[EncryptedAttributes, NodeAttributes]:
    repository = NodeRepository(args.store_root if args.store_root is not None else settings.node_store_path(Path.cwd()))
    node = repository.load(args.node if args.node is not None else settings.node_name)
    config: EncryptedAttributesConfig = settings.to_config()
    if args.local_mode is not None:
        config.local_mode = args.local_mode

    # Without a configured key a throwaway one is used; the engine is never called while disabled.
    engine = FernetAttributeEngine(settings.secret_key or generate_key(), config=config, repository=repository)
    helpers = EncryptedAttributes(node, engine, activate=importlib.import_module, config=config)
    if args.force is not None:
        helpers.set_enabled(args.force)
    if args.allow is not None:
        helpers.allow(args.allow)
    if not settings.secret_key and helpers.enabled():
        raise ValueError("ENCATTR_SECRET_KEY is required when encrypted attributes are enabled")
    return helpers, node


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "generate-key":
        print(generate_key())
        return 0

    try:
        settings = RuntimeSettings.from_env()
        helpers, node = build_helpers(args, settings)
    except (OSError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    try:
        if args.command == "enabled":
            print(f"enabled={str(helpers.enabled()).lower()}")
        elif args.command == "read":
            print(json.dumps(helpers.read(args.path)))
        elif args.command == "read-from-node":
            print(json.dumps(helpers.read_from_node(args.node_id, args.path)))
        elif args.command == "write":
            value = helpers.write(args.path, _value_source(args))
            node.save()
            print(json.dumps(value))
    except (EncryptedAttributeError, RuntimeError, OSError, ValueError) as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
