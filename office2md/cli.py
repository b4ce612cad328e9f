from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

import office2md
from office2md.config import BACKENDS, ContentStoreConfig
from office2md.extractors.data_types import MarkdownContent
from office2md.media.session import ConversionSession
from office2md.storage.content_store import ContentStore

# Upper bound for pending remote uploads before the process exits
UPLOAD_FLUSH_TIMEOUT = 30.0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="office2md",
        description="Convert an office document to Markdown on stdout (or JSON with --json).",
    )
    parser.add_argument(
        "path",
        type=Path,
        help="Path to the file to convert.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit JSON with text, warnings and metadata instead of plain Markdown.",
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Directory of the content store for extracted images (default: OFFICE2MD_STORE_DIR).",
    )
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default=None,
        help="Content store backend (default: OFFICE2MD_STORE_BACKEND or filesystem).",
    )
    parser.add_argument(
        "--chat-id",
        default=None,
        help="Chat the extracted images are uploaded for when a remote store is configured.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log conversion progress to stderr.",
    )
    return parser


def _store_config(args: argparse.Namespace) -> ContentStoreConfig:
    config = ContentStoreConfig.from_env()
    overrides = {}
    if args.store is not None:
        overrides["root"] = args.store
    if args.backend is not None:
        overrides["backend"] = args.backend
    return dataclasses.replace(config, **overrides) if overrides else config


def _serialize_result(result: MarkdownContent) -> dict:
    payload = result.to_dict()
    payload["warnings"] = list(result.warnings)
    payload["metadata"] = result.get_metadata().to_dict()
    return payload


def _serialize_full_text(results: list[MarkdownContent]) -> str:
    return "\n\n".join(result.get_full_text().strip() for result in results).rstrip()


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = _build_parser()
    try:
        args, unknown = parser.parse_known_args(argv)
    except SystemExit as exc:
        code = exc.code if isinstance(exc.code, int) else 1
        return code

    if unknown:
        unknown_str = " ".join(unknown)
        print(
            f"office2md: warning: unsupported arguments: {unknown_str}",
            file=sys.stderr,
        )
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        store = ContentStore(_store_config(args))
    except Exception as exc:
        print(f"office2md: {exc}", file=sys.stderr)
        return 1

    try:
        session = ConversionSession(store=store, chat_id=args.chat_id)
        results = list(office2md.read_file(args.path, session=session))
        if not results:
            raise RuntimeError(f"No conversion results for {args.path}")
        if args.json:
            payload = [_serialize_result(result) for result in results]
            json.dump(payload[0] if len(payload) == 1 else payload, sys.stdout)
            sys.stdout.write("\n")
        else:
            sys.stdout.write(_serialize_full_text(results))
            sys.stdout.write("\n")
        return 0
    except Exception as exc:
        print(f"office2md: {exc}", file=sys.stderr)
        return 1
    finally:
        store.flush(UPLOAD_FLUSH_TIMEOUT)
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
