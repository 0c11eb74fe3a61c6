"""
cli.py — Trove command-line interface.

Usage:
    trove ingest PATH [PATH ...] [--user NAME] [--tag TAG ...] [--no-process]
    trove process ASSET_ID
    trove retry ASSET_ID
    trove search QUERY [--limit N] [--json]
    trove reindex
    trove stats
    trove serve [--host HOST] [--port PORT]

Work directory: --work-dir, else TROVE_WORK_DIR, else ./trove_work.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from config import Config, ConfigError, configure_logging, load_config
from trove.assets import create_asset
from trove.blobs import BlobStore
from trove.db import get_connection, get_stats
from trove.models import AssetNotFoundError, AssetValidationError
from trove.process import AssetProcessor, reindex_embeddings, retry_processing
from trove.providers import build_provider
from trove.search import search
from trove.vectors import VectorIndex


def _processor(cfg: Config) -> AssetProcessor:
    provider = build_provider(cfg)
    return AssetProcessor(
        cfg.get_db_path(),
        BlobStore(cfg.get_blob_dir()),
        provider,
        VectorIndex(cfg.get_vector_dir()),
        cfg,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_ingest(cfg: Config, args: argparse.Namespace) -> int:
    conn = get_connection(cfg.get_db_path())
    blobs = BlobStore(cfg.get_blob_dir())
    processor = None if args.no_process else _processor(cfg)
    failures = 0
    try:
        for raw in args.paths:
            path = Path(raw)
            if not path.is_file():
                print(f"[ERROR] Not a file: {path}", file=sys.stderr)
                failures += 1
                continue
            try:
                asset = create_asset(
                    conn, blobs, path.read_bytes(), path.name,
                    uploaded_by=args.user,
                    user_tags=args.tag,
                    max_file_bytes=cfg.max_file_bytes,
                )
            except (AssetValidationError, OSError) as e:
                print(f"[ERROR] {path.name}: {e}", file=sys.stderr)
                failures += 1
                continue
            status = processor.process_asset(asset.id) if processor else asset.processing_status
            print(f"{asset.id}  {str(status):<8}  {asset.filename}")
    finally:
        conn.close()
    return 1 if failures else 0


def cmd_process(cfg: Config, args: argparse.Namespace) -> int:
    status = _processor(cfg).process_asset(args.asset_id)
    if status is None:
        print(f"[ERROR] Asset not found: {args.asset_id}", file=sys.stderr)
        return 1
    print(f"{args.asset_id}  {status}")
    return 0 if status == "complete" else 1


def cmd_retry(cfg: Config, args: argparse.Namespace) -> int:
    processor = _processor(cfg)
    conn = get_connection(cfg.get_db_path())
    try:
        # submit runs the pipeline inline, so the returned row is final
        asset_status = retry_processing(conn, args.asset_id, processor.process_asset).processing_status
    except AssetNotFoundError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1
    finally:
        conn.close()
    print(f"{args.asset_id}  {asset_status}")
    return 0 if asset_status == "complete" else 1


def cmd_search(cfg: Config, args: argparse.Namespace) -> int:
    conn = get_connection(cfg.get_db_path())
    try:
        result = search(
            args.query, conn, build_provider(cfg), VectorIndex(cfg.get_vector_dir()), cfg,
        )
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2
    finally:
        conn.close()

    page = result.page(args.limit or cfg.result_limit)
    if args.json:
        print(json.dumps(page.to_dict(), indent=2))
        return 0
    print(f"{result.total} results for {result.query!r}")
    for c in page.assets:
        sim = f"  sim={c.similarity:.2f}" if c.similarity is not None else ""
        print(f"  {c.score:>4}  {c.match_type:<8} {c.asset.filename}  [{c.id}]{sim}")
    return 0


def cmd_reindex(cfg: Config, args: argparse.Namespace) -> int:
    conn = get_connection(cfg.get_db_path())
    try:
        count = reindex_embeddings(conn, VectorIndex(cfg.get_vector_dir()))
    finally:
        conn.close()
    print(f"Reindexed {count} embeddings")
    return 0


def cmd_stats(cfg: Config, args: argparse.Namespace) -> int:
    conn = get_connection(cfg.get_db_path())
    try:
        print(json.dumps(get_stats(conn), indent=2))
    finally:
        conn.close()
    return 0


def cmd_serve(cfg: Config, args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "server:app",
        host=args.host or cfg.server_host,
        port=args.port or cfg.server_port,
    )
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="trove", description="Trove asset library")
    ap.add_argument("--work-dir", type=Path, default=None, help="Work directory")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("ingest", help="Add image / PDF files to the library")
    p.add_argument("paths", nargs="+")
    p.add_argument("--user", default="", help="uploaded_by value")
    p.add_argument("--tag", action="append", default=[], help="User tag (repeatable)")
    p.add_argument("--no-process", action="store_true", help="Leave assets pending")
    p.set_defaults(func=cmd_ingest)

    p = sub.add_parser("process", help="Run the enrichment pipeline for one asset")
    p.add_argument("asset_id")
    p.set_defaults(func=cmd_process)

    p = sub.add_parser("retry", help="Reset an asset to pending and reprocess it")
    p.add_argument("asset_id")
    p.set_defaults(func=cmd_retry)

    p = sub.add_parser("search", help="Hybrid keyword + semantic search")
    p.add_argument("query")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("reindex", help="Rebuild the vector index from stored embeddings")
    p.set_defaults(func=cmd_reindex)

    p = sub.add_parser("stats", help="Asset counts by processing status")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("serve", help="Run the HTTP server")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.set_defaults(func=cmd_serve)
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = load_config(work_dir=args.work_dir)
    except (FileNotFoundError, ConfigError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2
    cfg.ensure_dirs()
    configure_logging(cfg)
    return args.func(cfg, args)


if __name__ == "__main__":
    sys.exit(main())
