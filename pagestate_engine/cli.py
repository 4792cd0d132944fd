"""
CLI interface for the page-state generator.

Supports four modes:
  generate — Write synthetic session logs and a manifest.
  evaluate — Evaluate a manifest and write one state file per state.
  verify   — Re-evaluate a manifest and check the state files reproduce.
  serve    — Run the HTTP inspector.
"""
from __future__ import annotations

import argparse
import logging
import sys

from pagestate_engine.models import DEFAULT_MAX_WORKERS


def _setup_logging(verbose: bool = False) -> None:
    """Configure structured logging."""
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s [%(levelname)-7s] %(name)s — %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="pagestate_engine",
        description="Page-state assertion generator",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug-level logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # --- generate ---
    gen_p = sub.add_parser("generate", help="Generate synthetic session logs")
    gen_p.add_argument("--output", required=True, help="Directory for logs and manifest.json")
    gen_p.add_argument("--scenario", default="list", help="Scenario name (default list)")
    gen_p.add_argument(
        "--sessions", type=int, default=3, help="Sessions per state (default 3)"
    )
    gen_p.add_argument(
        "--seed", type=int, default=42, help="Random seed for reproducibility"
    )

    # --- evaluate ---
    eval_p = sub.add_parser("evaluate", help="Evaluate sessions and write state files")
    eval_p.add_argument("--manifest", required=True, help="Path to manifest.json")
    eval_p.add_argument("--output", required=True, help="Directory for state files")
    eval_p.add_argument("--import-dir", help="Seed states from a previous output directory")
    eval_p.add_argument(
        "--workers", type=int, default=DEFAULT_MAX_WORKERS,
        help=f"Extraction threads (default {DEFAULT_MAX_WORKERS})",
    )

    # --- verify ---
    verify_p = sub.add_parser("verify", help="Re-evaluate and verify state files")
    verify_p.add_argument("--manifest", required=True, help="Path to manifest.json")
    verify_p.add_argument("--output", required=True, help="Directory holding state files")
    verify_p.add_argument("--import-dir", help="Seed states from a previous output directory")

    # --- serve ---
    serve_p = sub.add_parser("serve", help="Run the HTTP inspector")
    serve_p.add_argument("--generator-id", default="default", help="Generator id")
    serve_p.add_argument("--host", default="127.0.0.1")
    serve_p.add_argument("--port", type=int, default=5050)

    args = parser.parse_args(argv)
    _setup_logging(verbose=args.verbose)

    logger = logging.getLogger("pagestate_engine.cli")

    if args.command == "generate":
        from pagestate_engine.generate_sessions import generate_sessions

        try:
            manifest = generate_sessions(args.output, args.scenario, args.sessions, args.seed)
            print(f"Generated {args.scenario} sessions → {manifest}")
        except Exception as exc:
            logger.exception("Generation failed")
            print(f"ERROR: {exc}", file=sys.stderr)
            sys.exit(1)

    elif args.command == "evaluate":
        from pagestate_engine.generator import run_generator

        try:
            hashes = run_generator(args.manifest, args.output, args.import_dir, args.workers)
            for name, snapshot_hash in sorted(hashes.items()):
                print(f"EVALUATE OK — state {name!r}: {snapshot_hash}")
        except Exception as exc:
            logger.exception("Evaluate failed")
            print(f"ERROR: {exc}", file=sys.stderr)
            sys.exit(1)

    elif args.command == "verify":
        from pagestate_engine.generator import verify_generator

        try:
            ok = verify_generator(args.manifest, args.output, args.import_dir)
            if ok:
                print("VERIFY OK: state files reproduce ✓")
            else:
                print("VERIFY FAILED: state files do NOT reproduce ✗", file=sys.stderr)
                sys.exit(1)
        except Exception as exc:
            logger.exception("Verify failed")
            print(f"ERROR: {exc}", file=sys.stderr)
            sys.exit(1)

    elif args.command == "serve":
        from pagestate_engine.generator import PageStateGenerator
        from pagestate_engine.server import create_app

        app = create_app(PageStateGenerator(args.generator_id))
        logger.info("Inspector listening on http://%s:%d", args.host, args.port)
        app.run(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
