from __future__ import annotations

import argparse
import json
import sys

from studyguide.config import get_settings
from studyguide.services.chunked.planner import build_plan_preview


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="studyguide-plan",
        description="Preview how a PDF would be split into generation chunks",
    )
    parser.add_argument(
        "--pages",
        type=int,
        required=True,
        help="Total number of pages in the PDF",
    )
    parser.add_argument(
        "--file-size-bytes",
        type=int,
        default=20 * 1024 * 1024,
        help="PDF size in bytes",
    )
    parser.add_argument(
        "--max-concurrency",
        type=int,
        default=settings.chunk_max_concurrency,
        help="Number of chunks generated in parallel",
    )
    parser.add_argument(
        "--seconds-per-chunk",
        type=float,
        default=15.0,
        help="Estimated generation time of one chunk",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    try:
        preview = build_plan_preview(
            args.pages,
            args.file_size_bytes,
            max_concurrency=args.max_concurrency,
            seconds_per_chunk=args.seconds_per_chunk,
        )
    except ValueError as exc:
        print(f"[studyguide-plan] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    configuration = preview["configuration"]
    print(
        "[studyguide-plan] "
        f"chunk_size={configuration['chunk_size']} "
        f"chunks={configuration['total_chunks']} "
        f"batches={configuration['batches']}",
        file=sys.stderr,
        flush=True,
    )
    print(json.dumps(preview), flush=True)


if __name__ == "__main__":
    main()
