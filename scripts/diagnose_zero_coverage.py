#!/usr/bin/env python3
"""
Zero form-coverage root-cause report.

Reads scored products from the reference store, keeps the ones whose
form-coverage ratio is zero, classifies each by primary reason and writes
the JSON report. Read-only: the store is never modified.

Examples:
  python scripts/diagnose_zero_coverage.py --source lnhpd --source-ids-file ids.json
  python scripts/diagnose_zero_coverage.py --source lnhpd --random-sample --limit 500 --seed 7
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from labelfacts.config import load_settings  # noqa: E402
from labelfacts.diagnostics.root_causes import DEFAULT_SEED, DEFAULT_TOP_N, run_diagnostics  # noqa: E402
from labelfacts.errors import LabelFactsError  # noqa: E402
from labelfacts.reference_store import ReferenceStore  # noqa: E402

log = logging.getLogger("diagnose_zero_coverage")


def read_id_file(path: Path) -> List[str]:
    """A JSON list of ids, or an object with a `sourceIds` list."""
    parsed = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(parsed, dict):
        parsed = parsed.get("sourceIds") or []
    if not isinstance(parsed, list):
        return []
    return [v for v in parsed if isinstance(v, str) and v]


def write_json(path: Path, payload) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    p.add_argument("--source", default="lnhpd")
    p.add_argument("--source-ids-file", type=Path)
    p.add_argument("--source-ids-output", type=Path)
    p.add_argument("--pool-ids-file", type=Path)
    p.add_argument("--random-sample", action="store_true")
    p.add_argument("--limit", type=int, default=1000)
    p.add_argument("--seed", type=int, default=DEFAULT_SEED)
    p.add_argument("--sample-pool", type=int, default=5000)
    p.add_argument("--score-version")
    p.add_argument("--top-n", type=int, default=DEFAULT_TOP_N)
    p.add_argument("--db", type=Path, help="reference sqlite db (default: LABELFACTS_REFERENCE_DB)")
    p.add_argument("--output", type=Path)
    p.add_argument("-v", "--verbose", action="store_true")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    source = args.source.lower()
    output = args.output or ROOT / "output" / "diagnostics" / f"{source}_zero_coverage_root_causes.json"
    source_ids = read_id_file(args.source_ids_file) if args.source_ids_file else None
    pool_ids = read_id_file(args.pool_ids_file) if args.pool_ids_file else None

    try:
        settings = load_settings()
        if args.db:
            settings = replace(settings, reference_db=args.db)
        db = settings.require_reference_db()
        with ReferenceStore(db, chunk_size=settings.reference_chunk) as store:
            payload = run_diagnostics(
                store,
                source,
                source_ids,
                random_sample=args.random_sample,
                limit=max(1, args.limit),
                seed=args.seed,
                pool_ids=pool_ids,
                sample_pool=args.sample_pool,
                score_version=args.score_version,
                top_n=max(1, args.top_n),
            )
    except (LabelFactsError, ValueError) as e:
        log.error("zero-coverage diagnostics failed: %s", e)
        return 1

    if args.source_ids_output:
        write_json(args.source_ids_output, payload["sampleIds"])
    write_json(output, payload)

    print(json.dumps({
        "output": str(output),
        "zeroCoverageCount": payload["zeroCoverageCount"],
        "summary": {k: payload["summary"][k] for k in ("total", "counts", "ratios")},
    }, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
