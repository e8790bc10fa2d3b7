#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from invoicing.core.config import RECONCILE_GRACE_SECONDS  # noqa: E402
from invoicing.core.database import SessionLocal  # noqa: E402
from invoicing.core.logging_setup import configure_logging  # noqa: E402
from invoicing.services.reconciliation import reconcile_pending_invoices  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Conclui ou desfaz faturas cuja baixa de estoque ficou pendente.",
    )
    parser.add_argument(
        "--older-than",
        type=int,
        default=RECONCILE_GRACE_SECONDS,
        help=f"Só faturas pendentes há mais de N segundos (padrão: {RECONCILE_GRACE_SECONDS})",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.older_than < 0:
        print("--older-than must be >= 0")
        return 1

    configure_logging()
    db = SessionLocal()
    try:
        report = reconcile_pending_invoices(db, older_than_seconds=args.older_than)
    finally:
        db.close()

    print(json.dumps(report.to_dict()))
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
