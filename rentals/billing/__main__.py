"""
Déclenchement manuel / cron du balayage des soldes différés.

Usage:
    python -m rentals.billing            # facture les soldes dus
    python -m rentals.billing --dry-run  # liste seulement les soldes dus

Variables: LOG_LEVEL (ex: "info", "debug"), plus la configuration Stripe habituelle.
"""
import argparse
import json
import logging
import os
import sys

from rentals.billing.service import list_due_balances, sweep_due_balances


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="python -m rentals.billing")
    parser.add_argument("--dry-run", action="store_true", help="liste les soldes dus sans facturer")
    parser.add_argument("--worker-id", default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "info").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if args.dry_run:
        due = [d.model_dump(mode="json") for d in list_due_balances()]
        print(json.dumps({"due": due, "count": len(due)}, indent=2))
        return 0
    summary = sweep_due_balances(worker_id=args.worker_id)
    print(json.dumps(summary.model_dump(mode="json"), indent=2))
    return 1 if summary.errors else 0


if __name__ == "__main__":
    sys.exit(main())
