from __future__ import annotations

import argparse

from app.workers.reconcile_worker import reconcile_once, run_forever
from services.observability import configure_logging
from settings import settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Settle payouts stuck in processing by polling the rails.")
    parser.add_argument("--stale-seconds", type=int, default=settings.RECONCILE_STALE_SECONDS)
    parser.add_argument("--batch-size", type=int, default=settings.RECONCILE_BATCH_SIZE)
    parser.add_argument("--loop", action="store_true", help="keep running every RECONCILE_INTERVAL_S")
    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL)

    if args.loop:
        run_forever()
        return

    moved = reconcile_once(batch_size=args.batch_size, stale_seconds=args.stale_seconds)
    print("reconciled:", moved)


if __name__ == "__main__":
    main()
