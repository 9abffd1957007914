# scripts/run_transfer_batch.py
from __future__ import annotations

import argparse
import json
import logging
import sys

from fundrelease.workers.batch import BatchStartError
from fundrelease.workers.transfer_scheduler import run_transfer_batch
from services.transition_ledger import shutdown_ledger
from settings import settings, validate_env_settings


logger = logging.getLogger("run_transfer_batch")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Move eligible PENDING payments to the payee account.")
    parser.add_argument("--max-attempts", type=int, default=None, help="override RELEASE_MAX_ATTEMPTS (0 = unlimited)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=(settings.LOG_LEVEL or "INFO").upper(), format="%(levelname)s %(name)s: %(message)s")

    try:
        validate_env_settings()
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1

    try:
        summary = run_transfer_batch(max_attempts=args.max_attempts)
    except BatchStartError as exc:
        logger.error("Transfer batch failed to start: %s", exc)
        return 1
    finally:
        shutdown_ledger()

    print(json.dumps(summary.to_dict(), indent=2, sort_keys=True))
    return 2 if summary.aborted else 0


if __name__ == "__main__":
    sys.exit(main())
