from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from screentime_ledger.config import load_settings
from screentime_ledger.jobs_runner import run_job
from screentime_ledger.logging_setup import setup_logging
from screentime_ledger.service import build_service


def main() -> None:
    if len(sys.argv) != 2:
        raise SystemExit("Usage: python jobs.py <rollover|poll|summary>")

    setup_logging()
    settings = load_settings()
    service = build_service(settings)
    run_job(sys.argv[1], service)


if __name__ == "__main__":
    main()
