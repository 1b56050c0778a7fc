"""
Release step, run once per deploy before the web workers start.

- Alembic upgrade to head against DATABASE_URL (must be set explicitly).
- Catalog permissions and built-in roles (idempotent).
- Initial status history for orders and inquiries that have none, when the
  ledger lives in SQL. With the memory backend there is nothing to backfill.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.hbm.config import check_production_settings, load_settings  # noqa: E402


def run_release() -> None:
    if not (os.environ.get("DATABASE_URL") or "").strip():
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    settings = load_settings()
    check_production_settings(settings)

    print(f"=== release start (ENV={settings.env}, ledger={settings.status_history_backend}) ===", flush=True)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", settings.database_url)
    command.upgrade(cfg, "head")
    print("Migrations complete.", flush=True)

    from scripts import init_db

    init_db.seed_only(database_url=settings.database_url)
    if settings.status_history_backend == "sql":
        init_db.backfill_only(database_url=settings.database_url)
    print("=== release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
