# src/coursechain/scripts/purge_nonces.py
"""
Cron job that removes expired sign-in nonces.

Expired nonces can never be consumed, so deleting them only reclaims space.
Run it as often as convenient, e.g. hourly.
"""
from __future__ import annotations

import argparse
import sys

from coursechain.core.errors import PersistenceError
from coursechain.core.logging import configure_logging
from coursechain.core.settings import settings
from coursechain.db.session import SessionLocal
from coursechain.services.nonce_store import NonceStore


def purge_expired_nonces() -> int:
    """Delete every expired nonce and return how many rows were removed."""
    db = SessionLocal()
    try:
        return NonceStore(db, ttl_seconds=settings.nonce_ttl_seconds).purge_expired()
    finally:
        db.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Delete expired sign-in nonces")
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level (defaults to LOG_LEVEL)",
    )
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        removed = purge_expired_nonces()
    except PersistenceError as exc:
        print(f"[purge_nonces] ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    print(f"[purge_nonces] removed {removed} expired nonces")


if __name__ == "__main__":
    main()
