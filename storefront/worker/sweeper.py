# storefront/worker/sweeper.py
"""
Standalone reservation sweeper, for deployments without an external cron
hitting /cron/cleanup-reservations.

    SWEEP_INTERVAL_SEC   seconds between sweeps (default 300)
    SWEEPER_MAX_ITERS    stop after N sweeps; 0 runs forever
"""
from __future__ import annotations

import logging
import os
import time
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from storefront.app_server.logging_config import configure_logging
from storefront.config import load_settings
from storefront.db.models import Base, utcnow
from storefront.db.session import make_engine, make_session_factory, transaction
from storefront.inventory.reservations import sweep_expired

logger = logging.getLogger(__name__)


def sweep_once(session_factory: sessionmaker) -> int:
    db = session_factory()
    try:
        with transaction(db):
            return sweep_expired(db, utcnow())
    finally:
        db.close()


def run(
    session_factory: sessionmaker,
    *,
    interval_sec: float,
    max_iters: int = 0,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Sweep every ``interval_sec``; returns the total number of holds deleted."""
    total = 0
    iters = 0
    while True:
        if max_iters and iters >= max_iters:
            return total
        iters += 1

        try:
            total += sweep_once(session_factory)
        except SQLAlchemyError:
            logger.exception("sweep failed", extra={"context": "reservations.sweep"})

        if max_iters and iters >= max_iters:
            return total
        sleep(interval_sec)


def main(max_iters: Optional[int] = None) -> None:
    settings = load_settings()
    configure_logging(settings.log_level)

    engine = make_engine(settings.database_url)
    if settings.create_schema:
        Base.metadata.create_all(engine)

    if max_iters is None:
        max_iters = int(os.getenv("SWEEPER_MAX_ITERS", "0") or "0")
    logger.info(
        "sweeper started, every %ss",
        settings.sweep_interval_sec,
        extra={"context": "reservations.sweep"},
    )
    try:
        run(make_session_factory(engine), interval_sec=settings.sweep_interval_sec, max_iters=max_iters)
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
