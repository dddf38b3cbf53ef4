"""
Feature Expiration Worker.

Background job that flips is_active off on office feature group grants
whose expires_at has passed, so the audit trail and admin listings show
them as expired.

Correctness does not depend on this job: entitlement checks evaluate
expiry lazily on every read.

Run as: python -m office_access.jobs.feature_expiration_job

Configuration:
- FEATURE_EXPIRATION_INTERVAL: Seconds between cycles (default: 3600)
- LOG_LEVEL: Log level (default: INFO)
"""

import logging
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from office_access.bootstrap import AccessControl
from office_access.config.settings import AccessSettings
from office_access.database.session import get_db_session_sync

logger = logging.getLogger(__name__)

_shutdown = False


def _handle_signal(signum, frame):
    global _shutdown
    logger.info("Shutdown signal received", extra={"signal": signum})
    _shutdown = True


@dataclass
class ExpirationStats:
    """Track expiration run statistics."""

    grants_expired: int = 0
    errors: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "grants_expired": self.grants_expired,
            "errors": self.errors,
            "duration_seconds": round(duration, 2),
        }


def run_cycle(
    db: Optional[Session] = None,
    access_control: Optional[AccessControl] = None,
    now: Optional[datetime] = None,
) -> ExpirationStats:
    """
    Run one expiry sweep and commit it.

    A session may be passed in (tests); otherwise one is opened and
    closed for the cycle.
    """
    stats = ExpirationStats()
    access_control = access_control or AccessControl()

    owns_session = db is None
    db_gen = None
    if owns_session:
        db_gen = get_db_session_sync()
        db = next(db_gen)

    try:
        evaluator = access_control.evaluator_for(db)
        stats.grants_expired = evaluator.deactivate_expired(now)
        db.commit()

        if stats.grants_expired:
            logger.info("Feature expiration cycle complete", extra=stats.to_dict())
        return stats

    except Exception:
        logger.error("Feature expiration cycle failed", exc_info=True)
        db.rollback()
        stats.errors += 1
        return stats
    finally:
        if owns_session:
            db_gen.close()


def main():
    settings = AccessSettings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    access_control = AccessControl.from_settings(settings)
    interval = settings.feature_expiration_interval
    logger.info("Feature expiration worker started", extra={"poll_interval": interval})

    while not _shutdown:
        run_cycle(access_control=access_control)
        # Sleep in 1-second increments for responsive shutdown
        for _ in range(interval):
            if _shutdown:
                break
            time.sleep(1)

    logger.info("Feature expiration worker stopped")


if __name__ == "__main__":
    main()
