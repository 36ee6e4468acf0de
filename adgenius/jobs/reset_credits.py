"""
Credit period reset job.

Reads already reset credits lazily; this job does the same work in bulk
so balances shown in reports and admin views are current even for users
who have not made a request since their period ended.

Run daily via cron or task scheduler:
    python -m adgenius.jobs.reset_credits
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from adgenius.database.session import get_db_session_sync
from adgenius.models.user_license import LicenseStatus, UserLicense
from adgenius.services.credit_ledger import CreditLedger

logger = logging.getLogger(__name__)


class CreditResetJob:
    """Starts a new credit period for every due limited license."""

    def __init__(self, db_session: Session, ledger: Optional[CreditLedger] = None):
        self.db_session = db_session
        self.ledger = ledger or CreditLedger(db_session)

    def run(self, now: Optional[datetime] = None) -> dict:
        """
        Execute the reset job.

        Returns:
            Summary of reset results
        """
        now = now or datetime.now(timezone.utc)
        logger.info("Starting credit reset job")

        results = {
            "started_at": datetime.now(timezone.utc).isoformat(),
            "users_checked": 0,
            "licenses_reset": 0,
            "errors": [],
        }

        user_ids = [
            row.user_id
            for row in self.db_session.query(UserLicense.user_id)
            .filter(
                UserLicense.status == LicenseStatus.ACTIVE,
                UserLicense.credits_total.isnot(None),
                UserLicense.credits_reset_date <= now,
            )
            .distinct()
            .all()
        ]
        results["users_checked"] = len(user_ids)

        for user_id in user_ids:
            try:
                results["licenses_reset"] += self.ledger.reset_if_due(user_id, now=now)
                self.db_session.commit()
            except Exception as e:
                self.db_session.rollback()
                error_msg = f"Failed to reset credits for user {user_id}: {str(e)}"
                logger.error(error_msg, extra={"user_id": user_id})
                results["errors"].append(error_msg)

        results["completed_at"] = datetime.now(timezone.utc).isoformat()
        logger.info("Credit reset job completed", extra={
            "users_checked": results["users_checked"],
            "licenses_reset": results["licenses_reset"],
            "error_count": len(results["errors"]),
        })
        return results


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    session = next(get_db_session_sync())
    try:
        results = CreditResetJob(session).run()
    finally:
        session.close()
    return 1 if results["errors"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
