"""
CLI entrypoint for the delegation cleanup job. Run from cron, e.g.:

  python -m app.delegation_cleanup

Or every 15 minutes: */15 * * * * cd /path/to/amexing && .venv/bin/python -m app.delegation_cleanup
"""

import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.core.database import open_session
from app.services.audit import PermissionAuditLogger
from app.services.delegation import DelegationConfig, DelegationLedger
from app.services.role_resolver import RoleResolver
from app.services.store import RecordStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Mark expired delegations inactive and audit each one."""
    settings = get_settings()
    if not settings.DELEGATION_CLEANUP_ENABLED:
        logger.info("Delegation cleanup disabled; nothing to do")
        return 0
    db = open_session()
    try:
        store = RecordStore(db)
        ledger = DelegationLedger(
            store,
            RoleResolver(store),
            PermissionAuditLogger(store),
            config=DelegationConfig.from_settings(settings),
        )
        expired = ledger.expire_stale()
        logger.info("Delegation cleanup completed: expired=%s", expired)
        return 0
    except SQLAlchemyError as e:
        logger.exception("Delegation cleanup failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
