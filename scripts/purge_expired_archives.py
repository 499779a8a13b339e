"""
Clear archived premium data whose restore window has passed.
Run daily: python -m scripts.purge_expired_archives
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError

from membership_api.db.session import SessionLocal
from membership_api.services.membership_service import purge_expired_archives
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main() -> int:
    db = SessionLocal()
    try:
        purged = purge_expired_archives(db)
        logger.info(f"Purged {purged} expired archive(s)")
        return 0
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Archive purge failed: {e}", exc_info=True)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
