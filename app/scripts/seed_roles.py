"""
Create or update the system roles. Safe to re-run. Run from project root:
  python -m app.scripts.seed_roles
"""
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.database import open_session
from app.models import Lifecycle, Role
from app.services.permissions import SYSTEM_ROLES, normalize_permissions

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def seed_system_roles(db: Session) -> tuple[int, int]:
    """Upsert every system role by name. Returns (created, updated)."""
    created = updated = 0
    for definition in SYSTEM_ROLES:
        role = db.query(Role).filter(Role.name == definition.name.value).first()
        if role is None:
            role = Role(name=definition.name.value, denied_permissions=[])
            db.add(role)
            created += 1
        else:
            updated += 1
        role.display_name = definition.display_name
        role.description = definition.description
        role.level = definition.level
        role.scope = definition.scope.value
        role.base_permissions = normalize_permissions(definition.base_permissions)
        role.inherits_from = definition.inherits_from.value if definition.inherits_from else None
        role.delegatable = definition.delegatable
        role.is_system_role = True
        role.conditions = dict(definition.conditions)
        role.lifecycle = Lifecycle.ACTIVE.value
    db.commit()
    return created, updated


def main() -> int:
    db = open_session()
    try:
        created, updated = seed_system_roles(db)
        logger.info("System roles seeded: created=%s updated=%s", created, updated)
        return 0
    except SQLAlchemyError as e:
        logger.exception("Seeding roles failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
