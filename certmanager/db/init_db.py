# certmanager/db/init_db.py
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from certmanager.core.config import settings
from certmanager.core.security_password import hash_password
from certmanager.models.user import User, UserRole

logger = structlog.get_logger()


def init_db(db: Session) -> None:
    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        return
    email = settings.ADMIN_EMAIL.strip().lower()
    admin = db.scalar(select(User).where(User.email == email))
    if admin:
        return

    # username precisa ser único; o e-mail já é
    username = email.split("@", 1)[0][:30] or "admin"
    if db.scalar(select(User).where(User.username == username)):
        username = "admin"
    admin = User(
        username=username,
        email=email,
        hashed_password=hash_password(settings.ADMIN_PASSWORD),
        role=UserRole.admin,
        first_name="System",
        last_name="Administrator",
        is_active=True,
        is_email_verified=True,
    )
    db.add(admin)
    db.commit()
    logger.info("db.admin_seeded", email=email)
