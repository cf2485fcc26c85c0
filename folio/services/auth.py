import hmac
import logging
from typing import Optional

from folio.config import settings
from folio.core.security import verify_password

logger = logging.getLogger(__name__)


class AuthService:
    """The blog has a single administrator, configured through settings."""

    def __init__(self, username: Optional[str] = None, password_hash: Optional[str] = None):
        self.username = username or settings.ADMIN_USERNAME
        self.password_hash = password_hash or settings.ADMIN_PASSWORD_HASH

    def is_admin(self, username: Optional[str]) -> bool:
        return username is not None and hmac.compare_digest(username, self.username)

    def authenticate(self, username: str, password: str) -> Optional[str]:
        if not self.is_admin(username):
            logger.warning("Login attempt for unknown user '%s'", username)
            return None
        if not verify_password(password, self.password_hash):
            logger.warning("Wrong password for '%s'", username)
            return None
        return self.username
