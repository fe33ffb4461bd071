import json
from typing import Optional

import firebase_admin
from firebase_admin import credentials
import structlog

from invoicehub.config import settings
from invoicehub.services.secrets import get_secret

logger = structlog.get_logger()
_app: Optional[firebase_admin.App] = None


def init_firebase() -> Optional[firebase_admin.App]:
    """Called once at startup from main.py lifespan. Returns None when not configured."""
    global _app
    if _app is not None:
        return _app
    if settings.USE_SECRET_MANAGER:
        cred = credentials.Certificate(
            json.loads(get_secret("firebase-service-account-json"))
        )
    elif settings.FIREBASE_CREDENTIALS_PATH:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
    else:
        logger.warning("firebase_not_configured")
        return None

    options = {}
    if settings.FIREBASE_DATABASE_URL:
        options["databaseURL"] = settings.FIREBASE_DATABASE_URL
    if settings.FIREBASE_PROJECT_ID:
        options["projectId"] = settings.FIREBASE_PROJECT_ID
    _app = firebase_admin.initialize_app(cred, options)
    logger.info("firebase_initialized", database_url=settings.FIREBASE_DATABASE_URL)
    return _app


def get_firebase_app() -> Optional[firebase_admin.App]:
    return _app
