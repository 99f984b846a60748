import os
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

# Runtime
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017").replace(
    "<PASSWORD>", os.getenv("DATABASE_PASSWORD", "")
)
DATABASE_NAME = os.getenv("DATABASE_NAME", "tours")

# Auth
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_IN_DAYS = int(os.getenv("JWT_EXPIRES_IN_DAYS", 90))
JWT_COOKIE_EXPIRES_IN_DAYS = int(os.getenv("JWT_COOKIE_EXPIRES_IN_DAYS", 90))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))
PASSWORD_RESET_MINUTES = int(os.getenv("PASSWORD_RESET_MINUTES", 10))

# Query features
PAGE_LIMIT_DEFAULT = 100
PAGE_LIMIT_MAX = int(os.getenv("PAGE_LIMIT_MAX", 100))

# Edge rate limiting
RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", 100))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", 60 * 60))

# Email
EMAIL_HOST = os.getenv("EMAIL_HOST", "")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", 587))
EMAIL_USERNAME = os.getenv("EMAIL_USERNAME", "")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Tours <hello@tours.io>")

# Files
STATIC_DIR = Path(os.getenv("STATIC_DIR", BASE_DIR / "static"))
TEMPLATES_DIR = Path(os.getenv("TEMPLATES_DIR", BASE_DIR / "templates"))


def is_production() -> bool:
    return ENVIRONMENT == "production"


def configure_logging() -> None:
    """Install the root handler once; repeated calls are no-ops."""
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(LOG_LEVEL)
        return
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s]: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
