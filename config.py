import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Paths
BASE_DIR = Path(__file__).parent
DATA_DIR = Path(os.getenv("DATA_DIR", BASE_DIR / "data"))
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", BASE_DIR / "uploads"))
POSTS_FILE = os.getenv("POSTS_FILE", "blogs")
ADMIN_FILE = os.getenv("ADMIN_FILE", "admin")

# Storage
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "file")
MONGODB_URI = os.getenv("MONGODB_URI", "")
MONGODB_DB = os.getenv("MONGODB_DB", "blog")
SEED_SAMPLE_POSTS = _flag("SEED_SAMPLE_POSTS")

# Images
IMAGE_BACKEND = os.getenv("IMAGE_BACKEND", "local")
MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_CONTENT_LENGTH = 10 * 1024 * 1024
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")

# Auth / tokens
DEFAULT_ADMIN_PASSWORD = "admin123"
DEFAULT_JWT_SECRET = "dev-secret-change-me"
JWT_SECRET = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
TOKEN_TTL_HOURS = int(os.getenv("TOKEN_TTL_HOURS", "24"))
ADMIN_USER = os.getenv("ADMIN_USER", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", DEFAULT_ADMIN_PASSWORD)
REFUSE_DEFAULT_CREDENTIALS = _flag("REFUSE_DEFAULT_CREDENTIALS")

# Runtime
APP_ENV = os.getenv("APP_ENV", "development")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def as_dict() -> dict:
    """Upper-case settings, ready for ``app.config.update``."""
    return {key: value for key, value in globals().items() if key.isupper()}
