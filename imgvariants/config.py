import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

STORAGE_BACKEND    = os.getenv("STORAGE_BACKEND", "local").lower()
STORAGE_ROOT       = Path(os.getenv("STORAGE_ROOT", "./storage"))
STORAGE_URL_PREFIX = os.getenv("STORAGE_URL_PREFIX", "/storage")
AWS_REGION         = os.getenv("AWS_DEFAULT_REGION", "us-west-1")
S3_BUCKET          = os.getenv("S3_BUCKET")
DB_URL             = os.getenv("DATABASE_URL", "sqlite:///images.db")
MAX_UPLOAD_BYTES   = int(os.getenv("MAX_UPLOAD_BYTES", str(20480 * 1024)))
VARIANT_WORKERS    = min(3, max(1, int(os.getenv("VARIANT_WORKERS", "3"))))
LOG_LEVEL          = os.getenv("LOG_LEVEL", "INFO").upper()

if STORAGE_BACKEND not in ("local", "s3"):
    raise RuntimeError(f"STORAGE_BACKEND must be 'local' or 's3', got {STORAGE_BACKEND!r}")
if STORAGE_BACKEND == "s3" and not S3_BUCKET:
    raise RuntimeError("S3_BUCKET must be set when STORAGE_BACKEND=s3")

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("image_variants")
