from functools import lru_cache
from typing import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from imgvariants.database import SessionLocal
from imgvariants.utils.codecs import resolve_webp_encoder
from imgvariants.utils.image_variants import DEFAULT_CONFIG, VariantBuilder
from imgvariants.utils.storage import BlobStorage, storage_from_env

# resolved once per process; None when Pillow lacks WebP support
WEBP_ENCODER = resolve_webp_encoder(DEFAULT_CONFIG.webp_quality)


def get_db() -> Iterator[Session]:
    db: Session = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache(maxsize=1)
def get_storage() -> BlobStorage:
    return storage_from_env()


def get_builder(storage: BlobStorage = Depends(get_storage)) -> VariantBuilder:
    return VariantBuilder(storage, DEFAULT_CONFIG, webp_encoder=WEBP_ENCODER)
