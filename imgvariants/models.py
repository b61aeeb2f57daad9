import json
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text

from imgvariants.database import Base, init_db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImageUpload(Base):
    __tablename__ = "image_uploads"
    id              = Column(Integer, primary_key=True)
    base_id         = Column(String(64), unique=True, nullable=False, index=True)
    path            = Column(String, nullable=False)
    original_name   = Column(String)
    original_width  = Column(Integer, nullable=False)
    original_height = Column(Integer, nullable=False)
    original_size   = Column(Integer, nullable=False)
    size            = Column(Integer, nullable=False)
    savings_percent = Column(Integer, nullable=False)
    # JSON list of every blob key written for this upload
    manifest        = Column(Text, nullable=False, default="[]")
    created_at      = Column(DateTime, default=_utcnow, nullable=False)

    @property
    def manifest_paths(self) -> list[str]:
        return json.loads(self.manifest or "[]")

    @manifest_paths.setter
    def manifest_paths(self, paths: list[str]) -> None:
        self.manifest = json.dumps(list(paths))


init_db()
