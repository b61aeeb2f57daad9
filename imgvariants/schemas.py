from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict


class OriginalOut(BaseModel):
    width:  int
    height: int
    size:   int


class VariantOut(BaseModel):
    path:      str
    url:       str
    webp_path: Optional[str] = None
    webp_url:  Optional[str] = None
    width:     int
    height:    int
    size:      int
    webp_size: Optional[int] = None


class UploadOut(BaseModel):
    message:         str
    original:        OriginalOut
    variants:        Dict[str, VariantOut]
    path:            str
    url:             str
    webp_url:        Optional[str] = None
    size:            int
    original_size:   int
    savings_percent: int


class ImageDelete(BaseModel):
    path: str


class MessageOut(BaseModel):
    message: str


class ImageUploadOut(BaseModel):
    id:              int
    base_id:         str
    path:            str
    original_name:   Optional[str] = None
    original_width:  int
    original_height: int
    original_size:   int
    size:            int
    savings_percent: int
    created_at:      datetime

    model_config = ConfigDict(from_attributes=True)
