from pathlib import Path, PurePosixPath

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from imgvariants.config import MAX_UPLOAD_BYTES, logger
from imgvariants.deps import get_builder, get_db
from imgvariants.models import ImageUpload
from imgvariants.schemas import ImageDelete, ImageUploadOut, MessageOut, UploadOut
from imgvariants.utils.errors import (
    EncodeError,
    StorageError,
    UnsupportedFormatError,
    UploadCancelled,
    VariantError,
)
from imgvariants.utils.image_variants import VariantBuilder, split_variant_path

router = APIRouter()

ALLOWED_EXTENSIONS = {"jpeg", "jpg", "png", "gif", "webp"}

ERROR_STATUS = (
    (UnsupportedFormatError, 422),
    (EncodeError,            500),
    (StorageError,           502),
    (UploadCancelled,        499),
)


def _http_error(exc: VariantError, prefix: str) -> HTTPException:
    status = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 500)
    return HTTPException(status_code=status, detail=f"{prefix}: {exc}")


@router.get("/images", response_model=list[ImageUploadOut])
def list_images(db: Session = Depends(get_db)):
    return db.query(ImageUpload).order_by(ImageUpload.id.desc()).all()


@router.post("/images", response_model=UploadOut, status_code=201)
def upload_image(
    image: UploadFile = File(...),
    db: Session = Depends(get_db),
    builder: VariantBuilder = Depends(get_builder),
):
    if not image.filename:
        raise HTTPException(status_code=400, detail="No image provided")

    client_name = Path(image.filename)
    ext = client_name.suffix.lower().lstrip(".")
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=422,
            detail=f"File type '{ext or client_name.name}' not allowed. "
                   f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
        )

    data = image.file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {MAX_UPLOAD_BYTES} bytes.",
        )

    try:
        result = builder.process_upload(data, image.filename, ext, len(data))
    except VariantError as e:
        logger.warning("Upload of %s failed: %s", image.filename, e)
        raise _http_error(e, "Image processing failed")

    record = ImageUpload(
        base_id         = result.base_id,
        path            = result.path,
        original_name   = client_name.stem,
        original_width  = result.original_width,
        original_height = result.original_height,
        original_size   = result.original_size,
        size            = result.size,
        savings_percent = result.savings_percent,
    )
    record.manifest_paths = result.manifest
    try:
        db.add(record)
        db.flush()
    except SQLAlchemyError as e:
        logger.exception("Could not record upload %s", result.base_id)
        builder.delete_all_variants(result.path)
        raise HTTPException(status_code=500, detail=f"Image processing failed: {e}")

    logger.info("Stored upload id=%s base_id=%s savings=%s%%", record.id, record.base_id, result.savings_percent)
    return {"message": "Image uploaded and optimized successfully", **result.to_dict()}


@router.delete("/images", response_model=MessageOut)
def delete_image(
    payload: ImageDelete,
    db: Session = Depends(get_db),
    builder: VariantBuilder = Depends(get_builder),
):
    path = payload.path.strip()
    if not path or ".." in PurePosixPath(path).parts or path.startswith("/"):
        raise HTTPException(status_code=422, detail="Invalid image path")

    _, base_id = split_variant_path(path, builder.config.size_names)
    record = db.query(ImageUpload).filter_by(base_id=base_id).first()
    storage = builder.storage
    try:
        if record:
            for key in record.manifest_paths:
                if storage.exists(key):
                    storage.delete(key)
        builder.delete_all_variants(path)
        # the given path may not follow the naming convention
        if storage.exists(path):
            storage.delete(path)
    except StorageError as e:
        raise _http_error(e, "Delete failed")

    if record:
        db.delete(record)
    return {"message": "Image and all variants deleted successfully"}
