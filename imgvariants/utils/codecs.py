"""Pillow codecs for the variant pipeline.

Decoding turns uploaded bytes plus the client's declared extension into an
upright, mode-normalised raster. Encoding turns a scaled raster back into
bytes, either in the primary codec (JPEG, or PNG for PNG sources) or in WebP
when this Pillow build ships a WebP encoder.
"""

from io import BytesIO
from typing import Any, Optional

from PIL import Image, ImageOps, UnidentifiedImageError, features

from imgvariants.utils.errors import EncodeError, UnsupportedFormatError

# declared extension -> (normalised format name, Pillow plugin id)
EXTENSION_FORMATS = {
    "jpg":  ("jpeg", "JPEG"),
    "jpeg": ("jpeg", "JPEG"),
    "png":  ("png",  "PNG"),
    "gif":  ("gif",  "GIF"),
    "webp": ("webp", "WEBP"),
}

_DECODE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError)


def webp_supported() -> bool:
    return bool(features.check("webp"))


def normalize_extension(extension: str) -> str:
    ext = extension.lower().lstrip(".")
    if ext not in EXTENSION_FORMATS:
        raise UnsupportedFormatError(f"Unsupported image format: {extension!r}")
    return EXTENSION_FORMATS[ext][0]


def decode(data: bytes, extension: str) -> Image.Image:
    """Decode *data* with the codec matching *extension*.

    The bytes must actually be in that format: a PNG uploaded as ``.jpg`` is
    rejected rather than sniffed. The returned image is fully loaded, has its
    EXIF orientation applied and is RGBA for PNG sources, RGB otherwise.
    """
    fmt = normalize_extension(extension)
    if fmt == "webp" and not webp_supported():
        raise UnsupportedFormatError("WebP decoding is not available on this server")

    plugin = EXTENSION_FORMATS[fmt][1]
    try:
        with Image.open(BytesIO(data), formats=[plugin]) as img:
            img.load()
            upright = ImageOps.exif_transpose(img)
            mode = "RGBA" if fmt == "png" else "RGB"
            if upright.mode == mode:
                # exif_transpose may hand back the same object when no
                # rotation is needed; copy so it survives the close above
                return upright.copy() if upright is img else upright
            return upright.convert(mode)
    except _DECODE_ERRORS as exc:
        raise UnsupportedFormatError(f"Could not decode {fmt} image: {exc}") from exc


def scale(source: Image.Image, width: int, height: int, keep_alpha: bool) -> Image.Image:
    """Resample *source* to a new, independently owned raster."""
    try:
        if source.size == (width, height):
            resized = source.copy()
        else:
            resized = source.resize((width, height), resample=Image.LANCZOS)
        if not keep_alpha:
            return resized
        # transparent canvas, pasted without blending so empty regions stay clear
        with resized:
            canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
            canvas.paste(resized, (0, 0))
        return canvas
    except (OSError, ValueError, MemoryError) as exc:
        raise EncodeError(f"Could not scale image to {width}x{height}: {exc}") from exc


class PrimaryEncoder:
    """JPEG for everything except PNG sources, which stay PNG for transparency."""

    def __init__(self, quality: int = 80, png_compress_level: int = 8):
        self.quality            = quality
        self.png_compress_level = png_compress_level

    @staticmethod
    def extension_for(source_format: str) -> str:
        return "png" if source_format == "png" else "jpg"

    def encode(self, img: Image.Image, source_format: str) -> bytes:
        save_kwargs: dict[str, Any]
        if source_format == "png":
            save_kwargs = {"format": "PNG", "compress_level": self.png_compress_level}
        else:
            if img.mode != "RGB":
                img = img.convert("RGB")
            save_kwargs = {"format": "JPEG", "quality": self.quality, "optimize": True}
        return _encode(img, save_kwargs)


class WebpEncoder:
    extension = "webp"

    def __init__(self, quality: int = 75):
        self.quality = quality

    def encode(self, img: Image.Image) -> bytes:
        return _encode(img, {"format": "WEBP", "quality": self.quality})


def resolve_webp_encoder(quality: int = 75) -> Optional[WebpEncoder]:
    """WebP encoder for this process, or None when Pillow was built without it."""
    if not webp_supported():
        return None
    return WebpEncoder(quality)


def _encode(img: Image.Image, save_kwargs: dict[str, Any]) -> bytes:
    buf = BytesIO()
    try:
        img.save(buf, **save_kwargs)
    except (OSError, ValueError, KeyError) as exc:
        raise EncodeError(f"Could not encode {save_kwargs['format']}: {exc}") from exc
    return buf.getvalue()
