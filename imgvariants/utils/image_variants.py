import posixpath
import re
import secrets
import string
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from PIL import Image

from imgvariants.config import VARIANT_WORKERS, logger
from imgvariants.utils.codecs import (
    PrimaryEncoder,
    WebpEncoder,
    decode,
    normalize_extension,
    resolve_webp_encoder,
    scale,
)
from imgvariants.utils.errors import StorageError, UploadCancelled
from imgvariants.utils.geometry import plan_dimensions, round_half_up
from imgvariants.utils.storage import BlobStorage

BASE_ID_ALPHABET   = string.ascii_letters + string.digits
CLEANUP_EXTENSIONS = ("jpg", "png", "webp")


@dataclass(frozen=True)
class SizeClass:
    name:       str
    max_width:  int
    max_height: int


@dataclass(frozen=True)
class VariantConfig:
    sizes: Tuple[SizeClass, ...] = (
        SizeClass("thumbnail", 300, 200),
        SizeClass("medium",    600, 400),
        SizeClass("large",     1200, 800),
    )
    canonical:          str = "medium"
    quality:            int = 80
    webp_quality:       int = 75
    png_compress_level: int = 8
    directory:          str = "images"
    base_id_length:     int = 20

    def __post_init__(self):
        names = [s.name for s in self.sizes]
        if len(set(names)) != len(names):
            raise ValueError(f"size class names must be unique: {names}")
        if self.canonical not in names:
            raise ValueError(f"canonical size {self.canonical!r} is not one of {names}")

    @property
    def size_names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.sizes)


DEFAULT_CONFIG = VariantConfig()


@dataclass(frozen=True)
class SourceImage:
    image:  Image.Image = field(repr=False, compare=False)
    width:  int
    height: int
    size:   int
    format: str


@dataclass(frozen=True)
class Variant:
    name:      str
    width:     int
    height:    int
    path:      str
    url:       str
    size:      int
    webp_path: Optional[str] = None
    webp_url:  Optional[str] = None
    webp_size: Optional[int] = None

    @property
    def paths(self) -> List[str]:
        return [p for p in (self.path, self.webp_path) if p]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path":      self.path,
            "url":       self.url,
            "webp_path": self.webp_path,
            "webp_url":  self.webp_url,
            "width":     self.width,
            "height":    self.height,
            "size":      self.size,
            "webp_size": self.webp_size,
        }


@dataclass(frozen=True)
class UploadResult:
    base_id:         str
    original_width:  int
    original_height: int
    original_size:   int
    variants:        Dict[str, Variant]
    canonical:       str = "medium"

    @property
    def canonical_variant(self) -> Variant:
        return self.variants[self.canonical]

    @property
    def path(self) -> str:
        return self.canonical_variant.path

    @property
    def url(self) -> str:
        return self.canonical_variant.url

    @property
    def webp_url(self) -> Optional[str]:
        return self.canonical_variant.webp_url

    @property
    def size(self) -> int:
        return self.canonical_variant.size

    @property
    def savings_percent(self) -> int:
        return savings_percent(self.size, self.original_size)

    @property
    def manifest(self) -> List[str]:
        return [p for v in self.variants.values() for p in v.paths]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": {
                "width":  self.original_width,
                "height": self.original_height,
                "size":   self.original_size,
            },
            "variants":        {name: v.to_dict() for name, v in self.variants.items()},
            "path":            self.path,
            "url":             self.url,
            "webp_url":        self.webp_url,
            "size":            self.size,
            "original_size":   self.original_size,
            "savings_percent": self.savings_percent,
        }


def savings_percent(variant_size: int, original_size: int) -> int:
    if original_size <= 0:
        return 0
    return round_half_up((1 - variant_size / original_size) * 100)


def new_base_id(length: int = 20) -> str:
    return "".join(secrets.choice(BASE_ID_ALPHABET) for _ in range(length))


# ── Cleanup by naming convention ───────────────────────────────────────────
def split_variant_path(path: str, size_names: Tuple[str, ...] = DEFAULT_CONFIG.size_names) -> Tuple[str, str]:
    """``images/abc_medium.jpg`` -> ``("images", "abc")``."""
    directory, filename = posixpath.split(path)
    stem, _ = posixpath.splitext(filename)
    suffix = re.compile("_(%s)$" % "|".join(re.escape(n) for n in size_names))
    return directory, suffix.sub("", stem, count=1)


def sibling_paths(path: str, config: VariantConfig = DEFAULT_CONFIG) -> List[str]:
    directory, base_id = split_variant_path(path, config.size_names)
    return [
        posixpath.join(directory, f"{base_id}_{size.name}.{ext}")
        for size in config.sizes
        for ext in CLEANUP_EXTENSIONS
    ]


def delete_all_variants(storage: BlobStorage, path: str, config: VariantConfig = DEFAULT_CONFIG) -> List[str]:
    """Delete every size/codec sibling of *path*; missing blobs are skipped.

    Returns the keys that were actually removed, so a second call returns [].
    """
    removed: List[str] = []
    for candidate in sibling_paths(path, config):
        if storage.exists(candidate):
            storage.delete(candidate)
            removed.append(candidate)
    if removed:
        logger.info("Removed %d variant(s) for %s", len(removed), path)
    return removed


# ── Generation ─────────────────────────────────────────────────────────────
_AUTO: Any = object()


class VariantBuilder:
    """Decode one upload and write every size class in the primary and WebP codecs."""

    def __init__(
        self,
        storage: BlobStorage,
        config: VariantConfig = DEFAULT_CONFIG,
        webp_encoder: Optional[WebpEncoder] = _AUTO,
        max_workers: int = VARIANT_WORKERS,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.storage      = storage
        self.config       = config
        self.primary      = PrimaryEncoder(config.quality, config.png_compress_level)
        self.webp_encoder = resolve_webp_encoder(config.webp_quality) if webp_encoder is _AUTO else webp_encoder
        self.max_workers  = max(1, min(max_workers, len(config.sizes)))
        self.id_factory   = id_factory or (lambda: new_base_id(config.base_id_length))

    def variant_path(self, base_id: str, size_name: str, ext: str) -> str:
        return posixpath.join(self.config.directory, f"{base_id}_{size_name}.{ext}")

    def process_upload(
        self,
        data: bytes,
        original_filename: str,
        extension: str,
        original_size: int,
        cancel: Optional[threading.Event] = None,
    ) -> UploadResult:
        fmt = normalize_extension(extension)
        with decode(data, fmt) as raster:
            source  = SourceImage(raster, raster.width, raster.height, original_size, fmt)
            base_id = self.id_factory()
            logger.info(
                "Processing %s as %s (%dx%d, %d bytes)",
                original_filename, base_id, source.width, source.height, original_size,
            )
            try:
                variants = self._build_all(source, base_id, cancel)
            except Exception:
                self._rollback(base_id)
                raise

        return UploadResult(
            base_id=base_id,
            original_width=source.width,
            original_height=source.height,
            original_size=original_size,
            variants=variants,
            canonical=self.config.canonical,
        )

    def delete_all_variants(self, path: str) -> List[str]:
        return delete_all_variants(self.storage, path, self.config)

    def _build_all(self, source: SourceImage, base_id: str, cancel: Optional[threading.Event]) -> Dict[str, Variant]:
        abort = threading.Event()
        if self.max_workers == 1:
            return {s.name: self._build_variant(source, s, base_id, abort, cancel) for s in self.config.sizes}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="variant") as pool:
            futures = [
                pool.submit(self._build_variant, source, s, base_id, abort, cancel)
                for s in self.config.sizes
            ]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            failed = [f for f in futures if f in done and f.exception() is not None]
            if failed:
                abort.set()
                for f in pending:
                    f.cancel()
        # leaving the pool waits for units that were already running
        if failed:
            raise failed[0].exception()
        return {s.name: f.result() for s, f in zip(self.config.sizes, futures)}

    def _build_variant(
        self,
        source: SourceImage,
        size: SizeClass,
        base_id: str,
        abort: threading.Event,
        cancel: Optional[threading.Event],
    ) -> Variant:
        width, height = plan_dimensions(source.width, source.height, size.max_width, size.max_height)
        with scale(source.image, width, height, keep_alpha=source.format == "png") as scaled:
            primary = self.primary.encode(scaled, source.format)
            webp    = self.webp_encoder.encode(scaled) if self.webp_encoder else None

        path = self.variant_path(base_id, size.name, self.primary.extension_for(source.format))
        self._store(path, primary, abort, cancel)

        webp_path = None
        if webp is not None:
            webp_path = self.variant_path(base_id, size.name, WebpEncoder.extension)
            self._store(webp_path, webp, abort, cancel)

        return Variant(
            name=size.name,
            width=width,
            height=height,
            path=path,
            url=self.storage.public_url(path),
            size=len(primary),
            webp_path=webp_path,
            webp_url=self.storage.public_url(webp_path) if webp_path else None,
            webp_size=len(webp) if webp is not None else None,
        )

    def _store(self, path: str, data: bytes, abort: threading.Event, cancel: Optional[threading.Event]) -> None:
        if abort.is_set() or (cancel is not None and cancel.is_set()):
            raise UploadCancelled(f"Upload cancelled before {path} was stored")
        self.storage.put(path, data)

    def _rollback(self, base_id: str) -> None:
        anchor = self.variant_path(base_id, self.config.canonical, "jpg")
        logger.warning("Upload %s failed, removing partial variants", base_id)
        try:
            delete_all_variants(self.storage, anchor, self.config)
        except StorageError:
            logger.exception("Could not remove partial variants for %s", base_id)
