import io
import threading

import pytest
from PIL import Image

from conftest import bordered_png, image_bytes
from imgvariants.utils.codecs import PrimaryEncoder, webp_supported
from imgvariants.utils.errors import EncodeError, StorageError, UnsupportedFormatError, UploadCancelled
from imgvariants.utils.image_variants import (
    DEFAULT_CONFIG,
    SizeClass,
    VariantBuilder,
    VariantConfig,
    delete_all_variants,
    new_base_id,
    savings_percent,
    sibling_paths,
    split_variant_path,
)
from imgvariants.utils.storage import LocalStorage

BASE_ID = "AbCdEfGhIjKlMnOpQrSt"


def _builder(storage, **kwargs):
    kwargs.setdefault("id_factory", lambda: BASE_ID)
    return VariantBuilder(storage, **kwargs)


def _stored(storage):
    return sorted(p.relative_to(storage.root).as_posix() for p in storage.root.rglob("*") if p.is_file())


class FlakyStorage(LocalStorage):
    """Fails every put whose key contains *marker*."""

    def __init__(self, root, marker):
        super().__init__(root)
        self.marker = marker

    def put(self, key, data):
        if self.marker in key:
            raise StorageError(f"disk full writing {key}")
        super().put(key, data)


class FailingLargeEncoder(PrimaryEncoder):
    def encode(self, img, source_format):
        if img.width > 600:
            raise EncodeError("encoder crashed")
        return super().encode(img, source_format)


# ── Generation ─────────────────────────────────────────────────────────────
def test_wide_jpeg_scenario(storage):
    data = image_bytes((2000, 1000))
    result = _builder(storage).process_upload(data, "holiday.jpg", "jpg", 5_000_000)

    dims = {name: (v.width, v.height) for name, v in result.variants.items()}
    assert dims == {"thumbnail": (300, 150), "medium": (600, 300), "large": (1200, 600)}
    assert list(result.variants) == ["thumbnail", "medium", "large"]
    assert result.original_width == 2000
    assert result.original_height == 1000

    medium = result.variants["medium"]
    assert result.path == medium.path == f"images/{BASE_ID}_medium.jpg"
    assert result.url == f"/storage/images/{BASE_ID}_medium.jpg"
    assert result.webp_url == medium.webp_url
    assert result.savings_percent == savings_percent(medium.size, 5_000_000)
    assert result.savings_percent > 90

    for name, variant in result.variants.items():
        assert storage.exists(variant.path)
        assert variant.size == len((storage.root / variant.path).read_bytes())
        with Image.open(storage.root / variant.path) as img:
            assert img.format == "JPEG"
            assert img.size == (variant.width, variant.height)


def test_small_source_is_never_upscaled(storage):
    result = _builder(storage).process_upload(image_bytes((200, 100)), "tiny.jpg", "jpeg", 1234)
    for variant in result.variants.values():
        assert (variant.width, variant.height) == (200, 100)


def test_png_variants_keep_transparency(storage):
    result = _builder(storage).process_upload(bordered_png(), "logo.png", "png", 10_000)

    for name, variant in result.variants.items():
        assert variant.path == f"images/{BASE_ID}_{name}.png"
        with Image.open(storage.root / variant.path) as img:
            assert img.format == "PNG"
            assert img.mode == "RGBA"
            assert img.getpixel((0, 0))[3] == 0
            assert img.getpixel((img.width // 2, img.height // 2))[3] == 255


@pytest.mark.skipif(not webp_supported(), reason="Pillow built without WebP")
def test_webp_siblings_written(storage):
    result = _builder(storage).process_upload(bordered_png(), "logo.png", "png", 10_000)
    for name, variant in result.variants.items():
        assert variant.webp_path == f"images/{BASE_ID}_{name}.webp"
        assert variant.webp_url == f"/storage/{variant.webp_path}"
        assert variant.webp_size == len((storage.root / variant.webp_path).read_bytes())
        with Image.open(storage.root / variant.webp_path) as img:
            assert img.format == "WEBP"
            assert img.convert("RGBA").getpixel((0, 0))[3] <= 5


def test_without_webp_only_primary_is_written(storage):
    result = _builder(storage, webp_encoder=None).process_upload(image_bytes((900, 600)), "a.jpg", "jpg", 50_000)
    assert result.webp_url is None
    for variant in result.variants.values():
        assert variant.webp_path is None
        assert variant.webp_url is None
        assert variant.webp_size is None
    assert _stored(storage) == sorted(f"images/{BASE_ID}_{n}.jpg" for n in DEFAULT_CONFIG.size_names)


def test_sequential_and_pooled_runs_agree(tmp_path):
    data = image_bytes((1500, 900))
    one = _builder(LocalStorage(tmp_path / "one"), max_workers=1).process_upload(data, "a.jpg", "jpg", len(data))
    three = _builder(LocalStorage(tmp_path / "three"), max_workers=3).process_upload(data, "a.jpg", "jpg", len(data))
    assert one.to_dict() == three.to_dict()


def test_result_wire_shape(storage):
    result = _builder(storage, webp_encoder=None).process_upload(image_bytes((800, 800)), "a.jpg", "jpg", 90_000)
    body = result.to_dict()
    assert set(body) == {
        "original", "variants", "path", "url", "webp_url", "size", "original_size", "savings_percent",
    }
    assert body["original"] == {"width": 800, "height": 800, "size": 90_000}
    assert set(body["variants"]["thumbnail"]) == {
        "path", "url", "webp_path", "webp_url", "width", "height", "size", "webp_size",
    }
    assert body["size"] == body["variants"]["medium"]["size"]
    assert len(result.manifest) == 3


def test_custom_config_is_used(storage):
    config = VariantConfig(
        sizes=(SizeClass("icon", 32, 32), SizeClass("medium", 64, 64)),
        directory="avatars",
    )
    result = _builder(storage, config=config, webp_encoder=None).process_upload(
        image_bytes((128, 64)), "me.jpg", "jpg", 4_000
    )
    assert set(result.variants) == {"icon", "medium"}
    assert (result.variants["icon"].width, result.variants["icon"].height) == (32, 16)
    assert result.path == f"avatars/{BASE_ID}_medium.jpg"


def test_config_requires_canonical_size():
    with pytest.raises(ValueError):
        VariantConfig(sizes=(SizeClass("thumbnail", 300, 200),))


def test_base_ids_are_random_alphanumeric():
    ids = {new_base_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(i) == 20 and i.isalnum() for i in ids)


def test_savings_percent_rounding():
    assert savings_percent(250, 1000) == 75
    assert savings_percent(1005, 1000) == -1
    assert savings_percent(100, 0) == 0


# ── Failures ───────────────────────────────────────────────────────────────
def test_undecodable_upload_writes_nothing(storage):
    with pytest.raises(UnsupportedFormatError):
        _builder(storage).process_upload(b"\x89PNG broken", "x.png", "png", 11)
    assert _stored(storage) == []


def test_unknown_extension_rejected(storage):
    with pytest.raises(UnsupportedFormatError):
        _builder(storage).process_upload(image_bytes(), "x.tiff", "tiff", 10)


@pytest.mark.parametrize("workers", [1, 3])
def test_storage_failure_rolls_back(tmp_path, workers):
    storage = FlakyStorage(tmp_path / "blobs", marker="_large")
    with pytest.raises(StorageError):
        _builder(storage, max_workers=workers).process_upload(image_bytes((2000, 1000)), "a.jpg", "jpg", 1)
    assert _stored(storage) == []


def test_encode_failure_rolls_back(storage):
    builder = _builder(storage)
    builder.primary = FailingLargeEncoder()
    with pytest.raises(EncodeError):
        builder.process_upload(image_bytes((2000, 1000)), "a.jpg", "jpg", 1)
    assert _stored(storage) == []


def test_cancelled_upload_stores_nothing(storage):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(UploadCancelled):
        _builder(storage).process_upload(image_bytes((400, 300)), "a.jpg", "jpg", 1, cancel=cancel)
    assert _stored(storage) == []


# ── Cleanup ────────────────────────────────────────────────────────────────
def test_split_variant_path():
    assert split_variant_path("images/abc_medium.jpg") == ("images", "abc")
    assert split_variant_path("images/abc_large.webp") == ("images", "abc")
    assert split_variant_path("abc_thumbnail.png") == ("", "abc")
    # only one trailing suffix is stripped
    assert split_variant_path("images/abc_medium_large.jpg") == ("images", "abc_medium")
    assert split_variant_path("images/plain.jpg") == ("images", "plain")


def test_sibling_paths_cover_every_size_and_codec():
    paths = sibling_paths("images/xyz_thumbnail.jpg")
    assert len(paths) == 9
    assert "images/xyz_large.webp" in paths
    assert "images/xyz_medium.png" in paths


def test_round_trip_then_cleanup(storage):
    result = _builder(storage).process_upload(bordered_png(), "logo.png", "png", 10_000)
    removed = delete_all_variants(storage, result.path)
    assert sorted(removed) == sorted(result.manifest)
    assert not any(storage.exists(p) for p in sibling_paths(result.path))
    assert _stored(storage) == []


def test_cleanup_is_idempotent(storage):
    result = _builder(storage).process_upload(image_bytes((640, 480)), "a.jpg", "jpg", 1)
    thumb = result.variants["thumbnail"].path
    assert delete_all_variants(storage, thumb)
    assert delete_all_variants(storage, thumb) == []


def test_cleanup_leaves_other_uploads_alone(storage):
    data = image_bytes((640, 480))
    first = VariantBuilder(storage, webp_encoder=None).process_upload(data, "a.jpg", "jpg", 1)
    second = VariantBuilder(storage, webp_encoder=None).process_upload(data, "b.jpg", "jpg", 1)
    delete_all_variants(storage, first.path)
    assert all(storage.exists(p) for p in second.manifest)


def test_cleanup_surfaces_store_faults(storage):
    class BrokenDelete(LocalStorage):
        def delete(self, key):
            raise StorageError("permission denied")

    broken = BrokenDelete(storage.root)
    result = _builder(broken, webp_encoder=None).process_upload(image_bytes((640, 480)), "a.jpg", "jpg", 1)
    with pytest.raises(StorageError):
        delete_all_variants(broken, result.path)
