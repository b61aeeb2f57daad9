import io
import os
import tempfile

import pytest
from PIL import Image

# must be set before imgvariants.config is imported
_TMP = tempfile.mkdtemp(prefix="imgvariants_tests_")
os.environ["DATABASE_URL"]    = f"sqlite:///{_TMP}/test.db"
os.environ["STORAGE_ROOT"]    = os.path.join(_TMP, "storage")
os.environ["STORAGE_BACKEND"] = "local"

from imgvariants.utils.storage import LocalStorage  # noqa: E402


def image_bytes(size=(2000, 1000), mode="RGB", fmt="JPEG", color=(200, 30, 30)) -> bytes:
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def bordered_png(size=(800, 800), border=100) -> bytes:
    """Opaque red square inside a fully transparent border."""
    img = Image.new("RGBA", size, (0, 0, 0, 0))
    inner = Image.new("RGBA", (size[0] - 2 * border, size[1] - 2 * border), (255, 0, 0, 255))
    img.paste(inner, (border, border))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "blobs")
