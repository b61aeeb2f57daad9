from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from imgvariants.api.images import router as images_router
from imgvariants.config import STORAGE_BACKEND, STORAGE_ROOT, STORAGE_URL_PREFIX

app = FastAPI(title="Image Variants API")
app.include_router(images_router)

if STORAGE_BACKEND == "local":
    STORAGE_ROOT.mkdir(parents=True, exist_ok=True)
    app.mount(STORAGE_URL_PREFIX, StaticFiles(directory=STORAGE_ROOT), name="storage")
