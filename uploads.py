import io
import logging
import time
from pathlib import Path
from typing import List, Optional, Tuple

from fastapi import UploadFile
from PIL import Image, ImageOps, UnidentifiedImageError

import config
from errors import AppError

logger = logging.getLogger(__name__)

USER_PHOTO_SIZE = (500, 500)
TOUR_IMAGE_SIZE = (2000, 1333)
MAX_TOUR_IMAGES = 3
JPEG_QUALITY = 90


def _millis() -> int:
    return int(time.time() * 1000)


def check_image(upload: UploadFile) -> None:
    if not (upload.content_type or "").startswith("image"):
        raise AppError("Not an image! Please upload only images.", 400)


def save_jpeg(data: bytes, size: Tuple[int, int], directory: Path, filename: str) -> str:
    """Cover-crop ``data`` to ``size`` and write it as JPEG; returns the filename."""
    try:
        img = Image.open(io.BytesIO(data))
        img = ImageOps.exif_transpose(img)
    except UnidentifiedImageError:
        raise AppError("Not an image! Please upload only images.", 400)
    if img.mode != "RGB":
        img = img.convert("RGB")
    img = ImageOps.fit(img, size)
    directory.mkdir(parents=True, exist_ok=True)
    img.save(directory / filename, format="JPEG", quality=JPEG_QUALITY)
    logger.info("Saved image %s", directory / filename)
    return filename


def save_user_photo(upload: Optional[UploadFile], user_id: str) -> Optional[str]:
    if upload is None or not upload.filename:
        return None
    check_image(upload)
    filename = f"user-{user_id}-{_millis()}.jpeg"
    return save_jpeg(upload.file.read(), USER_PHOTO_SIZE, config.STATIC_DIR / "img" / "users", filename)


def save_tour_images(
    tour_id: str, cover: Optional[UploadFile], images: List[UploadFile]
) -> Tuple[Optional[str], List[str]]:
    """Both the cover and the gallery must be present, otherwise nothing is stored."""
    images = [i for i in images or [] if i.filename]
    if cover is None or not cover.filename or not images:
        return None, []
    if len(images) > MAX_TOUR_IMAGES:
        raise AppError(f"A tour can have at most {MAX_TOUR_IMAGES} images.", 400)
    for upload in [cover, *images]:
        check_image(upload)

    directory = config.STATIC_DIR / "img" / "tours"
    stamp = _millis()
    cover_name = save_jpeg(cover.file.read(), TOUR_IMAGE_SIZE, directory, f"tour-{tour_id}-{stamp}-cover.jpeg")
    names = [
        save_jpeg(upload.file.read(), TOUR_IMAGE_SIZE, directory, f"tour-{tour_id}-{stamp}-{i}.jpeg")
        for i, upload in enumerate(images, start=1)
    ]
    return cover_name, names
