"""
trove/thumbnails.py — WEBP thumbnails for image assets (Pillow).

The thumbnail sits beside the original: ".../original.png" → ".../thumbnail.webp".
"""

from __future__ import annotations

import io
import logging

logger = logging.getLogger(__name__)


def thumbnail_path_for(storage_path: str) -> str:
    head, _, name = storage_path.rpartition("/")
    stem = "thumbnail"
    if not name.startswith("original."):
        stem = name.rsplit(".", 1)[0] + ".thumbnail"
    return f"{head}/{stem}.webp" if head else f"{stem}.webp"


def make_thumbnail(image_bytes: bytes, size: int = 400) -> bytes:
    """Resize to fit a size×size box, keep aspect ratio, encode as WEBP."""
    from PIL import Image  # type: ignore

    with Image.open(io.BytesIO(image_bytes)) as img:
        img.thumbnail((size, size))
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        out = io.BytesIO()
        img.save(out, format="WEBP")
    return out.getvalue()
