# photoarchiver/utils/thumbs.py
from __future__ import annotations

import io

from PIL import Image, ImageOps


class ThumbnailGenerator:
    """Resize an image to fit a box and re-encode it as JPEG."""

    def __init__(self, quality: float = 0.5) -> None:
        # quality is a 0..1 fraction, Pillow wants 1..95
        self.quality = max(1, min(95, int(round(quality * 100))))

    def generate(self, image_bytes: bytes, max_width: int, max_height: int) -> bytes:
        """Return JPEG bytes no larger than max_width x max_height, aspect kept."""
        with Image.open(io.BytesIO(image_bytes)) as im:
            im = ImageOps.exif_transpose(im)
            im = im.convert("RGB")
            w, h = im.size
            scale = min(max_width / w, max_height / h, 1.0) if w and h else 1.0
            new_size = (max(int(w * scale), 1), max(int(h * scale), 1))
            if new_size != im.size:
                im = im.resize(new_size)
            buf = io.BytesIO()
            im.save(buf, format="JPEG", quality=self.quality)
            return buf.getvalue()
