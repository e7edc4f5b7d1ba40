"""
Image downscaling before images are embedded as base64 data URLs.

Vision models do not need full-resolution photos, and every inline image is sent again on
each turn it stays in the memory window. Images are therefore scaled so the longest side is
at most 1024 px and re-encoded as JPEG (quality 85). PNGs with transparency stay PNG so the
alpha channel survives. Optimization never fails a request: on any decoding error the
original bytes are returned unchanged.
"""

import io
import logging
import math
from typing import Tuple

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_DIMENSION = 1024
JPEG_QUALITY = 85
PNG_COMPRESS_LEVEL = 6


def calculate_optimal_size(width: int, height: int, max_dimension: int = MAX_DIMENSION) -> Tuple[int, int]:
    """Scale (width, height) so neither side exceeds `max_dimension`, keeping the aspect ratio."""
    if width <= max_dimension and height <= max_dimension:
        return width, height
    if width > height:
        return max_dimension, max(1, round(height * max_dimension / width))
    return max(1, round(width * max_dimension / height)), max_dimension


def has_transparency(image: Image.Image) -> bool:
    if image.mode in ('RGBA', 'LA'):
        alpha = image.getchannel('A')
        return alpha.getextrema()[0] < 255
    if image.mode == 'P':
        return 'transparency' in image.info
    return False


def estimate_base64_size(binary_size: int) -> int:
    return int(math.ceil(binary_size * 4 / 3))


class ImageOptimizer:
    """
    Pillow-based image optimizer.

    Args:
        max_dimension (int): Longest allowed side in pixels
        jpeg_quality (int): Quality used when re-encoding as JPEG
    """

    def __init__(self, max_dimension: int = MAX_DIMENSION, jpeg_quality: int = JPEG_QUALITY):
        self.max_dimension = max_dimension
        self.jpeg_quality = jpeg_quality

    def optimize(self, data: bytes, mime_type: str) -> Tuple[bytes, str]:
        """
        Downscale and re-encode an image.

        Args:
            data (bytes): Encoded image
            mime_type (str): MIME type of `data`

        Returns:
            Tuple[bytes, str]: The optimized bytes and their MIME type; the input pair when the
            image is already small JPEG or cannot be decoded.
        """
        try:
            with Image.open(io.BytesIO(data)) as image:
                image.load()
                width, height = image.size
                new_size = calculate_optimal_size(width, height, self.max_dimension)
                if new_size == (width, height) and mime_type == 'image/jpeg':
                    return data, mime_type

                keep_png = mime_type == 'image/png' and has_transparency(image)
                if new_size != (width, height):
                    image = image.resize(new_size, Image.Resampling.LANCZOS)

                buffer = io.BytesIO()
                if keep_png:
                    image.save(buffer, format='PNG', compress_level=PNG_COMPRESS_LEVEL)
                    final_mime = 'image/png'
                else:
                    image.convert('RGB').save(buffer, format='JPEG', quality=self.jpeg_quality)
                    final_mime = 'image/jpeg'
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning("Image optimization failed, using original: %s", e)
            return data, mime_type

        optimized = buffer.getvalue()
        logger.debug(
            "Image optimized: %dx%d -> %dx%d, base64 %d -> %d bytes",
            width, height, new_size[0], new_size[1],
            estimate_base64_size(len(data)), estimate_base64_size(len(optimized)),
        )
        return optimized, final_mime
