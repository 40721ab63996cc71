"""Image preparation: encoded image bytes to a classifier-ready tensor.

Handles decoding, EXIF orientation, color space conversion, size validation,
resize + center crop, and ImageNet normalization into an NCHW float32 array.
"""

from __future__ import annotations

import io
import logging
import warnings
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageOps, UnidentifiedImageError

from flowerscan.ml.errors import DecodeError

logger = logging.getLogger(__name__)

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)


@dataclass(frozen=True)
class PreparedImage:
    """A single image in the classifier's input layout.

    ``tensor`` has shape (1, 3, H, W), float32, ImageNet-normalized.
    ``original_size`` is the decoded (width, height) before resizing.
    """

    tensor: NDArray[np.float32]
    original_size: tuple[int, int]

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.tensor.shape)


class ImagePreparer:
    """Decodes image bytes and normalizes them to a fixed square input."""

    def __init__(self, input_size: int = 224, max_image_pixels: int = 16_777_216) -> None:
        self._input_size = input_size
        self._max_image_pixels = max_image_pixels

    @property
    def input_size(self) -> int:
        return self._input_size

    def prepare(self, data: bytes) -> PreparedImage:
        """Prepare encoded image bytes for inference.

        Args:
            data: A complete encoded image (JPEG, PNG, WebP, ...).

        Returns:
            PreparedImage with a (1, 3, input_size, input_size) tensor.

        Raises:
            DecodeError: If the bytes are empty, not a supported image, truncated,
                or larger than the configured pixel limit.
        """
        if not data:
            raise DecodeError("Image data is empty")

        image = self._decode(data)
        original_size = image.size
        logger.debug("Decoded %dx%d image (%d bytes)", original_size[0], original_size[1], len(data))

        image = self._resize_and_crop(image)
        array = np.asarray(image, dtype=np.float32) / 255.0
        array = (array - IMAGENET_MEAN) / IMAGENET_STD
        tensor = np.ascontiguousarray(array.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)
        tensor.setflags(write=False)

        return PreparedImage(tensor=tensor, original_size=original_size)

    # -- Internal -----------------------------------------------------------

    def _decode(self, data: bytes) -> Image.Image:
        try:
            with warnings.catch_warnings():
                # Oversized images are rejected below with a typed error instead.
                warnings.simplefilter("ignore", Image.DecompressionBombWarning)
                with Image.open(io.BytesIO(data)) as opened:
                    width, height = opened.size
                    if width * height > self._max_image_pixels:
                        raise DecodeError(
                            f"Image is {width}x{height} pixels, exceeding the limit of {self._max_image_pixels}"
                        )
                    opened.load()
                    image = ImageOps.exif_transpose(opened)
        except DecodeError:
            raise
        except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Could not decode image: {exc}") from exc
        except (OSError, ValueError, SyntaxError, EOFError) as exc:
            # Pillow reports truncated or corrupt payloads through these.
            raise DecodeError(f"Could not decode image: {exc}") from exc

        if image.mode != "RGB":
            image = image.convert("RGB")
        return image

    def _resize_and_crop(self, image: Image.Image) -> Image.Image:
        target = self._input_size
        width, height = image.size
        scale = target / min(width, height)
        new_size = (max(target, round(width * scale)), max(target, round(height * scale)))
        image = image.resize(new_size, Image.Resampling.BILINEAR)

        left = (new_size[0] - target) // 2
        top = (new_size[1] - target) // 2
        return image.crop((left, top, left + target, top + target))
