"""Service layer – image decoding and tensor preparation.

Tensor contract (shared by every deployed model):

*  layout ``[height][width][channel]`` (channels-last), row-major;
*  channel order **RGB** for 3-channel models, luminance
   ``0.299 R + 0.587 G + 0.114 B`` for 1-channel models;
*  resize policy fixed to **bilinear**;
*  ``float32`` samples divided by 255, so every value lies in [0, 1];
*  16-bit grayscale sources are scaled to 8 bits first (``v * 255 / 65535``),
   floating-point sources are rejected.
"""

from __future__ import annotations

import io
import logging

import numpy as np
from PIL import Image, UnidentifiedImageError

from src.particlevision.errors import DecodeError

logger = logging.getLogger(__name__)

RESAMPLE = Image.Resampling.BILINEAR
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)
WIDE_GRAYSCALE_MODES = {"I", "I;16", "I;16B", "I;16L", "I;16N"}

TensorShape = tuple[int, int, int]


def decode_image(data: bytes) -> Image.Image:
    """Decode *data* into a fully loaded RGB PIL image."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        raise DecodeError(f"Cannot decode image: {exc}") from exc

    if image.mode == "F":
        raise DecodeError("Cannot decode image: floating-point samples are not supported")
    if image.mode in WIDE_GRAYSCALE_MODES:
        image = narrow_to_8bit(image)
    return image.convert("RGB")


def narrow_to_8bit(image: Image.Image) -> Image.Image:
    """Scale a 16-bit grayscale image onto the 8-bit ``L`` range."""
    arr = np.asarray(image, dtype=np.float32) * (255.0 / 65535.0)
    return Image.fromarray(np.clip(np.rint(arr), 0, 255).astype(np.uint8))


def image_to_tensor(image: Image.Image, shape: TensorShape) -> np.ndarray:
    """Resize and normalise an RGB image to a ``(H, W, C)`` float32 array."""
    height, width, channels = shape
    if channels not in (1, 3):
        raise ValueError(f"Unsupported channel count: {channels}")

    if image.mode in WIDE_GRAYSCALE_MODES:
        image = narrow_to_8bit(image)
    if image.mode != "RGB":
        image = image.convert("RGB")
    image = image.resize((width, height), resample=RESAMPLE)
    arr = np.asarray(image, dtype=np.float32) / 255.0    # (H, W, 3)

    if channels == 1:
        arr = (arr @ LUMA_WEIGHTS)[..., np.newaxis]      # (H, W, 1)

    return np.clip(arr, 0.0, 1.0)


def preprocess_image(data: bytes, shape: TensorShape) -> np.ndarray:
    """Decode raw upload bytes into a model-ready tensor of *shape*."""
    image = decode_image(data)
    tensor = image_to_tensor(image, shape)
    logger.debug("Preprocessed %dx%d image into tensor %s", image.width, image.height, tensor.shape)
    return tensor


def to_batch(tensor: np.ndarray) -> np.ndarray:
    """Add the leading batch axis: ``(H, W, C)`` → ``(1, H, W, C)``."""
    return np.expand_dims(tensor, axis=0)
