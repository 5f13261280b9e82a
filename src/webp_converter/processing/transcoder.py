"""WebP 编码与自适应质量搜索。"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from PIL import Image

from webp_converter.core.config import ConversionPolicy
from webp_converter.core.exceptions import CodecError
from webp_converter.processing.image_loader import decode_image

LOGGER = logging.getLogger(__name__)

QUALITY_STEP = 5

Encoder = Callable[[Image.Image, int, bool], bytes]


@dataclass(slots=True)
class TranscodeResult:
    """一次转码的最终产出。"""

    buffer: bytes
    original_size: int
    quality: int
    attempts: int

    @property
    def size(self) -> int:
        return len(self.buffer)

    @property
    def is_smaller(self) -> bool:
        return self.size < self.original_size


def encode_webp(image: Image.Image, quality: int, lossless: bool) -> bytes:
    """使用 Pillow 将图片编码为 WebP 字节。"""

    buffer = io.BytesIO()
    try:
        image.save(buffer, format="WEBP", quality=quality, lossless=lossless, method=4)
    except (OSError, ValueError, KeyError) as exc:
        raise CodecError(f"WebP 编码失败: {exc}") from exc
    return buffer.getvalue()


def transcode(data: bytes, policy: ConversionPolicy, *, encoder: Optional[Encoder] = None) -> TranscodeResult:
    """按策略转码，结果不比原图小时逐步降低质量重试。

    有损模式下从 ``quality - 5`` 开始，每次再降 5，直到结果变小或质量低于
    ``min_quality``。最后一次的结果无论大小都会返回，由调用方决定是否保留。
    """

    encode = encoder or encode_webp
    original_size = len(data)
    image = decode_image(data)

    try:
        quality = policy.quality
        buffer = _encode(encode, image, quality, policy.lossless)
        attempts = 1

        if len(buffer) >= original_size and not policy.lossless and policy.quality > policy.min_quality:
            current_quality = policy.quality - QUALITY_STEP
            while len(buffer) >= original_size and current_quality >= policy.min_quality:
                LOGGER.debug("WebP 体积不小于原图，降低质量到 %d 重试", current_quality)
                buffer = _encode(encode, image, current_quality, False)
                quality = current_quality
                attempts += 1
                current_quality -= QUALITY_STEP
    finally:
        image.close()

    return TranscodeResult(buffer=buffer, original_size=original_size, quality=quality, attempts=attempts)


def _encode(encode: Encoder, image: Image.Image, quality: int, lossless: bool) -> bytes:
    try:
        return encode(image, quality, lossless)
    except CodecError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise CodecError(f"WebP 编码失败: {exc}") from exc
