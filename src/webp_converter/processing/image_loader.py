"""图片解码与编码前的模式归一化。"""

from __future__ import annotations

import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from webp_converter.core.exceptions import CodecError

LOGGER = logging.getLogger(__name__)

# WebP 只接受这两种模式
WEBP_MODES = {"RGB", "RGBA"}


def decode_image(data: bytes) -> Image.Image:
    """从内存字节解码图片并执行 EXIF 旋转与模式归一化。

    返回值为新的 Image 对象，调用者负责关闭。
    """

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()

            # EXIF Orientation 校正，WebP 输出不携带 EXIF
            img = ImageOps.exif_transpose(img)

            if img.mode not in WEBP_MODES:
                img = _convert_for_webp(img)

            return img.copy()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        LOGGER.debug("无法识别图像数据: %s", exc)
        raise CodecError(f"无法解码图像: {exc}") from exc


def _convert_for_webp(img: Image.Image) -> Image.Image:
    """将任意模式图像转换为 RGB 或 RGBA，尽量保留透明度。"""

    if img.mode in {"LA", "PA"}:
        return img.convert("RGBA")

    if img.mode == "P":
        # 调色板图片可能带 transparency 信息
        if "transparency" in img.info:
            return img.convert("RGBA")
        return img.convert("RGB")

    if img.mode == "CMYK":
        return img.convert("RGB")

    # 其他模式直接转换
    return img.convert("RGB")
