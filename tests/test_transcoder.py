"""自适应质量搜索与 WebP 编码测试。"""

from __future__ import annotations

import io
import math

import pytest
from PIL import Image

from webp_converter.core.config import ConversionPolicy
from webp_converter.core.exceptions import CodecError
from webp_converter.processing.image_loader import decode_image
from webp_converter.processing.transcoder import transcode


def png_bytes(mode: str = "RGB", size: tuple[int, int] = (32, 32), color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def sized_encoder(sizes: dict[int, int]):
    """按质量返回指定长度字节的假编码器，记录每次调用的质量。"""

    calls: list[tuple[int, bool]] = []

    def encoder(image: Image.Image, quality: int, lossless: bool) -> bytes:
        calls.append((quality, lossless))
        return b"\0" * sizes[quality]

    encoder.calls = calls  # type: ignore[attr-defined]
    return encoder


def test_quality_search_stops_at_first_smaller_result() -> None:
    data = png_bytes()
    original = len(data)
    encoder = sized_encoder(
        {
            80: math.ceil(original * 1.10),
            75: math.ceil(original * 1.05),
            70: int(original * 0.98),
        }
    )

    result = transcode(data, ConversionPolicy(quality=80, min_quality=60), encoder=encoder)

    assert result.quality == 70
    assert result.is_smaller
    assert result.attempts == 3
    assert result.original_size == original
    assert encoder.calls == [(80, False), (75, False), (70, False)]


def test_quality_search_exhausts_down_to_min_quality() -> None:
    data = png_bytes()
    larger = len(data) + 100
    encoder = sized_encoder({q: larger for q in range(0, 101)})

    result = transcode(data, ConversionPolicy(quality=80, min_quality=60), encoder=encoder)

    assert not result.is_smaller
    assert result.quality == 60
    assert result.size == larger
    assert result.attempts == math.ceil((80 - 60) / 5) + 1
    assert [quality for quality, _ in encoder.calls] == [80, 75, 70, 65, 60]


def test_attempts_are_bounded_when_range_is_not_multiple_of_step() -> None:
    data = png_bytes()
    encoder = sized_encoder({q: len(data) for q in range(0, 101)})

    result = transcode(data, ConversionPolicy(quality=83, min_quality=70), encoder=encoder)

    assert [quality for quality, _ in encoder.calls] == [83, 78, 73]
    assert result.attempts <= math.ceil((83 - 70) / 5) + 1


def test_lossless_is_never_retried() -> None:
    data = png_bytes()
    encoder = sized_encoder({85: len(data) * 2})

    result = transcode(data, ConversionPolicy(lossless=True), encoder=encoder)

    assert result.attempts == 1
    assert encoder.calls == [(85, True)]


def test_no_retry_when_quality_equals_min_quality() -> None:
    data = png_bytes()
    encoder = sized_encoder({70: len(data) * 2})

    result = transcode(data, ConversionPolicy(quality=70, min_quality=70), encoder=encoder)

    assert result.attempts == 1


def test_undecodable_input_raises_codec_error() -> None:
    with pytest.raises(CodecError):
        transcode(b"not an image", ConversionPolicy())


def test_encoder_failure_is_not_retried() -> None:
    calls: list[int] = []

    def failing(image: Image.Image, quality: int, lossless: bool) -> bytes:
        calls.append(quality)
        raise RuntimeError("encoder exploded")

    with pytest.raises(CodecError):
        transcode(png_bytes(), ConversionPolicy(), encoder=failing)

    assert calls == [85]


def test_real_encoder_produces_webp() -> None:
    result = transcode(png_bytes(size=(64, 64)), ConversionPolicy())

    assert result.buffer[:4] == b"RIFF"
    assert result.buffer[8:12] == b"WEBP"
    with Image.open(io.BytesIO(result.buffer)) as img:
        assert img.format == "WEBP"
        assert img.size == (64, 64)


def test_decode_keeps_alpha_and_normalizes_modes() -> None:
    rgba = decode_image(png_bytes(mode="RGBA", color=(0, 0, 0, 0)))
    assert rgba.mode == "RGBA"

    gray = decode_image(png_bytes(mode="L", color=128))
    assert gray.mode == "RGB"

    palette = Image.new("P", (8, 8), 0)
    palette.info["transparency"] = 0
    buffer = io.BytesIO()
    palette.save(buffer, format="PNG", transparency=0)
    assert decode_image(buffer.getvalue()).mode == "RGBA"


def test_exif_orientation_is_applied() -> None:
    if not hasattr(Image, "Exif"):
        pytest.skip("当前 Pillow 版本不支持写入 EXIF 数据")

    exif = Image.Exif()
    exif[274] = 6  # 顺时针 90 度
    buffer = io.BytesIO()
    Image.new("RGB", (80, 40), "red").save(buffer, format="JPEG", exif=exif.tobytes())

    image = decode_image(buffer.getvalue())

    assert image.size == (40, 80)
