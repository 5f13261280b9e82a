"""单个图片文件的转换工作单元。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from webp_converter.core.config import ConversionPolicy
from webp_converter.core.context import PipelineContext
from webp_converter.core.exceptions import CodecError, ConversionIOError
from webp_converter.core.models import (
    STATUS_ALREADY_EXISTS,
    STATUS_DUPLICATE,
    STATUS_ERROR,
    STATUS_LARGER_KEPT,
    STATUS_LARGER_SKIPPED,
    STATUS_SMALLER,
    ConversionOutcome,
)
from webp_converter.core.scanner import compact_path_for
from webp_converter.processing.transcoder import Encoder, TranscodeResult, transcode
from webp_converter.utils.sizes import format_size

LOGGER = logging.getLogger(__name__)


def convert_image_file(
    path: Path,
    policy: ConversionPolicy,
    context: PipelineContext,
    *,
    encoder: Optional[Encoder] = None,
) -> ConversionOutcome:
    """转换单张图片并把 WebP 写在原图旁边。

    路径在开始处理时即登记到去重集合，失败的文件在本次构建内不会被重试。
    所有编解码与文件错误都转换为 ``error`` 结果，不向上抛出。
    """

    source = Path(path).resolve()

    if not context.registry.claim(source):
        LOGGER.debug("本次构建已处理过: %s，跳过重复处理", source)
        return ConversionOutcome(source_path=source, status=STATUS_DUPLICATE, message="已在本次构建中处理")

    try:
        return _convert_claimed(source, policy, encoder)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("转换时出现未预期的异常 %s: %s", source, exc)
        return ConversionOutcome(source_path=source, status=STATUS_ERROR, message=str(exc))


def _convert_claimed(source: Path, policy: ConversionPolicy, encoder: Optional[Encoder]) -> ConversionOutcome:
    try:
        compact = compact_path_for(source)
    except ValueError as exc:
        return ConversionOutcome(source_path=source, status=STATUS_ERROR, message=str(exc))

    if compact.exists():
        LOGGER.info("已处理过: %s -> %s，跳过重复处理", source, compact.name)
        return ConversionOutcome(source_path=source, status=STATUS_ALREADY_EXISTS, output_path=compact)

    try:
        data = _read_bytes(source)
        result = transcode(data, policy, encoder=encoder)
    except (CodecError, ConversionIOError) as exc:
        LOGGER.error("转换失败 %s: %s", source, exc)
        return ConversionOutcome(source_path=source, status=STATUS_ERROR, message=str(exc))

    if not result.is_smaller and policy.only_smaller_files:
        LOGGER.info(
            "跳过: %s (WebP体积更大: %s > %s)",
            source.name,
            format_size(result.size),
            format_size(result.original_size),
        )
        return _outcome(source, STATUS_LARGER_SKIPPED, None, result)

    try:
        _write_bytes(compact, result.buffer)
    except ConversionIOError as exc:
        LOGGER.error("写入 WebP 失败 %s: %s", compact, exc)
        return _outcome(source, STATUS_ERROR, None, result, message=str(exc))

    if result.is_smaller:
        saved = result.original_size - result.size
        LOGGER.info(
            "已转换: %s -> %s (节省: %.2f%%, 从 %s 减小到 %s, quality=%d)",
            source.name,
            compact.name,
            saved / result.original_size * 100 if result.original_size else 0.0,
            format_size(result.original_size),
            format_size(result.size),
            result.quality,
        )
        return _outcome(source, STATUS_SMALLER, compact, result)

    LOGGER.info(
        "已转换: %s -> %s (体积更大: 从 %s 增加到 %s)",
        source.name,
        compact.name,
        format_size(result.original_size),
        format_size(result.size),
    )
    return _outcome(source, STATUS_LARGER_KEPT, compact, result)


def _outcome(
    source: Path,
    status: str,
    output_path: Optional[Path],
    result: TranscodeResult,
    *,
    message: Optional[str] = None,
) -> ConversionOutcome:
    return ConversionOutcome(
        source_path=source,
        status=status,
        output_path=output_path,
        original_size=result.original_size,
        compact_size=result.size,
        quality=result.quality,
        attempts=result.attempts,
        message=message,
    )


def _read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ConversionIOError(f"读取文件失败: {path}") from exc


def _write_bytes(path: Path, data: bytes) -> None:
    try:
        path.write_bytes(data)
    except OSError as exc:
        # 不留下写了一半的文件，否则下次会被当成已处理
        try:
            path.unlink(missing_ok=True)
        except OSError:
            LOGGER.warning("清理未完成的文件失败: %s", path)
        raise ConversionIOError(f"写入文件失败: {path}") from exc
