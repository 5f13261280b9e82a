"""全量流水线：清理临时产物、扫描、并发转换、统计与样式表处理。"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Optional

from webp_converter.core.config import ConversionPolicy, validate_policy
from webp_converter.core.context import PipelineContext
from webp_converter.core.exceptions import ProcessingAborted
from webp_converter.core.models import (
    PERSISTED_STATUSES,
    SKIPPED_STATUSES,
    STATUS_ERROR,
    BatchResult,
    ConversionOutcome,
    FullPassResult,
    StatisticsSnapshot,
)
from webp_converter.core.progress import ProgressUpdate
from webp_converter.core.report import write_csv_report
from webp_converter.core.scanner import RASTER_EXTENSIONS, discover_images
from webp_converter.processing.converter import convert_image_file
from webp_converter.processing.stylesheet import process_stylesheet_files
from webp_converter.processing.transcoder import Encoder
from webp_converter.utils.sizes import format_size

LOGGER = logging.getLogger(__name__)


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


def purge_transient_artifacts(context: PipelineContext) -> list[Path]:
    """删除增量编译生成的临时 WebP，并重置去重登记与统计。

    文件已不存在不算错误；其他删除失败会记录日志，不影响后续全量流程。
    返回实际删除的路径。
    """

    pending = context.begin_full_pass()
    if not pending:
        return []

    LOGGER.info("正在清理 %d 个临时WebP文件...", len(pending))
    removed: list[Path] = []
    for path in pending:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            LOGGER.error("删除文件 %s 失败: %s", path, exc)
            continue
        LOGGER.debug("已清理 %s", path)
        removed.append(path)
    return removed


def run_full_pass(
    root_dir: Path,
    policy: ConversionPolicy,
    context: Optional[PipelineContext] = None,
    *,
    build_error: Optional[BaseException] = None,
    max_workers: int = 4,
    progress_callback: ProgressCallback = None,
    report_path: Optional[Path] = None,
    encoder: Optional[Encoder] = None,
) -> FullPassResult:
    """全量入口：在构建输出目录上转换所有图片并处理样式表。

    ``build_error`` 不为空表示上游构建失败，此时直接抛出 ProcessingAborted，
    不做任何处理。
    """

    if build_error is not None:
        raise ProcessingAborted("构建失败，跳过 WebP 转换") from build_error

    validate_policy(policy)
    context = context or PipelineContext()
    purged = purge_transient_artifacts(context)

    root = root_dir.resolve()
    LOGGER.info("开始处理图片转换为 WebP: %s", root)
    sources = discover_images(root, RASTER_EXTENSIONS)
    total = len(sources)
    LOGGER.info("发现 %d 个候选图片文件", total)

    outcomes: list[ConversionOutcome] = []
    completed = 0
    _emit_progress(progress_callback, completed, total, "开始执行转换任务")

    if max_workers <= 1:
        for source in sources:
            outcome = convert_image_file(source, policy, context, encoder=encoder)
            _record(context, outcome, outcomes)
            completed += 1
            _emit_progress(progress_callback, completed, total, f"完成 {source.name}", source)
    elif sources:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_map = {
                executor.submit(convert_image_file, source, policy, context, encoder=encoder): source
                for source in sources
            }
            for future in as_completed(future_map):
                source = future_map[future]
                try:
                    outcome = future.result()
                except Exception as exc:  # noqa: BLE001
                    LOGGER.exception("任务执行异常：%s", exc)
                    outcome = ConversionOutcome(source_path=source, status=STATUS_ERROR, message=str(exc))
                _record(context, outcome, outcomes)
                completed += 1
                _emit_progress(progress_callback, completed, total, f"完成 {source.name}", source)

    outcomes.sort(key=lambda item: str(item.source_path))
    batch = _split_outcomes(outcomes)
    statistics = context.statistics.snapshot()
    _log_summary(statistics)

    if report_path is not None:
        _write_report(report_path, batch)

    stylesheets = None
    if policy.process_stylesheets:
        stylesheets = process_stylesheet_files(root)

    _emit_progress(progress_callback, total, total, "处理完成", status="done")
    return FullPassResult(batch=batch, statistics=statistics, stylesheets=stylesheets, purged=purged)


def _record(context: PipelineContext, outcome: ConversionOutcome, outcomes: list[ConversionOutcome]) -> None:
    context.statistics.record(outcome)
    outcomes.append(outcome)


def _split_outcomes(outcomes: list[ConversionOutcome]) -> BatchResult:
    succeeded = [item for item in outcomes if item.status in PERSISTED_STATUSES]
    skipped = [item for item in outcomes if item.status in SKIPPED_STATUSES]
    failed = [item for item in outcomes if item.status == STATUS_ERROR]
    return BatchResult(succeeded=succeeded, skipped=skipped, failed=failed)


def _log_summary(statistics: StatisticsSnapshot) -> None:
    LOGGER.info("--------- WebP 转换统计 ---------")
    LOGGER.info("总文件数: %d", statistics.total_files)
    LOGGER.info("成功转换并且体积更小: %d", statistics.smaller_files)
    LOGGER.info("体积更大但仍保留: %d", statistics.larger_kept_files)
    LOGGER.info("因为体积更大而跳过: %d", statistics.skipped_files)
    LOGGER.info("转换失败: %d", statistics.failed_files)
    LOGGER.info("总共节省空间: %s", format_size(statistics.total_saved_bytes))


def _emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    message: Optional[str] = None,
    current: Optional[Path] = None,
    *,
    status: str = "running",
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, message=message, current=current, status=status))


def _write_report(report_path: Path, result: BatchResult) -> None:
    try:
        write_csv_report(result.all_outcomes(), report_path)
    except OSError as exc:
        LOGGER.error("写入报告失败：%s", exc)
