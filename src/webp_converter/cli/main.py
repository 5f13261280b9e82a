"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from webp_converter.core.config import ConversionPolicy, load_policy_file, policy_from_mapping
from webp_converter.core.context import PipelineContext
from webp_converter.core.exceptions import ConversionIOError, InvalidConfigurationError
from webp_converter.core.progress import ProgressUpdate
from webp_converter.processing.imports import AliasResolver, ensure_marker_typings, rewrite_source_file
from webp_converter.processing.pipeline import run_full_pass
from webp_converter.utils.logging import setup_logging
from webp_converter.utils.sizes import format_size

app = typer.Typer(help="构建产物图片 WebP 转换与引用改写工具。")

LOGGER = logging.getLogger(__name__)


def _parse_alias(value: str) -> tuple[str, Path]:
    alias, sep, target = value.partition("=")
    if not sep or not alias or not target:
        raise typer.BadParameter("别名必须形如 @=src")
    return alias, Path(target).expanduser().resolve()


def _build_policy(config_file: Optional[Path], overrides: Dict[str, Any]) -> ConversionPolicy:
    """配置文件中的值作为基础，命令行显式传入的选项覆盖之。"""

    try:
        base = load_policy_file(config_file) if config_file else ConversionPolicy()
        values = {
            "quality": base.quality,
            "lossless": base.lossless,
            "only_smaller_files": base.only_smaller_files,
            "min_quality": base.min_quality,
            "process_stylesheets": base.process_stylesheets,
            "process_imports": base.process_imports,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return policy_from_mapping(values)
    except InvalidConfigurationError as exc:
        typer.echo(f"配置错误：{exc}", err=True)
        raise typer.Exit(code=2) from exc


def _load_transient_list(list_path: Path, context: PipelineContext) -> None:
    """把之前 rewrite-source 记录的临时 WebP 登记到上下文，供全量流程清理。"""

    if not list_path.exists():
        return
    for line in list_path.read_text(encoding="utf-8").splitlines():
        if line.strip():
            context.tracker.track(Path(line.strip()))


def _append_transient_list(list_path: Path, paths: List[Path]) -> None:
    if not paths:
        return
    list_path.parent.mkdir(parents=True, exist_ok=True)
    with list_path.open("a", encoding="utf-8") as handle:
        for path in paths:
            handle.write(f"{path}\n")


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("转换图片", total=update.total)
        progress.update(task_id, completed=update.completed)

    return callback


@app.command("run")
def run_cli(  # noqa: PLR0913
    root: Path = typer.Argument(..., help="构建输出目录"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON 配置文件"),
    quality: Optional[int] = typer.Option(None, "--quality", "-q", help="WebP 质量 0~100，默认 85"),
    min_quality: Optional[int] = typer.Option(None, "--min-quality", help="自动降低质量时的最低限制，默认 70"),
    lossless: Optional[bool] = typer.Option(None, "--lossless/--lossy", help="是否使用无损压缩"),
    only_smaller: Optional[bool] = typer.Option(
        None, "--only-smaller/--keep-larger", help="是否只保留比原图小的 WebP"
    ),
    process_css: Optional[bool] = typer.Option(None, "--css/--no-css", help="是否处理 CSS 中的背景图"),
    max_workers: int = typer.Option(4, "--workers", "-w", help="并发线程数量"),
    report: Optional[Path] = typer.Option(None, "--report", help="CSV 报告输出路径"),
    transient_list: Optional[Path] = typer.Option(
        None, "--transient-list", help="rewrite-source 记录的临时 WebP 清单，全量转换前删除其中的文件"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """在构建输出目录上执行一次全量转换。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)

    policy = _build_policy(
        config_file,
        {
            "quality": quality,
            "min_quality": min_quality,
            "lossless": lossless,
            "only_smaller_files": only_smaller,
            "process_stylesheets": process_css,
        },
    )

    root_dir = root.expanduser().resolve()
    if not root_dir.is_dir():
        typer.echo(f"目录不存在：{root_dir}", err=True)
        raise typer.Exit(code=2)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    context = PipelineContext()
    list_path = transient_list.expanduser().resolve() if transient_list else None
    if list_path is not None:
        _load_transient_list(list_path, context)

    with progress:
        result = run_full_pass(
            root_dir,
            policy,
            context,
            max_workers=max_workers,
            progress_callback=_build_progress_callback(progress),
            report_path=report.expanduser().resolve() if report else None,
        )

    stats = result.statistics
    typer.echo(
        f"转换完成：共 {stats.total_files} 张，变小 {stats.smaller_files} 张，"
        f"跳过 {stats.skipped_files} 张，失败 {stats.failed_files} 张，"
        f"节省 {format_size(stats.total_saved_bytes)}。"
    )
    if result.stylesheets is not None:
        typer.echo(
            f"CSS：扫描 {result.stylesheets.files_scanned} 个文件，"
            f"追加规则 {result.stylesheets.references} 条。"
        )
    for failed in result.batch.failed:
        typer.echo(f"失败：{failed.source_path} -> {failed.message}", err=True)
    if list_path is not None and list_path.exists():
        list_path.unlink()


@app.command("rewrite-source")
def rewrite_source_cli(
    files: List[Path] = typer.Argument(..., help="需要处理的 js/jsx/ts/tsx 文件"),
    alias: List[str] = typer.Option([], "--alias", "-a", help="路径别名，形如 @=src，可指定多个"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON 配置文件"),
    dev: bool = typer.Option(False, "--dev", help="开发模式：只移除 !webp 标记"),
    transient_list: Optional[Path] = typer.Option(
        None, "--transient-list", help="追加记录本次生成的临时 WebP，供下次 run 清理"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """改写源文件中的图片 import/require 语句（原地写回）。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)

    policy = _build_policy(config_file, {})
    resolver = AliasResolver(dict(_parse_alias(item) for item in alias))
    context = PipelineContext()

    changed = 0
    for path in files:
        try:
            result = rewrite_source_file(
                path.expanduser().resolve(),
                policy,
                resolver,
                context,
                production=not dev,
            )
        except ConversionIOError as exc:
            typer.echo(f"处理失败：{exc}", err=True)
            continue
        if result is None:
            LOGGER.debug("不是需要处理的源文件: %s", path)
            continue
        if result.changed:
            changed += 1
        for reference in result.references:
            if reference.resolve_error:
                typer.echo(f"解析失败：{reference.raw_path} ({reference.resolve_error})", err=True)

    tracked = list(context.tracker)
    typer.echo(f"处理完成：修改 {changed} 个文件，生成临时 WebP {len(tracked)} 个。")
    for path in tracked:
        typer.echo(f"临时文件：{path}")
    if transient_list is not None:
        _append_transient_list(transient_list.expanduser().resolve(), tracked)


@app.command("typings")
def typings_cli(
    typings_path: Path = typer.Argument(..., help="已存在的 typings.d.ts 文件"),
) -> None:
    """为 !webp 标记追加 TypeScript 模块声明。"""

    setup_logging()
    if ensure_marker_typings(typings_path.expanduser().resolve()):
        typer.echo("已追加 WebP 类型声明。")
    else:
        typer.echo("无需追加（文件不存在或已包含声明）。")


if __name__ == "__main__":
    app()
