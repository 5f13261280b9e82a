"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

STATUS_SMALLER = "smaller"
STATUS_LARGER_KEPT = "larger-kept"
STATUS_LARGER_SKIPPED = "larger-skipped"
STATUS_ALREADY_EXISTS = "already-exists"
STATUS_DUPLICATE = "duplicate"
STATUS_ERROR = "error"

# 已在磁盘上写出 WebP 的状态
PERSISTED_STATUSES = frozenset({STATUS_SMALLER, STATUS_LARGER_KEPT})
SKIPPED_STATUSES = frozenset({STATUS_LARGER_SKIPPED, STATUS_ALREADY_EXISTS, STATUS_DUPLICATE})


@dataclass(slots=True)
class ConversionOutcome:
    """记录单个图片的转换结果（用于统计/报告/日志）。"""

    source_path: Path
    status: str
    output_path: Optional[Path] = None
    original_size: int = 0
    compact_size: int = 0
    quality: Optional[int] = None
    attempts: int = 0
    message: Optional[str] = None

    @property
    def saved_bytes(self) -> int:
        if self.status != STATUS_SMALLER:
            return 0
        return self.original_size - self.compact_size

    @property
    def persisted(self) -> bool:
        return self.status in PERSISTED_STATUSES


@dataclass(slots=True)
class StatisticsSnapshot:
    """某一时刻的运行统计。"""

    total_files: int = 0
    smaller_files: int = 0
    larger_kept_files: int = 0
    skipped_files: int = 0
    existing_files: int = 0
    failed_files: int = 0
    total_saved_bytes: int = 0


@dataclass(slots=True)
class BatchResult:
    """一次全量转换的产出。"""

    succeeded: list[ConversionOutcome]
    skipped: list[ConversionOutcome]
    failed: list[ConversionOutcome]

    def all_outcomes(self) -> list[ConversionOutcome]:
        """返回所有结果记录，方便生成报告。"""

        return [*self.succeeded, *self.skipped, *self.failed]


@dataclass(slots=True)
class StylesheetReference:
    """样式表中一条可改写的背景图引用。"""

    selector: str
    property: str  # background | background-image
    original_path: str
    compact_path: str
    at_rule: Optional[str] = None  # 所在的 @media 等条件规则前缀


@dataclass(slots=True)
class StylesheetPassResult:
    """样式表批量处理的结果。"""

    files_scanned: int = 0
    files_rewritten: int = 0
    references: int = 0
    failed: list[Path] = field(default_factory=list)


@dataclass(slots=True)
class SourceImportReference:
    """源码中一条引用图片的 import/require 语句。"""

    kind: str  # import | require
    quote_style: str  # single | double
    bound_name: str
    raw_path: str
    span: tuple[int, int]
    statement: str
    skip: bool = False
    resolved_path: Optional[Path] = None
    resolve_error: Optional[str] = None
    outcome: Optional[ConversionOutcome] = None
    rewritten_path: Optional[str] = None


@dataclass(slots=True)
class FullPassResult:
    """全量流程的汇总结果。"""

    batch: BatchResult
    statistics: StatisticsSnapshot
    stylesheets: Optional[StylesheetPassResult] = None
    purged: list[Path] = field(default_factory=list)
