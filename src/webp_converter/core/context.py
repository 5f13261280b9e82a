"""单次流水线调用的共享状态：去重登记、临时产物与运行统计。

每次调用创建独立的 PipelineContext，不使用进程级单例。并发转换任务之间
只共享这里的对象，因此所有修改都在锁内完成。
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Union

from webp_converter.core.models import (
    STATUS_ALREADY_EXISTS,
    STATUS_DUPLICATE,
    STATUS_ERROR,
    STATUS_LARGER_KEPT,
    STATUS_LARGER_SKIPPED,
    STATUS_SMALLER,
    ConversionOutcome,
    StatisticsSnapshot,
)

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _normalize(path: PathLike) -> Path:
    return Path(path).resolve()


class DedupRegistry:
    """本次构建中已开始转换的图片路径集合。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._paths: set[Path] = set()

    def claim(self, path: PathLike) -> bool:
        """登记路径；已登记过时返回 False。检查与插入是原子的。"""

        normalized = _normalize(path)
        with self._lock:
            if normalized in self._paths:
                return False
            self._paths.add(normalized)
            return True

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        normalized = _normalize(path)
        with self._lock:
            return normalized in self._paths

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def clear(self) -> None:
        """只在全量流程开始时调用。"""

        with self._lock:
            self._paths.clear()


class TempArtifactTracker:
    """记录增量编译时生成的临时 WebP 文件，供下一次全量流程前清理。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._paths: dict[Path, None] = {}

    def track(self, path: PathLike) -> None:
        normalized = _normalize(path)
        with self._lock:
            if normalized in self._paths:
                return
            self._paths[normalized] = None
        LOGGER.debug("添加临时文件: %s", normalized)

    def drain(self) -> list[Path]:
        """返回所有已记录的路径并清空记录。"""

        with self._lock:
            drained = list(self._paths)
            self._paths.clear()
        return drained

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def __iter__(self) -> Iterator[Path]:
        with self._lock:
            return iter(list(self._paths))


class RunStatistics:
    """转换结果的累计统计，允许多个线程同时记录。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data = StatisticsSnapshot()

    def record(self, outcome: ConversionOutcome) -> None:
        with self._lock:
            data = self._data
            data.total_files += 1
            if outcome.status == STATUS_SMALLER:
                data.smaller_files += 1
                data.total_saved_bytes += outcome.saved_bytes
            elif outcome.status == STATUS_LARGER_KEPT:
                data.larger_kept_files += 1
            elif outcome.status in (STATUS_LARGER_SKIPPED, STATUS_DUPLICATE):
                data.skipped_files += 1
            elif outcome.status == STATUS_ALREADY_EXISTS:
                data.existing_files += 1
            elif outcome.status == STATUS_ERROR:
                data.failed_files += 1

    def snapshot(self) -> StatisticsSnapshot:
        with self._lock:
            data = self._data
            return StatisticsSnapshot(
                total_files=data.total_files,
                smaller_files=data.smaller_files,
                larger_kept_files=data.larger_kept_files,
                skipped_files=data.skipped_files,
                existing_files=data.existing_files,
                failed_files=data.failed_files,
                total_saved_bytes=data.total_saved_bytes,
            )

    def reset(self) -> None:
        with self._lock:
            self._data = StatisticsSnapshot()


@dataclass(slots=True)
class PipelineContext:
    """一次流水线调用的上下文，按引用传入各个组件。"""

    registry: DedupRegistry = field(default_factory=DedupRegistry)
    tracker: TempArtifactTracker = field(default_factory=TempArtifactTracker)
    statistics: RunStatistics = field(default_factory=RunStatistics)

    def begin_full_pass(self) -> list[Path]:
        """取出全部临时产物并重置去重登记与统计，返回待删除的路径。"""

        pending = self.tracker.drain()
        self.registry.clear()
        self.statistics.reset()
        return pending
