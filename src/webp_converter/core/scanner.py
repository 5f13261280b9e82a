"""图片文件扫描与筛选逻辑。"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Collection, Iterator

RASTER_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png"})
COMPACT_EXTENSION = ".webp"

RASTER_SUFFIX_RE = re.compile(r"\.(?:jpe?g|png)$", re.IGNORECASE)


def compact_path_for(path: Path) -> Path:
    """返回图片对应的 WebP 同名文件路径。"""

    if path.suffix.lower() not in RASTER_EXTENSIONS:
        raise ValueError(f"不是可转换的图片扩展名: {path}")
    return path.with_suffix(COMPACT_EXTENSION)


def compact_reference(reference: str) -> str:
    """将引用文本中的图片扩展名替换为 .webp。"""

    return RASTER_SUFFIX_RE.sub(COMPACT_EXTENSION, reference)


def _iter_candidate_files(path: Path) -> Iterator[Path]:
    """按排序后的路径顺序递归遍历目录下所有文件。"""

    if path.is_file():
        yield path
        return

    if not path.is_dir():
        return

    for candidate in sorted(path.rglob("*")):
        if candidate.is_file():
            yield candidate


def discover_images(root: Path, extensions: Collection[str] = RASTER_EXTENSIONS) -> list[Path]:
    """扫描目录，返回尚未生成 WebP 的图片路径。"""

    normalized = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions}
    collected: list[Path] = []

    for candidate in _iter_candidate_files(root.resolve()):
        if candidate.suffix.lower() not in normalized:
            continue
        if candidate.suffix.lower() not in RASTER_EXTENSIONS:
            continue
        # WebP 已存在即视为处理过
        if compact_path_for(candidate).exists():
            continue
        collected.append(candidate)

    return collected
