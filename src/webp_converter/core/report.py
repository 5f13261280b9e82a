"""转换报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

from webp_converter.core.models import ConversionOutcome

HEADER = ["source_path", "output_path", "status", "original_size", "compact_size", "saved_bytes", "quality", "message"]


def write_csv_report(outcomes: Iterable[ConversionOutcome], report_path: Path) -> Path:
    """将每张图片的转换结果写入 CSV 报告。"""

    report_path.parent.mkdir(parents=True, exist_ok=True)
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in outcomes:
            writer.writerow(
                [
                    str(record.source_path),
                    str(record.output_path) if record.output_path else "",
                    record.status,
                    record.original_size or "",
                    record.compact_size or "",
                    record.saved_bytes or "",
                    _format_quality(record.quality),
                    record.message or "",
                ]
            )
    return report_path


def _format_quality(value: int | None) -> str:
    if value is None:
        return ""
    return str(value)
