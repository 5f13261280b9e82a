"""文件大小格式化。"""

from __future__ import annotations


def format_size(num_bytes: int) -> str:
    """将字节数格式化为便于阅读的文本。"""

    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.2f} KB"
    return f"{num_bytes / (1024 * 1024):.2f} MB"
