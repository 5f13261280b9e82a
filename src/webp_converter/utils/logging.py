"""日志配置。"""

from __future__ import annotations

import logging
from typing import Union


def setup_logging(level: Union[int, str] = logging.INFO) -> None:
    """初始化项目日志配置，Pillow 自身的调试日志保持在 WARNING。"""

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("PIL").setLevel(logging.WARNING)
