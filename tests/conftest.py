"""测试共用的夹具。"""

from __future__ import annotations

import struct
import zlib
from pathlib import Path
from typing import Callable

import pytest


def _chunk(kind: bytes, payload: bytes) -> bytes:
    return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", zlib.crc32(kind + payload))


@pytest.fixture
def oversized_png() -> Callable[[Path], Path]:
    """只写 PNG 签名、IHDR 与 IEND，声明 20000x20000 像素，超过 Pillow 的解压炸弹上限。"""

    def write(path: Path) -> Path:
        header = struct.pack(">IIBBBBB", 20000, 20000, 8, 2, 0, 0, 0)
        path.write_bytes(b"\x89PNG\r\n\x1a\n" + _chunk(b"IHDR", header) + _chunk(b"IEND", b""))
        return path

    return write
