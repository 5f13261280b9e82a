"""转换策略的配置模型与校验。"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

from webp_converter.core.exceptions import InvalidConfigurationError

DEFAULT_QUALITY = 85
DEFAULT_MIN_QUALITY = 70

# 构建工具配置中的键名 -> dataclass 字段名
_HOST_KEYS = {
    "quality": "quality",
    "lossless": "lossless",
    "onlySmallerFiles": "only_smaller_files",
    "minQuality": "min_quality",
    "processCss": "process_stylesheets",
    "processImport": "process_imports",
}


@dataclass(slots=True)
class ConversionPolicy:
    """WebP 转换与引用改写的策略。"""

    quality: int = DEFAULT_QUALITY
    lossless: bool = False
    only_smaller_files: bool = True
    min_quality: int = DEFAULT_MIN_QUALITY
    process_stylesheets: bool = True
    process_imports: bool = True


def validate_policy(policy: ConversionPolicy) -> ConversionPolicy:
    """校验取值范围，不合法时抛出 InvalidConfigurationError。"""

    for name in ("quality", "min_quality"):
        value = getattr(policy, name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidConfigurationError(f"{name} 必须为整数: {value!r}")
        if not 0 <= value <= 100:
            raise InvalidConfigurationError(f"{name} 必须在 0~100 之间: {value}")

    if policy.min_quality > policy.quality:
        raise InvalidConfigurationError(
            f"min_quality ({policy.min_quality}) 不能大于 quality ({policy.quality})"
        )

    for name in ("lossless", "only_smaller_files", "process_stylesheets", "process_imports"):
        if not isinstance(getattr(policy, name), bool):
            raise InvalidConfigurationError(f"{name} 必须为布尔值")

    return policy


def policy_from_mapping(options: Mapping[str, Any]) -> ConversionPolicy:
    """将构建工具的用户配置合并默认值后转换为策略对象。

    同时接受 ``onlySmallerFiles`` 形式与 ``only_smaller_files`` 形式的键名。
    """

    field_names = {item.name for item in fields(ConversionPolicy)}
    values: dict[str, Any] = {}
    for key, value in options.items():
        name = _HOST_KEYS.get(key, key)
        if name not in field_names:
            raise InvalidConfigurationError(f"未知的配置项: {key}")
        values[name] = value

    return validate_policy(ConversionPolicy(**values))


def load_policy_file(path: Path) -> ConversionPolicy:
    """从 JSON 配置文件读取策略。"""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise InvalidConfigurationError(f"无法读取配置文件: {path}") from exc
    except json.JSONDecodeError as exc:
        raise InvalidConfigurationError(f"配置文件不是合法的 JSON: {path}") from exc

    if not isinstance(raw, dict):
        raise InvalidConfigurationError("配置文件顶层必须是对象")
    return policy_from_mapping(raw)
