"""样式表背景图处理：为 jpg/png 背景追加按 WebP 支持切换的规则。

原有规则保持逐字节不变，只在文件末尾追加::

    html[data-webp-support="yes"] .banner {
      background-image: url("images/a.webp");
    }

    html[data-webp-support="no"] .banner {
      background-image: url("images/a.jpg");
    }

``data-webp-support`` 由页面中的检测脚本在样式生效前写到 ``<html>`` 上。
包含多重背景的规则块不会被改写。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from webp_converter.core.models import StylesheetPassResult, StylesheetReference
from webp_converter.core.scanner import compact_reference

LOGGER = logging.getLogger(__name__)

SUPPORT_ATTRIBUTE = "data-webp-support"
SUPPORTED_VALUE = "yes"
UNSUPPORTED_VALUE = "no"
APPENDIX_HEADER = "/* WebP支持检测和替换 */"

BACKGROUND_URL_RE = re.compile(
    r"(?P<property>background(?:-image)?)\s*:[^;{}]*?"
    r"url\(\s*['\"]?(?P<path>[^'\")]+?\.(?:jpe?g|png))\s*['\"]?\s*\)",
    re.IGNORECASE,
)
URL_FUNCTION_RE = re.compile(r"url\(", re.IGNORECASE)
# 不在任何函数括号内的逗号，如 rgba(0, 0, 0, .5) 中的逗号不算
COMMA_OUTSIDE_PARENS_RE = re.compile(r",(?![^(]*\))")

SKIPPED_PREFIXES = ("data:", "http://", "https://")
SELECTOR_BOUNDARY = "{};\n"

CompactExists = Callable[[str], bool]


@dataclass(slots=True)
class StylesheetRewrite:
    """单个样式表的改写结果。"""

    text: str
    references: list[StylesheetReference]

    @property
    def applied(self) -> int:
        return len(self.references)


def is_multiple_background(rule_body: str) -> bool:
    """规则块内出现多个 url()，或函数括号外出现逗号，即视为多重背景。"""

    if len(URL_FUNCTION_RE.findall(rule_body)) > 1:
        return True
    return COMMA_OUTSIDE_PARENS_RE.search(rule_body) is not None


def find_references(text: str, *, compact_exists: Optional[CompactExists] = None) -> list[StylesheetReference]:
    """扫描样式表文本，返回可以追加 WebP 规则的背景图引用。"""

    references: list[StylesheetReference] = []
    seen: set[tuple[str, str, str, str]] = set()

    for match in BACKGROUND_URL_RE.finditer(text):
        image_path = match.group("path").strip()
        lowered = image_path.lower()
        if lowered.endswith(".webp") or lowered.startswith(SKIPPED_PREFIXES):
            continue

        offset = match.start()
        rule_start = text.rfind("{", 0, offset)
        if rule_start < 0:
            continue
        rule_end = text.find("}", offset)
        if rule_end < 0:
            rule_end = len(text)
        if text.rfind("}", rule_start, offset) >= 0:
            # 声明不在任何规则块内
            continue

        rule_body = text[rule_start + 1 : rule_end]
        if is_multiple_background(rule_body):
            LOGGER.debug("多重背景规则，跳过: %s", image_path)
            continue

        selector = _extract_selector(text, rule_start)
        if not selector or SUPPORT_ATTRIBUTE in selector or selector.startswith("@"):
            continue
        at_rule = _enclosing_at_rule(text, rule_start)
        if at_rule == "":
            LOGGER.debug("无法识别所在的嵌套规则，跳过: %s", image_path)
            continue
        if f"{_gate_selector(selector, SUPPORTED_VALUE)} {{" in text:
            # 之前的运行已追加过
            continue

        if compact_exists is not None and not compact_exists(image_path):
            LOGGER.debug("未找到对应的 WebP 文件，跳过: %s", image_path)
            continue

        key = (at_rule or "", selector, match.group("property").lower(), image_path)
        if key in seen:
            continue
        seen.add(key)

        references.append(
            StylesheetReference(
                selector=selector,
                property=match.group("property").lower(),
                original_path=image_path,
                compact_path=compact_reference(image_path),
                at_rule=at_rule,
            )
        )

    return references


def rewrite_stylesheet(text: str, *, compact_exists: Optional[CompactExists] = None) -> StylesheetRewrite:
    """在样式表末尾追加 WebP 切换规则，原有内容不变。"""

    references = find_references(text, compact_exists=compact_exists)
    if not references:
        return StylesheetRewrite(text=text, references=[])

    parts = [text, f"\n\n{APPENDIX_HEADER}\n"]
    for reference in references:
        parts.append(_render_rule(reference, SUPPORTED_VALUE, reference.compact_path))
        parts.append(_render_rule(reference, UNSUPPORTED_VALUE, reference.original_path))

    return StylesheetRewrite(text="".join(parts), references=references)


def process_stylesheet_files(root: Path) -> StylesheetPassResult:
    """处理目录下所有 CSS 文件，单个文件失败不影响其余文件。"""

    LOGGER.info("开始处理CSS文件中的图片URL...")
    result = StylesheetPassResult()
    resolved_root = root.resolve()

    for css_path in sorted(resolved_root.rglob("*.css")):
        if not css_path.is_file():
            continue
        result.files_scanned += 1
        try:
            content = css_path.read_text(encoding="utf-8")
            rewrite = rewrite_stylesheet(
                content,
                compact_exists=_compact_exists_for(css_path, resolved_root),
            )
            if rewrite.applied:
                css_path.write_text(rewrite.text, encoding="utf-8")
                result.files_rewritten += 1
                result.references += rewrite.applied
                LOGGER.info("已追加 %d 条 WebP 规则: %s", rewrite.applied, css_path)
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.error("处理CSS文件失败 %s: %s", css_path, exc)
            result.failed.append(css_path)

    LOGGER.info("CSS处理完成，共处理 %d 个文件", result.files_rewritten)
    return result


def _extract_selector(text: str, rule_start: int) -> str:
    """向前查找到上一个 ``{``、``}``、``;`` 或换行，取出选择器。"""

    selector_start = rule_start
    while selector_start > 0 and text[selector_start - 1] not in SELECTOR_BOUNDARY:
        selector_start -= 1
    return text[selector_start:rule_start].strip()


def _enclosing_at_rule(text: str, rule_start: int) -> Optional[str]:
    """返回规则所在的 @media 等条件规则前缀；顶层规则返回 None。

    多层嵌套或非 @ 开头的嵌套块返回空字符串，调用方据此跳过该规则。
    """

    depth = 0
    for index in range(rule_start - 1, -1, -1):
        char = text[index]
        if char == "}":
            depth += 1
        elif char == "{":
            if depth:
                depth -= 1
                continue
            prelude = _extract_selector(text, index)
            if not prelude.startswith("@") or _enclosing_at_rule(text, index) is not None:
                return ""
            return prelude
    return None


def _gate_selector(selector: str, value: str) -> str:
    gate = f'html[{SUPPORT_ATTRIBUTE}="{value}"]'
    parts = [part.strip() for part in COMMA_OUTSIDE_PARENS_RE.split(selector) if part.strip()]
    return ", ".join(f"{gate} {part}" for part in parts)


def _render_rule(reference: StylesheetReference, value: str, image_path: str) -> str:
    rule = (
        f"{_gate_selector(reference.selector, value)} {{\n"
        f'  {reference.property}: url("{image_path}");\n'
        "}\n"
    )
    if reference.at_rule is None:
        return rule + "\n"
    nested = "".join(f"  {line}\n" for line in rule.splitlines())
    return f"{reference.at_rule} {{\n{nested}}}\n\n"


def _compact_exists_for(css_path: Path, root: Path) -> CompactExists:
    """以 CSS 文件所在目录（绝对路径则以输出根目录）解析引用并检查 WebP 是否存在。"""

    def compact_exists(reference: str) -> bool:
        clean = reference.split("?", 1)[0].split("#", 1)[0]
        if clean.startswith("/"):
            candidate = root / clean.lstrip("/")
        else:
            candidate = css_path.parent / clean
        return Path(compact_reference(str(candidate))).exists()

    return compact_exists
