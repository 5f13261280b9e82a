"""源码中图片 import/require 语句的 WebP 改写。

支持以下四种语句（单/双引号各一种）::

    import logo from '@/assets/logo.png';
    const logo = require("@/assets/logo.png");

路径末尾的 ``!webp`` 标记表示该引用不转换，文件前 500 个字符内的
``/** disabled-webp-convert-plugin */`` 注释表示整个文件都不转换。
两种情况下 ``!webp`` 标记都会从输出中移除。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Mapping, Optional, Union

from webp_converter.core.config import ConversionPolicy, validate_policy
from webp_converter.core.context import PipelineContext
from webp_converter.core.exceptions import ConversionIOError, ResolutionError
from webp_converter.core.models import STATUS_ALREADY_EXISTS, SourceImportReference
from webp_converter.core.scanner import compact_path_for, compact_reference
from webp_converter.processing.converter import convert_image_file
from webp_converter.processing.transcoder import Encoder

LOGGER = logging.getLogger(__name__)

SKIP_MARK = "!webp"
DISABLE_COMMENT_RE = re.compile(r"/\*\*\s*disabled-webp-convert-plugin\s*\*/")
DISABLE_COMMENT_WINDOW = 500

SOURCE_SUFFIXES = {".js", ".jsx", ".ts", ".tsx"}

_IMAGE_PATH = r"\.(?:jpe?g|png)(?:!webp)?"

# (kind, quote_style, pattern)
STATEMENT_PATTERNS = [
    (
        "import",
        "single",
        re.compile(r"import\s+(?P<name>[^\s]+)\s+from\s+'(?P<path>[^']+" + _IMAGE_PATH + r")'"),
    ),
    (
        "import",
        "double",
        re.compile(r'import\s+(?P<name>[^\s]+)\s+from\s+"(?P<path>[^"]+' + _IMAGE_PATH + r')"'),
    ),
    (
        "require",
        "single",
        re.compile(
            r"(?:const|let|var)\s+(?P<name>[^\s=]+)\s*=\s*require\s*\(\s*'(?P<path>[^']+"
            + _IMAGE_PATH
            + r")'\s*\)"
        ),
    ),
    (
        "require",
        "double",
        re.compile(
            r'(?:const|let|var)\s+(?P<name>[^\s=]+)\s*=\s*require\s*\(\s*"(?P<path>[^"]+'
            + _IMAGE_PATH
            + r')"\s*\)'
        ),
    ),
]

MARKER_TYPINGS = """
// WebP图片类型声明
declare module '*.jpg!webp' {
  const src: string;
  export default src;
}

declare module '*.jpeg!webp' {
  const src: string;
  export default src;
}

declare module '*.png!webp' {
  const src: string;
  export default src;
}
"""

Resolver = Callable[[str, Path], Union[str, Path]]


@dataclass(slots=True)
class SourceRewriteResult:
    """单个源文件的改写结果。"""

    text: str
    references: list[SourceImportReference]
    changed: bool = False


class AliasResolver:
    """按别名、相对路径或绝对路径把导入路径解析为磁盘上的文件。

    ``AliasResolver({"@": Path("src")})`` 会把 ``@/assets/a.png`` 解析为
    ``src/assets/a.png``。裸模块名（node_modules）不做解析。
    """

    def __init__(self, aliases: Optional[Mapping[str, Path]] = None) -> None:
        self.aliases = {key: Path(value) for key, value in (aliases or {}).items()}

    def __call__(self, request: str, importer: Path) -> Path:
        candidate: Optional[Path] = None
        for alias in sorted(self.aliases, key=len, reverse=True):
            if request == alias or request.startswith(alias + "/"):
                candidate = self.aliases[alias] / request[len(alias) :].lstrip("/")
                break

        if candidate is None:
            if request.startswith(("./", "../")):
                candidate = importer.parent / request
            elif Path(request).is_absolute():
                candidate = Path(request)
            else:
                raise ResolutionError(f"无法解析模块路径: {request}")

        candidate = candidate.resolve()
        if not candidate.is_file():
            raise ResolutionError(f"文件不存在: {candidate}")
        return candidate


@dataclass(slots=True)
class _Occurrence:
    kind: str
    quote_style: str
    bound_name: str
    raw_path: str
    statement: str
    path_span: tuple[int, int]


def should_process_source(path: Path) -> bool:
    """只处理 node_modules 之外的 js/jsx/ts/tsx 文件。"""

    return path.suffix.lower() in SOURCE_SUFFIXES and "node_modules" not in path.parts


def is_file_disabled(source_text: str) -> bool:
    return DISABLE_COMMENT_RE.search(source_text[:DISABLE_COMMENT_WINDOW]) is not None


def strip_skip_mark(path: str) -> str:
    if path.endswith(SKIP_MARK):
        return path[: -len(SKIP_MARK)]
    return path


def rewrite_source(
    source_text: str,
    file_path: Path,
    policy: ConversionPolicy,
    resolver: Resolver,
    context: Optional[PipelineContext] = None,
    *,
    production: bool = True,
    encoder: Optional[Encoder] = None,
) -> SourceRewriteResult:
    """改写单个源文件中的图片导入语句。

    开发模式或关闭 ``process_imports`` 时只移除 ``!webp`` 标记；生产模式下
    解析每个引用、转换图片，转换产物存在时把路径改为 ``.webp``。
    所有替换基于原始文本的偏移量计算，最后从后往前一次性应用。
    """

    validate_policy(policy)
    context = context or PipelineContext()
    importer = Path(file_path)

    grouped = _group_by_statement(source_text)
    references: list[SourceImportReference] = []
    edits: list[tuple[int, int, str]] = []

    strip_only = not production or not policy.process_imports
    file_disabled = False if strip_only else is_file_disabled(source_text)
    if file_disabled:
        LOGGER.info("文件 %s 已通过顶部注释禁用 WebP 转换", importer)

    for occurrences in grouped.values():
        first = occurrences[0]
        has_mark = first.raw_path.endswith(SKIP_MARK)
        reference = SourceImportReference(
            kind=first.kind,
            quote_style=first.quote_style,
            bound_name=first.bound_name,
            raw_path=first.raw_path,
            span=first.path_span,
            statement=first.statement,
            skip=file_disabled or has_mark,
        )
        references.append(reference)

        if strip_only:
            new_path = strip_skip_mark(first.raw_path) if has_mark else None
        else:
            new_path = _decide_path(reference, importer, policy, resolver, context, file_disabled, encoder)

        if new_path is not None and new_path != first.raw_path:
            reference.rewritten_path = new_path
            edits.extend((item.path_span[0], item.path_span[1], new_path) for item in occurrences)

    new_text = apply_edits(source_text, edits)
    changed = new_text != source_text

    if references:
        LOGGER.info("在 %s 中找到 %d 个图片导入", importer, len(references))
        for reference in references:
            LOGGER.debug(
                "- %s (%s): %s 从 %s 导入%s",
                reference.kind,
                reference.quote_style,
                reference.bound_name,
                reference.raw_path,
                f" -> {reference.rewritten_path}" if reference.rewritten_path else "",
            )
    if strip_only and changed:
        LOGGER.info("开发模式: 在 %s 中移除了 !webp 标记", importer)

    return SourceRewriteResult(text=new_text, references=references, changed=changed)


def rewrite_source_file(
    path: Path,
    policy: ConversionPolicy,
    resolver: Resolver,
    context: Optional[PipelineContext] = None,
    *,
    production: bool = True,
    encoder: Optional[Encoder] = None,
) -> Optional[SourceRewriteResult]:
    """读取、改写并写回源文件；不需要处理的文件返回 None。"""

    if not should_process_source(path):
        return None

    try:
        source_text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConversionIOError(f"读取源文件失败: {path}") from exc

    result = rewrite_source(
        source_text,
        path,
        policy,
        resolver,
        context,
        production=production,
        encoder=encoder,
    )
    if result.changed:
        try:
            path.write_text(result.text, encoding="utf-8")
        except OSError as exc:
            raise ConversionIOError(f"写入源文件失败: {path}") from exc
    return result


def apply_edits(text: str, edits: list[tuple[int, int, str]]) -> str:
    """按原始偏移量应用替换，从后往前处理保证前面的偏移不受影响。"""

    unique = sorted(set(edits), key=lambda edit: edit[0], reverse=True)
    result = text
    last_start = len(text) + 1
    for start, end, replacement in unique:
        if end > last_start:
            # 与已应用的替换重叠
            continue
        result = result[:start] + replacement + result[end:]
        last_start = start
    return result


def ensure_marker_typings(typings_path: Path) -> bool:
    """向已存在的类型声明文件追加 ``*.png!webp`` 等模块声明，只追加一次。"""

    if not typings_path.exists():
        return False

    existing = typings_path.read_text(encoding="utf-8")
    if "*.jpg!webp" in existing:
        return False

    with typings_path.open("a", encoding="utf-8") as handle:
        handle.write(MARKER_TYPINGS)
    LOGGER.info("WebP类型声明已添加到 %s", typings_path.name)
    return True


def _iter_occurrences(source_text: str) -> Iterator[_Occurrence]:
    for kind, quote_style, pattern in STATEMENT_PATTERNS:
        for match in pattern.finditer(source_text):
            yield _Occurrence(
                kind=kind,
                quote_style=quote_style,
                bound_name=match.group("name"),
                raw_path=match.group("path"),
                statement=match.group(0),
                path_span=match.span("path"),
            )


def _group_by_statement(source_text: str) -> dict[str, list[_Occurrence]]:
    """按完整语句文本去重，同一语句可能被多个模式匹配到。"""

    grouped: dict[str, list[_Occurrence]] = {}
    seen_spans: set[tuple[int, int]] = set()
    for occurrence in sorted(_iter_occurrences(source_text), key=lambda item: item.path_span):
        if occurrence.path_span in seen_spans:
            continue
        seen_spans.add(occurrence.path_span)
        grouped.setdefault(occurrence.statement, []).append(occurrence)
    return grouped


def _decide_path(
    reference: SourceImportReference,
    importer: Path,
    policy: ConversionPolicy,
    resolver: Resolver,
    context: PipelineContext,
    file_disabled: bool,
    encoder: Optional[Encoder],
) -> Optional[str]:
    """返回改写后的路径；保持原样时返回 None。"""

    has_mark = reference.raw_path.endswith(SKIP_MARK)
    clean_path = strip_skip_mark(reference.raw_path)
    stripped = clean_path if has_mark else None

    try:
        image_path = Path(resolver(clean_path, importer)).resolve()
    except Exception as exc:  # noqa: BLE001
        reference.resolve_error = str(exc)
        LOGGER.error("解析路径失败: %s (%s)", reference.raw_path, exc)
        return stripped

    reference.resolved_path = image_path
    compact = _compact_sibling(image_path)

    if image_path in context.registry:
        LOGGER.debug("已处理过: %s -> %s，跳过重复处理", clean_path, image_path)
        if not reference.skip and compact is not None and compact.exists():
            return compact_reference(clean_path)
        return stripped

    if reference.skip:
        reason = "文件顶部禁用注释" if file_disabled else "!webp 标记"
        LOGGER.info("跳过转换: %s (用户通过%s指定不转换)", image_path.name, reason)
        return stripped

    outcome = convert_image_file(image_path, policy, context, encoder=encoder)
    reference.outcome = outcome
    context.statistics.record(outcome)

    if outcome.persisted and outcome.output_path is not None:
        context.tracker.track(outcome.output_path)
        return compact_reference(clean_path)
    if outcome.status == STATUS_ALREADY_EXISTS:
        return compact_reference(clean_path)
    return None


def _compact_sibling(image_path: Path) -> Optional[Path]:
    try:
        return compact_path_for(image_path)
    except ValueError:
        return None
