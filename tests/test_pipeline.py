"""全量流水线测试：扫描、并发转换、统计、样式表与临时产物清理。"""

from __future__ import annotations

import csv
from pathlib import Path

import pytest
from PIL import Image

from webp_converter.core.config import ConversionPolicy
from webp_converter.core.context import PipelineContext
from webp_converter.core.exceptions import InvalidConfigurationError, ProcessingAborted
from webp_converter.core.progress import ProgressUpdate
from webp_converter.processing.pipeline import purge_transient_artifacts, run_full_pass

TINY_WEBP = b"RIFF0000WEBP"


def tiny_encoder(image: Image.Image, quality: int, lossless: bool) -> bytes:
    return TINY_WEBP


def huge_encoder(image: Image.Image, quality: int, lossless: bool) -> bytes:
    return b"\0" * 1_000_000


def make_dist(root: Path) -> dict[str, Path]:
    images = root / "static" / "img"
    images.mkdir(parents=True)
    paths = {
        "logo": images / "logo.png",
        "photo": images / "photo.jpg",
        "favicon": root / "favicon.png",
    }
    Image.new("RGB", (64, 64), (255, 0, 0)).save(paths["logo"])
    Image.new("RGB", (64, 64), (0, 255, 0)).save(paths["photo"])
    Image.new("RGBA", (16, 16), (0, 0, 255, 128)).save(paths["favicon"])
    (root / "static" / "main.css").write_text(
        ".logo { background-image: url(img/logo.png); }\n", encoding="utf-8"
    )
    return paths


def webp_files(root: Path) -> list[Path]:
    return sorted(root.rglob("*.webp"))


def test_full_pass_converts_and_aggregates(tmp_path: Path) -> None:
    paths = make_dist(tmp_path)
    (tmp_path / "static" / "img" / "broken.png").write_text("not an image")
    originals = {name: path.stat().st_size for name, path in paths.items()}

    result = run_full_pass(tmp_path, ConversionPolicy(), encoder=tiny_encoder, max_workers=1)

    stats = result.statistics
    assert stats.total_files == 4
    assert stats.smaller_files == 3
    assert stats.failed_files == 1
    assert stats.total_saved_bytes == sum(size - len(TINY_WEBP) for size in originals.values())
    assert len(result.batch.succeeded) == 3
    assert len(result.batch.failed) == 1
    assert result.batch.failed[0].source_path.name == "broken.png"
    for path in paths.values():
        assert path.with_suffix(".webp").read_bytes() == TINY_WEBP

    css = (tmp_path / "static" / "main.css").read_text(encoding="utf-8")
    assert 'html[data-webp-support="yes"] .logo {\n  background-image: url("img/logo.webp");' in css
    assert result.stylesheets is not None and result.stylesheets.references == 1


def test_second_pass_writes_nothing(tmp_path: Path) -> None:
    make_dist(tmp_path)
    run_full_pass(tmp_path, ConversionPolicy(), encoder=tiny_encoder)
    first_files = {path: path.stat().st_mtime_ns for path in webp_files(tmp_path)}
    css_after_first = (tmp_path / "static" / "main.css").read_text(encoding="utf-8")

    second = run_full_pass(tmp_path, ConversionPolicy(), encoder=huge_encoder)

    assert second.statistics.total_files == 0
    assert {path: path.stat().st_mtime_ns for path in webp_files(tmp_path)} == first_files
    assert (tmp_path / "static" / "main.css").read_text(encoding="utf-8") == css_after_first


def test_larger_results_follow_only_smaller_files(tmp_path: Path) -> None:
    make_dist(tmp_path)

    skipped = run_full_pass(tmp_path, ConversionPolicy(), encoder=huge_encoder)

    assert skipped.statistics.skipped_files == 3
    assert webp_files(tmp_path) == []
    css = (tmp_path / "static" / "main.css").read_text(encoding="utf-8")
    assert "data-webp-support" not in css

    kept = run_full_pass(tmp_path, ConversionPolicy(only_smaller_files=False), encoder=huge_encoder)

    assert kept.statistics.larger_kept_files == 3
    assert kept.statistics.total_saved_bytes == 0
    assert len(webp_files(tmp_path)) == 3


def test_concurrent_workers_produce_same_totals(tmp_path: Path) -> None:
    for index in range(12):
        Image.new("RGB", (32, 32), (index * 10, 0, 0)).save(tmp_path / f"img_{index:02d}.png")

    result = run_full_pass(tmp_path, ConversionPolicy(), encoder=tiny_encoder, max_workers=4)

    assert result.statistics.total_files == 12
    assert result.statistics.smaller_files == 12
    assert [item.source_path.name for item in result.batch.succeeded] == [f"img_{i:02d}.png" for i in range(12)]


def test_oversized_image_does_not_stop_sequential_batch(tmp_path: Path, oversized_png) -> None:
    oversized_png(tmp_path / "a_bomb.png")
    Image.new("RGB", (32, 32), (0, 0, 0)).save(tmp_path / "b_ok.png")

    result = run_full_pass(
        tmp_path,
        ConversionPolicy(only_smaller_files=False),
        encoder=tiny_encoder,
        max_workers=1,
    )

    assert [item.source_path.name for item in result.batch.failed] == ["a_bomb.png"]
    assert [item.source_path.name for item in result.batch.succeeded] == ["b_ok.png"]
    assert result.statistics.failed_files == 1
    assert (tmp_path / "b_ok.webp").exists()


def test_failed_build_aborts_before_any_work(tmp_path: Path) -> None:
    make_dist(tmp_path)

    with pytest.raises(ProcessingAborted):
        run_full_pass(tmp_path, ConversionPolicy(), build_error=RuntimeError("compile error"))

    assert webp_files(tmp_path) == []


def test_invalid_policy_aborts_before_any_work(tmp_path: Path) -> None:
    make_dist(tmp_path)

    with pytest.raises(InvalidConfigurationError):
        run_full_pass(tmp_path, ConversionPolicy(quality=50, min_quality=60))

    assert webp_files(tmp_path) == []


def test_transient_artifacts_are_purged_before_full_pass(tmp_path: Path) -> None:
    dist = tmp_path / "dist"
    dist.mkdir()
    src_webp = tmp_path / "src" / "logo.webp"
    src_webp.parent.mkdir()
    src_webp.write_bytes(b"temp")

    context = PipelineContext()
    context.tracker.track(src_webp)
    context.tracker.track(tmp_path / "src" / "already-gone.webp")
    context.registry.claim(tmp_path / "src" / "logo.png")

    result = run_full_pass(dist, ConversionPolicy(), context, encoder=tiny_encoder)

    assert result.purged == [src_webp.resolve()]
    assert not src_webp.exists()
    assert len(context.tracker) == 0
    assert (tmp_path / "src" / "logo.png") not in context.registry


def test_purge_without_tracked_files_still_resets_registry(tmp_path: Path) -> None:
    context = PipelineContext()
    context.registry.claim(tmp_path / "a.png")

    assert purge_transient_artifacts(context) == []
    assert len(context.registry) == 0


def test_stylesheets_can_be_disabled(tmp_path: Path) -> None:
    make_dist(tmp_path)
    css_before = (tmp_path / "static" / "main.css").read_text(encoding="utf-8")

    result = run_full_pass(tmp_path, ConversionPolicy(process_stylesheets=False), encoder=tiny_encoder)

    assert result.stylesheets is None
    assert (tmp_path / "static" / "main.css").read_text(encoding="utf-8") == css_before


def test_report_and_progress(tmp_path: Path) -> None:
    dist = tmp_path / "dist"
    dist.mkdir()
    make_dist(dist)
    report = tmp_path / "reports" / "webp.csv"
    updates: list[ProgressUpdate] = []

    run_full_pass(
        dist,
        ConversionPolicy(),
        encoder=tiny_encoder,
        report_path=report,
        progress_callback=updates.append,
    )

    with report.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    assert len(rows) == 3
    assert {row["status"] for row in rows} == {"smaller"}
    assert updates[-1].status == "done"
    assert updates[-1].completed == updates[-1].total == 3


def test_real_encoder_end_to_end(tmp_path: Path) -> None:
    Image.new("RGB", (64, 64), (30, 60, 90)).save(tmp_path / "a.png")

    result = run_full_pass(tmp_path, ConversionPolicy(only_smaller_files=False))

    assert result.statistics.failed_files == 0
    with Image.open(tmp_path / "a.webp") as img:
        assert img.format == "WEBP"
        assert img.size == (64, 64)
