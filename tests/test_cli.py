from pathlib import Path

import pytest

from dexbook import cli
from dexbook.config import QualityTier
from dexbook.errors import AssemblyError, AssemblyErrorKind, FetchError, FetchErrorKind
from dexbook.pipeline import run


@pytest.fixture
def paths(tmp_path):
    return ["--cache-dir", str(tmp_path / "cache"), "--output-dir", str(tmp_path / "ddk")]


def test_parser_defaults():
    args = cli.build_parser().parse_args([])

    config = cli._config_from_args(args)
    assert config.quality is QualityTier.FAST
    assert config.max_body_sections == 1
    assert config.limit is None
    assert config.body_quality is QualityTier.FAST


def test_hq_flag_selects_high_tier(paths):
    args = cli.build_parser().parse_args(paths + ["--hq", "--max-body-sections", "3", "--limit", "5"])

    config = cli._config_from_args(args)
    assert config.quality is QualityTier.HIGH
    assert config.max_body_sections == 3
    assert config.limit == 5
    assert config.cache_dir == Path(paths[1])


def test_hq_body_images_flag_only_raises_body_tier(paths):
    args = cli.build_parser().parse_args(paths + ["--hq-body-images"])

    config = cli._config_from_args(args)
    assert config.body_quality is QualityTier.HIGH
    assert config.quality is QualityTier.FAST


def test_build_passes_config_through(monkeypatch, paths):
    seen = {}

    def fake_run_build(config):
        seen["config"] = config
        raise AssemblyError(AssemblyErrorKind.MALFORMED_OUTPUT, "bad")

    monkeypatch.setattr(run, "run_build", fake_run_build)

    assert cli.main(paths + ["--quality", "high"]) == cli.EXIT_FAILED
    assert seen["config"].quality is QualityTier.HIGH


def test_unreadable_index_exits_with_failure(monkeypatch, paths):
    def fake_run_build(config):
        raise FetchError(FetchErrorKind.NOT_FOUND, "https://example.org/index", status=404)

    monkeypatch.setattr(run, "run_build", fake_run_build)

    assert cli.main(paths) == cli.EXIT_FAILED


def test_interrupt_exits_130(monkeypatch, paths):
    def fake_run_build(config):
        raise KeyboardInterrupt

    monkeypatch.setattr(run, "run_build", fake_run_build)

    assert cli.main(paths) == cli.EXIT_INTERRUPTED


def test_clear_image_cache_removes_one_tier(paths, tmp_path, capsys):
    for tier in ("fast", "high"):
        directory = tmp_path / "cache" / f"images-{tier}"
        directory.mkdir(parents=True)
        (directory / "artifact").write_bytes(b"x")

    assert cli.main(paths + ["--clear-image-cache", "high"]) == cli.EXIT_OK

    assert "Removed 1 cached high images." in capsys.readouterr().out
    assert not (tmp_path / "cache" / "images-high" / "artifact").exists()
    assert (tmp_path / "cache" / "images-fast" / "artifact").exists()
