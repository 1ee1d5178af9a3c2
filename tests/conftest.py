from pathlib import Path

import pytest

from dexbook.config import BuildConfig
from tests.helpers import FIXTURES


@pytest.fixture
def build_config(tmp_path: Path) -> BuildConfig:
    return BuildConfig(
        cache_dir=tmp_path / "cache",
        output_dir=tmp_path / "ddk",
        calls_per_second=0,
        workers=2,
        image_workers=0,
    )


@pytest.fixture
def pikachu_html() -> bytes:
    return (FIXTURES / "pikachu.html").read_bytes()


@pytest.fixture
def index_html() -> str:
    return (FIXTURES / "index.html").read_text(encoding="utf-8")
