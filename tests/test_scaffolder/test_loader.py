"""Tests for the template tree loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from stackstamp.errors import TemplateLoadError
from stackstamp.scaffolder.loader import load_tree, load_tree_async

pytestmark = pytest.mark.unit


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    root = tmp_path / "templates"
    (root / "b" / "nested").mkdir(parents=True)
    (root / "a").mkdir()
    (root / "empty").mkdir()
    (root / "b" / "nested" / "%subject.pascal%.ts.j2").write_text("x\n", encoding="utf-8")
    (root / "a" / "z.txt").write_text("z\n", encoding="utf-8")
    (root / ".env.example").write_text("KEY=1\n", encoding="utf-8")
    (root / "__pycache__").mkdir()
    (root / "__pycache__" / "junk.pyc").write_bytes(b"\x00")
    return root


class TestLoadTree:
    def test_sorted_relative_posix_paths(self, corpus: Path):
        paths = [n.path for n in load_tree(corpus)]
        assert paths == [
            ".env.example",
            "a",
            "a/z.txt",
            "b",
            "b/nested",
            "b/nested/%subject.pascal%.ts.j2",
            "empty",
        ]

    def test_directories_have_no_content(self, corpus: Path):
        nodes = {n.path: n for n in load_tree(corpus)}
        assert nodes["empty"].is_dir and nodes["empty"].content is None
        assert nodes["a/z.txt"].content == "z\n"
        assert nodes["a/z.txt"].source == str(corpus / "a" / "z.txt")

    def test_path_placeholders_are_not_resolved(self, corpus: Path):
        paths = [n.path for n in load_tree(corpus)]
        assert "b/nested/%subject.pascal%.ts.j2" in paths

    def test_missing_root(self, tmp_path: Path):
        with pytest.raises(TemplateLoadError, match="does not exist"):
            load_tree(tmp_path / "nope")

    def test_undecodable_file(self, corpus: Path):
        (corpus / "bad.bin").write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(TemplateLoadError) as excinfo:
            load_tree(corpus)
        assert excinfo.value.exit_code == 3

    @pytest.mark.asyncio
    async def test_async_matches_sync(self, corpus: Path):
        assert await load_tree_async(corpus, max_workers=2) == load_tree(corpus)
