"""Tests for knowledge-base link checking and link style conversion."""

import errno
from dataclasses import replace
from pathlib import Path

from kbkit.chains.link_chain import check_links, detect_link_style, update_link_style
from kbkit.core.options import EngineOptions
from kbkit.fs.memory import InMemoryFileSystem
from kbkit.markdown.links import LinkStyle


def _read(fs: InMemoryFileSystem, path: str) -> str:
    return fs.read_file(Path(path)).decode("utf-8")


class TestCheckLinks:
    """Test broken-link detection across the tree."""

    def test_intact_tree_has_no_broken_links(
        self, memory_fs: InMemoryFileSystem, engine_options: EngineOptions
    ) -> None:
        """Test that the sample knowledge base is clean."""
        assert check_links(memory_fs, engine_options) == []

    def test_broken_links_reported_with_reason_and_line(
        self, memory_fs: InMemoryFileSystem, engine_options: EngineOptions
    ) -> None:
        """Test that missing and out-of-root targets are reported, code is ignored."""
        memory_fs.write_file(
            Path("/kb/broken.md"),
            b"[a](missing.md#top)\n\n[b](../../etc/passwd)\n```\n[c](nope.md)\n```\n",
        )

        broken = check_links(memory_fs, engine_options)

        assert [(e.document, e.raw_target, e.line) for e in broken] == [
            ("/kb/broken.md", "missing.md#top", 1),
            ("/kb/broken.md", "../../etc/passwd", 3),
        ]
        assert broken[0].reason == "target does not exist"
        assert broken[1].reason == "target is outside the managed root"

    def test_external_and_anchor_links_not_checked(self, engine_options: EngineOptions) -> None:
        """Test that only internal links are validated."""
        fs = InMemoryFileSystem({"/kb/a.md": "[x](https://nowhere.invalid/x.md) [y](#gone)"})

        assert check_links(fs, engine_options) == []


class TestDetectLinkStyle:
    """Test dominant style detection."""

    def test_relative_tree(
        self, memory_fs: InMemoryFileSystem, engine_options: EngineOptions
    ) -> None:
        """Test that the sample tree is detected as relative."""
        assert detect_link_style(memory_fs, engine_options) is LinkStyle.RELATIVE

    def test_mostly_absolute_tree(self, engine_options: EngineOptions) -> None:
        """Test that absolute links win when they outnumber relative ones."""
        fs = InMemoryFileSystem({"/kb/a.md": "[b](/b.md) [c](/c.md) [d](d.md)", "/kb/b.md": ""})

        assert detect_link_style(fs, engine_options) is LinkStyle.ABSOLUTE

    def test_tie_counts_as_relative(self, engine_options: EngineOptions) -> None:
        """Test that an even split and an empty tree default to relative."""
        fs = InMemoryFileSystem({"/kb/a.md": "[b](/b.md) [c](c.md)", "/kb/e.md": "no links"})

        assert detect_link_style(fs, engine_options) is LinkStyle.RELATIVE


class TestUpdateLinkStyle:
    """Test converting every internal link as one transaction."""

    def test_convert_to_absolute(
        self, memory_fs: InMemoryFileSystem, engine_options: EngineOptions
    ) -> None:
        """Test that relative links become root-absolute, others stay put."""
        result = update_link_style(memory_fs, engine_options, LinkStyle.ABSOLUTE)

        assert result.committed
        assert result.rewritten_links == 4
        assert sorted(result.rewritten_files) == [
            Path("/kb/docs/setup.md"),
            Path("/kb/guide.md"),
            Path("/kb/index.md"),
        ]
        index = _read(memory_fs, "/kb/index.md")
        assert "[guide](/guide.md) and [setup](/docs/setup.md#install)" in index
        assert "[site](https://example.com/guide.md)" in index
        assert "[index](/index.md). Jump to [top](#guide)" in _read(memory_fs, "/kb/guide.md")
        assert "[guide](/guide.md)" in _read(memory_fs, "/kb/docs/setup.md")

    def test_absolute_then_relative_restores_tree(
        self, memory_fs: InMemoryFileSystem, engine_options: EngineOptions
    ) -> None:
        """Test that converting there and back reproduces every byte."""
        before = memory_fs.snapshot()

        update_link_style(memory_fs, engine_options, LinkStyle.ABSOLUTE)
        result = update_link_style(memory_fs, engine_options, LinkStyle.RELATIVE)

        assert result.committed
        assert result.rewritten_links == 4
        assert memory_fs.snapshot() == before

    def test_auto_keeps_dominant_style(self, engine_options: EngineOptions) -> None:
        """Test that AUTO converts the minority links to the detected style."""
        fs = InMemoryFileSystem(
            {
                "/kb/a.md": "[b](/b.md) [c](/c.md) [d](d.md)",
                "/kb/b.md": "",
                "/kb/c.md": "",
                "/kb/d.md": "",
            }
        )

        result = update_link_style(fs, engine_options, LinkStyle.AUTO)

        assert result.rewritten_links == 1
        assert _read(fs, "/kb/a.md") == "[b](/b.md) [c](/c.md) [d](/d.md)"

    def test_target_outside_doc_root_reported(self) -> None:
        """Test that a link with no absolute form is left alone and reported."""
        fs = InMemoryFileSystem(
            {
                "/kb/site/page.md": "[o](../other.md) [p](sub/p.md)",
                "/kb/site/sub/p.md": "",
                "/kb/other.md": "",
            }
        )
        options = EngineOptions(root=Path("/kb"), doc_root=Path("/kb/site"))

        result = update_link_style(fs, options, LinkStyle.ABSOLUTE)

        assert result.committed
        assert _read(fs, "/kb/site/page.md") == "[o](../other.md) [p](/sub/p.md)"
        assert len(result.link_issues) == 1
        assert result.link_issues[0].raw_target == "../other.md"
        assert "outside the document root" in result.link_issues[0].reason

    def test_dry_run_leaves_tree_untouched(
        self, memory_fs: InMemoryFileSystem, engine_options: EngineOptions
    ) -> None:
        """Test that a dry run reports the conversion without writing."""
        before = memory_fs.snapshot()

        result = update_link_style(
            memory_fs, replace(engine_options, dry_run=True), LinkStyle.ABSOLUTE
        )

        assert result.committed
        assert result.rewritten_links == 4
        assert memory_fs.snapshot() == before

    def test_write_failure_rolls_back_every_document(
        self, sample_kb: dict[str, str], engine_options: EngineOptions
    ) -> None:
        """Test that one failing document undoes the whole conversion."""

        class FailingSetupWrites(InMemoryFileSystem):
            def write_file(self, path: Path, content: bytes) -> None:
                if Path(path).name.startswith("setup.md"):
                    raise OSError(errno.EROFS, "Read-only file system", str(path))
                super().write_file(path, content)

        fs = FailingSetupWrites(sample_kb)
        before = fs.snapshot()

        result = update_link_style(fs, engine_options, LinkStyle.ABSOLUTE)

        assert not result.committed
        assert result.error is not None
        assert result.error.cause.errno == errno.EROFS
        assert result.rewritten_links == 0
        assert fs.snapshot() == before
