"""
Tests for markdown output, article listing and cleanup.
"""

import json
import os
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from article_extractor.errors import ErrorCode, PipelineError
from article_extractor.markdown_output import (
    ArticleWriter,
    cleanup_articles,
    find_articles,
    generate_safe_filename,
    html_to_markdown,
    localize_images,
    read_title,
    slugify,
    unique_path,
)
from article_extractor.models import (
    ArticleMetadata,
    ExtractedContent,
    LocalImage,
    SummarizationResult,
)


PAGE_URL = "https://news.example.com/2024/03/story.html"

DAY = 24 * 60 * 60


def make_content(title="Council Approves Transit Plan", html=None):
    html = html or (
        "<h2>Background</h2><p>The council voted <strong>7-2</strong>.</p>"
        '<img src="media/map.png" alt="Route map">'
        "<script>track();</script>"
    )
    return ExtractedContent(
        metadata=ArticleMetadata(
            source_url=PAGE_URL,
            title=title,
            author="Jane Writer",
            publish_date=datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc),
            description="What happened and why it matters.",
        ),
        html=html,
        text="The council voted 7-2.",
    )


def make_image(src, filename, feature=False, alt=None):
    return LocalImage(
        src=src,
        alt=alt,
        is_feature_image=feature,
        local_path=f"/tmp/images/{filename}",
        relative_path=f"images/{filename}",
        hash=filename,
    )


IMAGES = [
    make_image("https://cdn.example.com/feature.jpg", "001-feature.jpg", feature=True),
    make_image("https://news.example.com/2024/03/media/map.png", "002-map.png", alt="Route map"),
]

SUMMARY = SummarizationResult(summary="Council approves plan.", model="llama3.1", tokens_used=42, processing_time=1500)


def age(path: Path, days: float):
    stamp = time.time() - days * DAY
    os.utime(path, (stamp, stamp))


class TestFilenames:
    """Test filename helpers."""

    @pytest.mark.parametrize("title,expected", [
        ("Council Approves Transit Plan", "council_approves_transit_plan"),
        ("  What's next? (Part 2)  ", "what_s_next_part_2"),
        ("!!!", "article"),
    ])
    def test_slugify(self, title, expected):
        """Titles become lowercase underscore slugs."""
        assert slugify(title) == expected

    def test_slug_length_is_bounded(self):
        """Long titles are cut without a trailing underscore."""
        slug = slugify("word " * 40)

        assert len(slug) <= 50
        assert not slug.endswith("_")

    def test_generate_safe_filename(self):
        """Original and summary files are prefixed by kind."""
        assert generate_safe_filename("A Title") == "original_a_title.md"
        assert generate_safe_filename("A Title", "summarized") == "summarized_a_title.md"

    def test_unique_path(self, tmp_path):
        """Taken names get a numeric suffix."""
        (tmp_path / "original_a.md").write_text("x")
        (tmp_path / "original_a_1.md").write_text("x")

        assert unique_path(tmp_path, "original_a.md") == tmp_path / "original_a_2.md"
        assert unique_path(tmp_path, "original_b.md") == tmp_path / "original_b.md"


class TestConversion:
    """Test HTML to markdown conversion."""

    def test_localize_images(self):
        """Downloaded images are referenced by their relative path."""
        html = (
            '<img src="media/map.png" srcset="media/map-2x.png 2x">'
            '<img data-src="https://cdn.example.com/feature.jpg">'
            '<img src="https://elsewhere.example.com/x.png">'
        )

        result = localize_images(html, IMAGES, PAGE_URL)

        assert 'src="images/002-map.png"' in result
        assert "srcset" not in result
        assert 'src="images/001-feature.jpg"' in result
        assert "https://elsewhere.example.com/x.png" in result

    def test_localize_without_images(self):
        """Nothing to rewrite leaves the HTML untouched."""
        assert localize_images("<p>x</p>", [], PAGE_URL) == "<p>x</p>"

    def test_html_to_markdown(self):
        """Headings are ATX style and scripts are dropped."""
        markdown = html_to_markdown(make_content().html)

        assert "## Background" in markdown
        assert "**7-2**" in markdown
        assert "track()" not in markdown
        assert "\n\n\n" not in markdown


class TestArticleWriter:
    """Test template rendering and file output."""

    def test_render_original(self):
        """The original carries frontmatter, byline, images and the body."""
        text = ArticleWriter().render_original(make_content(), IMAGES, extracted_at="2024-03-02T10:00:00+00:00")

        frontmatter = text.split("---\n")[1]
        assert 'title: "Council Approves Transit Plan"' in frontmatter
        assert 'published: "2024-03-01T09:30:00+00:00"' in frontmatter
        assert "word_count: 4" in frontmatter
        assert "# Council Approves Transit Plan" in text
        assert "**Author**: Jane Writer | **Published**: March 1, 2024" in text
        assert "**Source**: [news.example.com](https://news.example.com/2024/03/story.html)" in text
        assert "### Featured Image\n![Featured Image](images/001-feature.jpg)" in text
        assert "![Route map](images/002-map.png)" in text
        assert "*Article extracted on 2024-03-02T10:00:00+00:00*" in text

    def test_render_original_minimal_metadata(self):
        """Missing author and date render as null without a byline."""
        content = ExtractedContent(metadata=ArticleMetadata(source_url=PAGE_URL), html="<p>Body</p>", text="Body")

        text = ArticleWriter().render_original(content, [])

        assert "author: null" in text
        assert "published: null" in text
        assert "**Author**" not in text
        assert "## Images" not in text

    def test_render_summary(self):
        """The summary links back to the original and reports model details."""
        text = ArticleWriter().render_summary(
            make_content(), SUMMARY, IMAGES, original_file="original_council.md", generated_at="now"
        )

        assert 'model: "llama3.1"' in text
        assert "tokens_used: 42" in text
        assert "# Council Approves Transit Plan - Summary" in text
        assert "![Featured](images/001-feature.jpg)" in text
        assert "Council approves plan." in text
        assert "- **Processing time**: 1.50s" in text
        assert "[📄 Read Full Article](original_council.md)" in text

    def test_write(self, tmp_path):
        """Both files land in the article directory."""
        output = ArticleWriter().write(str(tmp_path / "article"), make_content(), IMAGES, SUMMARY)

        original = Path(output.original_path)
        summary = Path(output.summary_path)
        assert original == tmp_path / "article" / "original_council_approves_transit_plan.md"
        assert summary == tmp_path / "article" / "summarized_council_approves_transit_plan.md"
        assert "(original_council_approves_transit_plan.md)" in summary.read_text()
        assert output.to_dict()["image_directory"] == str(tmp_path / "article" / "images")

    def test_write_keeps_existing_files(self, tmp_path):
        """A second write of the same title does not overwrite the first."""
        writer = ArticleWriter()
        first = writer.write(str(tmp_path), make_content())
        second = writer.write(str(tmp_path), make_content())

        assert first.summary_path is None
        assert Path(second.original_path).name == "original_council_approves_transit_plan_1.md"
        assert Path(first.original_path).exists()

    def test_write_failure(self, tmp_path):
        """Filesystem errors become FILE_SYSTEM_ERROR."""
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")

        with pytest.raises(PipelineError) as exc_info:
            ArticleWriter().write(str(blocker), make_content())

        assert exc_info.value.code == ErrorCode.FILE_SYSTEM_ERROR

    def test_custom_template_dir(self, tmp_path):
        """Templates can be replaced."""
        (tmp_path / "original.md.j2").write_text("{{ metadata.title | upper }} @ {{ metadata.source_url | hostname }}")

        text = ArticleWriter(template_dir=str(tmp_path)).render_original(make_content(), [])

        assert text == "COUNCIL APPROVES TRANSIT PLAN @ news.example.com"


class TestListing:
    """Test find_articles and read_title."""

    def test_read_title_from_frontmatter(self, tmp_path):
        """JSON-quoted frontmatter titles are decoded."""
        path = tmp_path / "original_x.md"
        path.write_text("---\ntitle: " + json.dumps('Quotes "inside"') + "\n---\n# body\n")

        assert read_title(path) == 'Quotes "inside"'

    def test_read_title_from_filename(self, tmp_path):
        """Files without frontmatter are named after their filename."""
        path = tmp_path / "summarized_budget_vote.md"
        path.write_text("# Budget\n")

        assert read_title(path) == "budget vote"

    def test_find_articles_sorting(self, tmp_path):
        """Articles sort by date, title or size and honor the limit."""
        writer = ArticleWriter()
        old = writer.write(str(tmp_path / "a"), make_content("Zebra crossing"))
        new = writer.write(str(tmp_path / "b"), make_content("Apple harvest", html="<p>" + "long " * 200 + "</p>"))
        age(Path(old.original_path), 2)
        (tmp_path / "notes.txt").write_text("ignored")

        by_date = find_articles(str(tmp_path))
        assert [a.title for a in by_date] == ["Apple harvest", "Zebra crossing"]
        assert [a.title for a in find_articles(str(tmp_path), sort="title")] == ["Apple harvest", "Zebra crossing"]
        assert find_articles(str(tmp_path), sort="size")[0].path == Path(new.original_path)
        assert len(find_articles(str(tmp_path), limit=1)) == 1

    def test_find_articles_missing_dir(self, tmp_path):
        """A missing directory has no articles."""
        assert find_articles(str(tmp_path / "missing")) == []


class TestCleanup:
    """Test cleanup_articles."""

    def make_tree(self, tmp_path):
        old_dir = tmp_path / "old-article"
        (old_dir / "images").mkdir(parents=True)
        old_md = old_dir / "original_old.md"
        old_md.write_text("old")
        old_img = old_dir / "images" / "001.jpg"
        old_img.write_bytes(b"12345")
        age(old_md, 40)
        age(old_img, 40)

        new_dir = tmp_path / "new-article"
        new_dir.mkdir()
        new_md = new_dir / "original_new.md"
        new_md.write_text("new")
        return old_dir, old_md, old_img, new_md

    def test_dry_run(self, tmp_path):
        """A dry run reports without deleting."""
        old_dir, old_md, old_img, new_md = self.make_tree(tmp_path)

        report = cleanup_articles(str(tmp_path), days=30, dry_run=True)

        assert sorted(report.files) == sorted([old_md, old_img])
        assert report.bytes_freed == 8
        assert report.dry_run
        assert old_md.exists() and old_img.exists()

    def test_cleanup_removes_old_files_and_empty_dirs(self, tmp_path):
        """Old files go, emptied directories go, recent files stay."""
        old_dir, old_md, old_img, new_md = self.make_tree(tmp_path)

        report = cleanup_articles(str(tmp_path), days=30)

        assert len(report.files) == 2
        assert not old_dir.exists()
        assert new_md.exists()
        assert tmp_path.exists()

    def test_cleanup_missing_dir(self, tmp_path):
        """A missing directory is nothing to clean."""
        report = cleanup_articles(str(tmp_path / "missing"), days=30)

        assert report.files == []
        assert report.bytes_freed == 0
