"""
Unit tests for content segmentation and main-content detection.
"""

from pagelingo.documents import HtmlDocument
from pagelingo.segmenter import (
    ContentSegmenter,
    find_main_content,
    has_significant_text,
    paragraph_priority,
    score_candidate,
)

from conftest import LONG_SENTENCE

FILTER_PAGE = """<html><body>
<h2>Section title</h2>
<p>Paragraph text here.</p>
<ul><li>List entry one</li></ul>
<p>12345</p>
<p><a href="/x">Read more</a></p>
<p><a href="/y">This link sentence is long enough to keep.</a></p>
<script>var hidden = "script text";</script>
<div class="notranslate">Do not touch this</div>
<p translate="no">Nor this one</p>
<pre>code block here</pre>
<p contenteditable="true">Editable text</p>
<button>Click me now</button>
<p class="custom-skip">Custom skipped</p>
<p>中</p>
<p>x</p>
</body></html>"""


def _texts(units):
    return [unit.combined_text for unit in units]


class TestTextFilters:
    """Tests for the text-level predicates."""

    def test_significant_text(self):
        assert has_significant_text("Hello")
        assert has_significant_text(" 中 ")
        assert not has_significant_text("   ")
        assert not has_significant_text("x")
        assert not has_significant_text("12 345 !!")

    def test_priorities(self):
        document = HtmlDocument("<h1>a</h1><h6>b</h6><p>c</p><td>d</td><span>e</span>")
        tags = document.soup.find_all(True)
        assert [paragraph_priority(tag) for tag in tags] == [1, 6, 10, 15, 20]


class TestSegment:
    """Tests for ContentSegmenter.segment()."""

    def test_navigation_is_skipped_and_article_paragraphs_kept(self, article_document):
        units = ContentSegmenter(article_document).segment()

        assert len(units) == 2
        assert [unit.container_anchor.name for unit in units] == ["p", "p"]
        assert all(unit.container_anchor.find_parent("article") for unit in units)
        assert units[0].document_order < units[1].document_order
        assert units[1].combined_text.endswith("It keeps going with emphasis inside.")
        assert len(units[1].text_units) == 3

    def test_filters_and_priority_order(self):
        document = HtmlDocument(FILTER_PAGE)
        segmenter = ContentSegmenter(document, detect_main_content=False)

        units = segmenter.segment(exclude_rules=[".custom-skip", "[[invalid"])

        assert _texts(units) == [
            "Section title",
            "Paragraph text here.",
            "This link sentence is long enough to keep.",
            "中",
            "List entry one",
        ]
        assert [unit.priority for unit in units] == [2, 10, 10, 10, 15]

    def test_large_groups_are_chunked(self):
        spans = " ".join(f"<span>word{index}</span>" for index in range(10))
        document = HtmlDocument(f"<html><body><p>{spans}</p></body></html>")

        units = ContentSegmenter(document, detect_main_content=False).segment()

        assert [unit.unit_id for unit in units] == ["p-chunk-0", "p-chunk-1"]
        assert [len(unit.text_units) for unit in units] == [8, 2]
        assert units[0].combined_text.startswith("word0 word1")

    def test_text_unit_ids_are_unique(self, article_document):
        units = ContentSegmenter(article_document).segment()
        ids = [text_unit.unit_id for unit in units for text_unit in unit.text_units]
        assert len(ids) == len(set(ids))

    def test_results_are_cached_until_generation_changes(self, article_document):
        segmenter = ContentSegmenter(article_document)

        first = segmenter.segment()
        second = segmenter.segment()
        assert first[0] is second[0]

        article_document.mark_changed()
        third = segmenter.segment()
        assert third[0] is not first[0]
        assert _texts(third) == _texts(first)

    def test_walker_is_restartable(self, article_document):
        walker = article_document.walker().filtered(lambda node: bool(node.strip()))
        assert list(walker) == list(walker)


class TestMainContent:
    """Tests for find_main_content() and score_candidate()."""

    def test_semantic_selector_wins(self, article_document):
        main = find_main_content(article_document.root)
        assert main is not None and main.name == "article"

    def test_density_scoring_picks_story(self):
        links = " ".join(f'<a href="/{index}">link{index}</a>' for index in range(20))
        page = (
            "<html><body>"
            f'<div class="links">{links}</div>'
            f'<div id="story"><h2>Title</h2><p>{LONG_SENTENCE}</p>'
            f"<p>{LONG_SENTENCE}</p><p>{LONG_SENTENCE}</p></div>"
            "</body></html>"
        )
        document = HtmlDocument(page)

        main = find_main_content(document.root)

        assert main is not None and main.get("id") == "story"

    def test_link_density_penalty(self):
        paragraphs = "".join(f"<p>{LONG_SENTENCE}</p>" for _ in range(3))
        plain = HtmlDocument(f"<div>{paragraphs}</div>").soup.div
        linked = HtmlDocument(
            "<div>" + paragraphs + '<a href="#">go</a>' * 8 + "</div>"
        ).soup.div

        assert score_candidate(plain) == 3
        assert score_candidate(linked) == 0

    def test_no_main_content_when_nothing_scores(self):
        document = HtmlDocument("<html><body><div>short</div></body></html>")
        assert find_main_content(document.root) is None
