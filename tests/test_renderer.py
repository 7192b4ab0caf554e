"""
Unit tests for the render/restore engine.
"""

from pagelingo.documents import (
    BILINGUAL_CLASS,
    FAILED_ATTR,
    TRANSLATED_CLASS,
    HtmlDocument,
)
from pagelingo.renderer import (
    RenderEngine,
    detect_language,
    assign_to_first,
    keep_surrounding_whitespace,
    plain_text,
    sanitize_html,
)
from pagelingo.segmenter import ContentSegmenter
from pagelingo.structures import (
    DocumentState,
    ParagraphUnit,
    RenderMode,
    TextUnit,
    TranslationResult,
)

PAGE = """<html><body><article>
<h1 id="title">Hello <em>brave</em> world</h1>
<p class="lead" data-x="1">  First paragraph text.  </p>
<p>Second <a href="/more">paragraph link text that is long.</a> tail.</p>
</article></body></html>"""

TRANSLATIONS = ["Hola valiente mundo", "Primer parrafo.", "Segundo parrafo con enlace. cola."]


def _setup():
    document = HtmlDocument(PAGE)
    units = ContentSegmenter(document, detect_main_content=False).segment()
    return document, units, RenderEngine(document)


def _results(units, translations=TRANSLATIONS, failed=()):
    return [
        TranslationResult(
            unit_id=unit.unit_id,
            original_text=unit.combined_text,
            translated_text=unit.combined_text if index in failed else translation,
            success=index not in failed,
            error="backend down" if index in failed else None,
            index=index,
        )
        for index, (unit, translation) in enumerate(zip(units, translations))
    ]


class TestHelpers:
    """Tests for the module-level helpers."""

    def test_assign_to_first(self):
        assert assign_to_first("whole", 1) == ["whole"]
        assert assign_to_first("Hola mundo", 3) == ["Hola mundo", "", ""]
        assert assign_to_first("x", 0) == []

    def test_plain_text(self):
        assert plain_text("Hola mundo") == "Hola mundo"
        assert plain_text("<b>Hola</b>\n  <i>mundo</i>") == "Hola mundo"

    def test_keep_surrounding_whitespace(self):
        assert keep_surrounding_whitespace("  a b \n", " x ") == "  x \n"
        assert keep_surrounding_whitespace(" world", "") == " "
        assert keep_surrounding_whitespace("brave", "") == ""

    def test_sanitize_html(self):
        cleaned = sanitize_html(
            '<a href="javascript:alert(1)" onclick="steal()">t</a>'
            '<img src="data:abc"><iframe src="/x"></iframe><b>ok</b>'
        )
        assert "onclick" not in cleaned
        assert "javascript:" not in cleaned
        assert "data:abc" not in cleaned
        assert "iframe" not in cleaned
        assert "<b>ok</b>" in cleaned

    def test_detect_language(self):
        assert detect_language("你好") == "zh"
        assert detect_language("こんにちは") == "ja"
        assert detect_language("안녕하세요") == "ko"
        assert detect_language("Привет") == "ru"
        assert detect_language("Hello") == "en"


class TestReplaceMode:
    """Tests for replace rendering and its restoration."""

    def test_segmented_units(self):
        _, units, _ = _setup()
        assert [unit.combined_text for unit in units] == [
            "Hello brave world",
            "First paragraph text.",
            "Second paragraph link text that is long. tail.",
        ]

    def test_render_then_restore_is_exact(self):
        document, units, engine = _setup()
        original = document.serialize()

        applied = engine.render(_results(units), units, RenderMode.REPLACE, "es")

        assert applied == 3
        assert engine.state is DocumentState.REPLACED
        lead = document.soup.find("p", class_="lead")
        assert lead.string == "  Primer parrafo.  "
        assert "Hello" not in document.soup.h1.get_text()

        assert engine.restore() == 7
        assert document.serialize() == original
        assert engine.state is DocumentState.CLEAN
        assert engine.restore() == 0

    def test_rendering_twice_keeps_first_snapshot(self):
        document, units, engine = _setup()
        original = document.serialize()

        engine.render(_results(units), units, "replace", "es")
        engine.render(_results(units, ["A b c", "Otra.", "Mas."]), units, "replace", "es")

        assert document.soup.find("p", class_="lead").string == "  Otra.  "
        engine.restore()
        assert document.serialize() == original

    def test_split_paragraph_gets_one_copy_of_the_translation(self):
        document = HtmlDocument(
            "<html><body><p>ab <b>cd</b> some much longer tail text here</p></body></html>"
        )
        original = document.serialize()
        units = ContentSegmenter(document, detect_main_content=False).segment()
        engine = RenderEngine(document)

        engine.render(_results(units, ["Hola"]), units, "replace", "es")

        paragraph = document.soup.p
        assert paragraph.get_text().count("Hola") == 1
        assert paragraph.get_text().split() == ["Hola"]
        assert paragraph.b.get_text() == ""
        engine.restore()
        assert document.serialize() == original

    def test_markup_in_translation_is_written_as_text(self):
        document, units, engine = _setup()
        translations = ["<b>Hola</b>  <i>mundo</i>", "Uno.", "Dos."]

        engine.render(_results(units, translations), units, "replace", "es")

        heading = document.soup.h1
        assert heading.find("b") is None
        assert heading.get_text().split() == ["Hola", "mundo"]
        assert "<b>" not in heading.get_text()

    def test_failed_unit_gets_indicator_and_is_restored(self):
        document, units, engine = _setup()
        original = document.serialize()

        engine.render(_results(units, failed={2}), units, "replace", "es")

        failed_container = units[2].container_anchor
        assert failed_container[FAILED_ATTR] == "backend down"
        assert "Second" in failed_container.get_text()
        stats = engine.get_stats()
        assert stats["failed_count"] == 1
        assert stats["translated_count"] == 2

        engine.restore()
        assert document.serialize() == original

    def test_detached_anchor_is_skipped(self):
        document, units, engine = _setup()
        units[1].container_anchor.extract()

        applied = engine.render(_results(units), units, "replace", "es")

        assert applied == 2
        assert engine.get_stats()["skipped_count"] == 1

    def test_short_link_container_is_skipped(self):
        document = HtmlDocument('<html><body><p><a href="/">Home page</a></p></body></html>')
        anchor = document.soup.a.string
        unit = ParagraphUnit(
            unit_id="p",
            container_anchor=document.soup.p,
            text_units=[TextUnit("p/t0", str(anchor), "Home page", anchor)],
            combined_text="Home page",
            priority=10,
            document_order=0,
        )
        engine = RenderEngine(document)

        applied = engine.render(
            [TranslationResult("p", "Home page", "Inicio", True)], [unit], "replace"
        )

        assert applied == 0
        assert document.soup.a.string == "Home page"

    def test_sweep_forgets_detached_records(self):
        document, units, engine = _setup()
        engine.render(_results(units), units, "replace", "es")
        before = len(engine.records)

        units[1].container_anchor.extract()

        assert engine.sweep() == 1
        assert len(engine.records) == before - 1

    def test_render_sweeps_records_of_removed_content(self):
        document, units, engine = _setup()
        engine.render(_results(units), units, "replace", "es")
        before = len(engine.records)

        units[1].container_anchor.extract()
        engine.render(_results(units[:1]), units[:1], "replace", "es")

        assert len(engine.records) == before - 1
        assert engine.restore() == before - 1


class TestBilingualMode:
    """Tests for bilingual rendering, the view toggle and restoration."""

    def test_render_appends_translation_blocks(self):
        document, units, engine = _setup()
        original = document.serialize()

        engine.render(_results(units), units, RenderMode.BILINGUAL, "es")

        lead = document.soup.find("p", class_="lead")
        assert BILINGUAL_CLASS in lead["class"]
        assert lead["data-original-lang"] == "en"
        assert lead["data-translated-lang"] == "es"
        assert lead["role"] == "group"
        block = lead.find("div", class_=TRANSLATED_CLASS)
        assert block.get_text() == "Primer parrafo."
        assert block["lang"] == "es"
        assert "  First paragraph text.  " in lead.decode_contents()

        stats = engine.get_stats()
        assert stats["state"] == "bilingual"
        assert stats["mode"] == "paragraph-bilingual"
        assert stats["container_count"] == 3

        engine.restore()
        assert document.serialize() == original

    def test_second_render_does_not_mutate(self):
        document, units, engine = _setup()
        engine.render(_results(units), units, "bilingual", "es")
        once = document.serialize()

        engine.render(_results(units), units, "bilingual", "es")

        assert document.serialize() == once
        assert len(document.soup.find_all(class_=TRANSLATED_CLASS)) == 3

    def test_translated_containers_are_not_segmented_again(self):
        document, units, engine = _setup()
        engine.render(_results(units), units, "bilingual", "es")

        again = ContentSegmenter(document, detect_main_content=False).segment()

        assert again == []

    def test_html_translation_is_sanitized(self):
        document, units, engine = _setup()
        translations = ["<b>Hola</b><script>alert(1)</script>", "Uno.", "Dos."]

        engine.render(_results(units, translations), units, "bilingual", "es")

        block = document.soup.h1.find("div", class_=TRANSLATED_CLASS)
        assert block.b.string == "Hola"
        assert block.find("script") is None

    def test_original_only_toggle(self):
        document, units, engine = _setup()
        engine.render(_results(units), units, "bilingual", "es")
        blocks = document.soup.find_all("div", class_=TRANSLATED_CLASS)
        records_before = dict(engine.records)

        assert engine.show_original_only()
        assert all(block.has_attr("hidden") for block in blocks)
        assert engine.records == records_before

        assert engine.show_bilingual()
        assert not any(block.has_attr("hidden") for block in blocks)

    def test_toggle_is_refused_outside_bilingual_mode(self):
        _, units, engine = _setup()
        engine.render(_results(units), units, "replace", "es")
        assert not engine.show_original_only()

    def test_switching_modes_restores_first(self):
        document, units, engine = _setup()
        original = document.serialize()

        engine.render(_results(units), units, "replace", "es")
        engine.render(_results(units), units, "bilingual", "es")

        assert "First paragraph text." in document.soup.find("p", class_="lead").get_text()
        assert engine.state is DocumentState.BILINGUAL
        engine.restore()
        assert document.serialize() == original

    def test_residual_markers_are_cleaned(self):
        document = HtmlDocument(
            '<html><body><div class="pl-paragraph-bilingual" role="group" '
            'data-original-lang="en">Hi<div class="pl-paragraph-translated">Hola</div>'
            "</div></body></html>"
        )
        engine = RenderEngine(document)

        assert engine.cleanup_residual_markers() == 2
        assert document.serialize() == "<html><body><div>Hi</div></body></html>"
