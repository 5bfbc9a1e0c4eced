"""
Parse targets: the sinks a vetted document is parsed into.

The caller picks the shape of the result by picking the target:

- ElementTreeTarget builds a new read-only ``xml.etree.ElementTree.Element``.
- XmlDocument is a caller-owned mutable document that is populated in place
  and can be queried, validated against its internal DTD, and serialized.

Every target parses with entity substitution and network access disabled,
even though the scanner has already refused entity-bearing text. A target
signals bad syntax with MalformedDocument and never returns a partial tree.
"""

import logging
import xml.etree.ElementTree as ET
from typing import List, Optional, Union
from xml.sax.saxutils import escape

import defusedxml.ElementTree as _safe_ET
from defusedxml import EntitiesForbidden, ExternalReferenceForbidden
from lxml import etree
from lxml import html as lxml_html

from .encoding import with_utf8_declaration
from .errors import EntityDeclarationDetected, MalformedDocument
from .models import HtmlOptions

logger = logging.getLogger(__name__)


class ParseTarget:
    """Sink interface used by the scan entry points."""

    def load_xml(self, text: str):
        """Parse XML text and return the populated result."""
        raise NotImplementedError

    def load_html(self, text: str, options: Optional[HtmlOptions] = None):
        """Parse HTML text and return the populated result."""
        raise NotImplementedError(f"{type(self).__name__} does not parse HTML")


class ElementTreeTarget(ParseTarget):
    """Produces a new lightweight ElementTree element per call."""

    def load_xml(self, text: str) -> ET.Element:
        try:
            return _safe_ET.fromstring(
                text,
                forbid_dtd=False,
                forbid_entities=True,
                forbid_external=True,
            )
        except (EntitiesForbidden, ExternalReferenceForbidden) as e:
            logger.error("Parser refused an entity after a clean scan: %s", e)
            raise EntityDeclarationDetected() from e
        except ET.ParseError as e:
            raise MalformedDocument(str(e)) from e


def _xml_parser() -> etree.XMLParser:
    # The text is always handed over as UTF-8 bytes: the encoding override
    # keeps a stale encoding="..." declaration from re-decoding it.
    return etree.XMLParser(
        encoding='utf-8',
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        dtd_validation=False,
        huge_tree=False,
    )


def _html_parser(options: HtmlOptions) -> etree.HTMLParser:
    return etree.HTMLParser(
        no_network=True,
        default_doctype=not options.no_default_dtd,
    )


class XmlDocument(ParseTarget):
    """Caller-owned document populated in place.

    The caller keeps the object across calls and inspects it afterwards.
    A failed load leaves the previous content untouched.
    """

    def __init__(self):
        self._tree: Optional[etree._ElementTree] = None
        self._fragments: List[Union[etree._Element, str]] = []
        self.is_html: bool = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_xml(self, text: str) -> 'XmlDocument':
        try:
            root = etree.fromstring(with_utf8_declaration(text).encode('utf-8'), _xml_parser())
        except etree.XMLSyntaxError as e:
            raise MalformedDocument(str(e)) from e
        tree = root.getroottree()

        dtd = tree.docinfo.internalDTD
        if dtd is not None and any(True for _ in dtd.iterentities()):
            logger.error("Parsed internal subset declares entities after a clean scan")
            raise EntityDeclarationDetected()

        self._tree = tree
        self._fragments = []
        self.is_html = False
        return self

    def load_html(self, text: str, options: Optional[HtmlOptions] = None) -> 'XmlDocument':
        """Parse HTML as a full document, or as a fragment when
        ``options.no_implied`` is set (no ``<html>``/``<body>`` added)."""
        options = options or HtmlOptions()
        if not text.strip():
            raise MalformedDocument("Document is empty")
        parser = _html_parser(options)
        try:
            if options.no_implied:
                fragments = lxml_html.fragments_fromstring(text, parser=parser)
                tree = None
            else:
                fragments = []
                tree = lxml_html.document_fromstring(text, parser=parser).getroottree()
        except (etree.ParserError, etree.XMLSyntaxError) as e:
            raise MalformedDocument(str(e)) from e

        self._tree = tree
        self._fragments = fragments
        self.is_html = True
        return self

    def clear(self) -> None:
        self._tree = None
        self._fragments = []
        self.is_html = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        return self._tree is not None or bool(self._fragments)

    @property
    def root(self) -> Optional[etree._Element]:
        """Document element, or the first element of an HTML fragment."""
        if self._tree is not None:
            return self._tree.getroot()
        for fragment in self._fragments:
            if not isinstance(fragment, str):
                return fragment
        return None

    def _elements(self) -> List[etree._Element]:
        if self._tree is not None:
            return [self._tree.getroot()]
        return [f for f in self._fragments if not isinstance(f, str)]

    def get_elements_by_tag_name(self, tag: str) -> List[etree._Element]:
        found = []
        for element in self._elements():
            found.extend(element.iter(tag))
        return found

    def validate(self) -> bool:
        """Validate against the document's internal DTD.

        Returns False when nothing is loaded or no internal subset exists.
        """
        if self._tree is None:
            return False
        dtd = self._tree.docinfo.internalDTD
        if dtd is None:
            return False
        return dtd.validate(self._tree)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def save_xml(self) -> str:
        if self._tree is None:
            raise ValueError("No XML document loaded")
        return etree.tostring(self._tree, encoding='unicode')

    def save_html(self) -> str:
        if self._tree is not None:
            return etree.tostring(self._tree, method='html', encoding='unicode')
        if not self._fragments:
            raise ValueError("No HTML document loaded")
        parts = []
        for fragment in self._fragments:
            if isinstance(fragment, str):
                parts.append(escape(fragment))
            else:
                parts.append(etree.tostring(fragment, method='html', encoding='unicode'))
        return ''.join(parts)
