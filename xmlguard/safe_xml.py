"""
Safe XML parsing: scan first, parse second.

Every entry point runs the same protocol:

1. Decode the raw document once (str passes through).
2. Scan the text for entity declarations in a DOCTYPE internal subset.
   Any hit raises EntityDeclarationDetected and nothing is parsed.
3. Hand the same text to a parse target configured with entity
   substitution and network access disabled.
4. Return the target's result, or False when the text is not well-formed.

Blocks:
- External entity injection (XXE): file:///etc/passwd, http:// callbacks
- Billion laughs / entity expansion: nested internal entities
- Remote DTD retrieval through parameter entities

No state survives a call: a document that passed once is scanned again the
next time it is seen.
"""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional, Union

from .encoding import decode_document
from .errors import EntityDeclarationDetected, InvalidDocumentEncoding, MalformedDocument
from .models import Dialect, HtmlOptions, ParseOptions, ScanVerdict
from .scanner import find_entity_declaration
from .targets import ElementTreeTarget, ParseTarget, XmlDocument

logger = logging.getLogger(__name__)

# Maximum document size read from disk (50 MB), prevents memory exhaustion
MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024

RawDocument = Union[str, bytes]


def _vet(document: RawDocument, html: bool = False, encoding: Optional[str] = None) -> str:
    """Decode and scan; return the text the parser may see."""
    text = decode_document(document, encoding)
    offset = find_entity_declaration(text, html)
    if offset != -1:
        logger.warning("Rejected document: entity declaration at offset %d", offset)
        raise EntityDeclarationDetected(offset=offset)
    return text


def _read_document(path: Union[str, Path]) -> bytes:
    """Read a whole file, enforcing the size limit before reading."""
    path = Path(path)
    file_size = path.stat().st_size
    if file_size > MAX_FILE_SIZE_BYTES:
        raise ValueError(
            f"XML file exceeds maximum size "
            f"({file_size / 1024 / 1024:.1f} MB > "
            f"{MAX_FILE_SIZE_BYTES / 1024 / 1024:.0f} MB limit)"
        )
    return path.read_bytes()


def scan_verdict(document: RawDocument, dialect: Dialect = Dialect.XML,
                 encoding: Optional[str] = None) -> ScanVerdict:
    """Return the scan verdict without parsing.

    Bytes whose encoding cannot be established are UNSAFE: they cannot be
    vetted. ``Dialect.HTML`` applies the stricter HTML rules of the scanner.
    """
    try:
        text = decode_document(document, encoding)
    except InvalidDocumentEncoding as e:
        logger.warning("Unverifiable document encoding: %s", e)
        return ScanVerdict.UNSAFE
    html = dialect == Dialect.HTML
    return ScanVerdict.from_detection(find_entity_declaration(text, html) != -1)


def scan(document: RawDocument, sink: Optional[ParseTarget] = None,
         encoding: Optional[str] = None):
    """Scan a document and parse it into ``sink``.

    Without a sink a new ElementTree element is returned. With a sink (for
    example an XmlDocument) the sink is populated in place and returned;
    the caller keeps ownership.

    Returns:
        The parsed result, or False when the text is not well-formed.

    Raises:
        EntityDeclarationDetected: The document declares an entity.
        InvalidDocumentEncoding: Raw bytes with an ambiguous encoding.
    """
    text = _vet(document, encoding=encoding)
    target = sink if sink is not None else ElementTreeTarget()
    try:
        return target.load_xml(text)
    except MalformedDocument as e:
        logger.debug("Document is not well-formed: %s", e)
        return False


def scan_html(html: RawDocument, sink: ParseTarget, options: Optional[HtmlOptions] = None,
              encoding: Optional[str] = None):
    """Scan HTML markup and parse it into ``sink``.

    ``options.no_implied`` keeps the markup a fragment and
    ``options.no_default_dtd`` suppresses the implied doctype. HTML bytes in
    a legacy charset need ``encoding``; nothing sniffs <meta charset>.
    """
    text = _vet(html, html=True, encoding=encoding)
    try:
        return sink.load_html(text, options or HtmlOptions())
    except MalformedDocument as e:
        logger.debug("HTML could not be parsed: %s", e)
        return False


def scan_file(path: Union[str, Path], sink: Optional[ParseTarget] = None):
    """Read a file completely, then behave as :func:`scan`.

    Raises:
        FileNotFoundError / OSError: The file cannot be read (before any scan).
        ValueError: The file exceeds MAX_FILE_SIZE_BYTES.
    """
    return scan(_read_document(path), sink)


def safe_fromstring(text: RawDocument) -> ET.Element:
    """Scan and parse an XML string into a standard Element.

    Unlike :func:`scan`, bad syntax raises MalformedDocument.
    """
    return ElementTreeTarget().load_xml(_vet(text))


def safe_parse(source: Union[str, Path]) -> ET.ElementTree:
    """Scan and parse an XML file into a standard ElementTree."""
    return ET.ElementTree(safe_fromstring(_read_document(source)))


def scan_document(document: RawDocument, options: Optional[ParseOptions] = None,
                  sink: Optional[ParseTarget] = None, encoding: Optional[str] = None):
    """Dispatch on ``options.dialect``.

    HTML always needs a document sink; a fresh XmlDocument is used when the
    caller supplies none.
    """
    options = options or ParseOptions()
    if options.is_html:
        return scan_html(document, sink if sink is not None else XmlDocument(), options.html,
                         encoding)
    return scan(document, sink, encoding)
