"""
xmlguard - refuse XML that declares entities before any parser expands them.

This package provides tools to:
- Detect <!ENTITY> declarations in a DOCTYPE internal subset lexically
- Parse vetted XML into an ElementTree element or a caller-owned document
- Parse vetted HTML with optional fragment / no-doctype handling
- Decode raw bytes consistently so scanner and parser see the same text
"""

from .encoding import (
    decode_document,
    detect_bom_encoding,
    detect_xml_encoding,
    with_utf8_declaration,
)
from .errors import (
    EntityDeclarationDetected,
    InvalidDocumentEncoding,
    MalformedDocument,
    XmlSecurityError,
)
from .models import Dialect, HtmlOptions, ParseOptions, ScanVerdict
from .safe_xml import (
    MAX_FILE_SIZE_BYTES,
    safe_fromstring,
    safe_parse,
    scan,
    scan_document,
    scan_file,
    scan_html,
    scan_verdict,
)
from .scanner import contains_entity_declaration, find_entity_declaration
from .targets import ElementTreeTarget, ParseTarget, XmlDocument

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",

    # Errors
    "XmlSecurityError",
    "EntityDeclarationDetected",
    "InvalidDocumentEncoding",
    "MalformedDocument",

    # Models
    "ScanVerdict",
    "Dialect",
    "HtmlOptions",
    "ParseOptions",

    # Scanner
    "contains_entity_declaration",
    "find_entity_declaration",

    # Encoding
    "decode_document",
    "detect_bom_encoding",
    "detect_xml_encoding",
    "with_utf8_declaration",

    # Targets
    "ParseTarget",
    "ElementTreeTarget",
    "XmlDocument",

    # Safe parsing
    "MAX_FILE_SIZE_BYTES",
    "scan",
    "scan_document",
    "scan_html",
    "scan_file",
    "scan_verdict",
    "safe_fromstring",
    "safe_parse",
]
