"""
Raw document decoding.

Bytes are decoded exactly once, and the scanner and the parser both work on
that one decoded text. A UTF-16 or UTF-32 document therefore cannot hide an
entity declaration from a byte-level comparison, and the parser never
re-decodes the bytes differently from the scanner.
"""

import codecs
import re
from typing import Optional, Union

from .errors import InvalidDocumentEncoding

# Longest BOMs first: the UTF-32 LE mark starts with the UTF-16 LE mark
_BOMS = (
    (codecs.BOM_UTF32_BE, 'utf-32-be'),
    (codecs.BOM_UTF32_LE, 'utf-32-le'),
    (codecs.BOM_UTF8, 'utf-8'),
    (codecs.BOM_UTF16_BE, 'utf-16-be'),
    (codecs.BOM_UTF16_LE, 'utf-16-le'),
)

# A leading '<' in each multibyte encoding, without BOM
_SIGNATURES = (
    (b'\x00\x00\x00<', 'utf-32-be'),
    (b'<\x00\x00\x00', 'utf-32-le'),
    (b'\x00<', 'utf-16-be'),
    (b'<\x00', 'utf-16-le'),
)

_DECLARATION_RE = re.compile(
    r"""^\s*<\?xml\s[^>]*?\bencoding\s*=\s*(["'])([A-Za-z][A-Za-z0-9._\-]*)\1"""
)

# The XML declaration never exceeds this many characters in practice
_SNIFF_CHARS = 256


def detect_bom_encoding(data: bytes) -> Optional[str]:
    """Return the encoding named by a leading byte-order mark, if any."""
    for bom, encoding in _BOMS:
        if data.startswith(bom):
            return encoding
    return None


def _bom_length(data: bytes) -> int:
    for bom, _ in _BOMS:
        if data.startswith(bom):
            return len(bom)
    return 0


def _signature_encoding(data: bytes) -> Optional[str]:
    for signature, encoding in _SIGNATURES:
        if data.startswith(signature):
            return encoding
    return None


def detect_xml_encoding(data: bytes) -> Optional[str]:
    """Return the encoding declared in the XML declaration, if any.

    The declaration is read in the encoding family implied by the BOM or by
    the byte pattern of a leading '<', falling back to an ASCII-compatible read.
    """
    family = detect_bom_encoding(data) or _signature_encoding(data) or 'latin-1'
    width = 4 if family.startswith('utf-32') else 2 if family.startswith('utf-16') else 1
    head = data[_bom_length(data):_bom_length(data) + _SNIFF_CHARS * width]
    head = head[:len(head) - len(head) % width]
    match = _DECLARATION_RE.match(head.decode(family, errors='replace'))
    return match.group(2) if match else None


def _canonical_name(encoding: str) -> str:
    try:
        return codecs.lookup(encoding).name
    except LookupError:
        raise InvalidDocumentEncoding(f"Unknown document encoding: '{encoding}'")


def _unicode_family(encoding: str) -> str:
    for prefix in ('utf-32', 'utf-16', 'utf-8'):
        if encoding.startswith(prefix):
            return prefix
    return encoding


def _is_compatible(family: Optional[str], declared: str) -> bool:
    """Check a declared encoding against what the raw bytes show."""
    if family is None:
        if _unicode_family(declared) == 'utf-8':
            return True
        # No BOM or multibyte pattern: the declaration must be ASCII-compatible
        try:
            return '<?xml'.encode(declared) == b'<?xml'
        except (UnicodeError, LookupError):
            return False
    if declared.endswith(('-le', '-be')):
        return declared == family
    return _unicode_family(declared) == _unicode_family(family)


def decode_document(data: Union[str, bytes], encoding: Optional[str] = None) -> str:
    """Decode a raw document to text, refusing ambiguous encodings.

    str input passes through (minus a leading U+FEFF). bytes are decoded by
    BOM, then by multibyte signature, then by the caller's ``encoding``, then
    by the XML declaration, then as UTF-8. Legacy single-byte charsets
    (windows-1252 HTML, say) therefore need either a declaration or an
    explicit ``encoding``.

    Raises:
        InvalidDocumentEncoding: BOM, declaration and ``encoding`` disagree,
            an encoding name is unknown, or the bytes do not decode.
        TypeError: For anything other than str or bytes.
    """
    if isinstance(data, str):
        return data[1:] if data.startswith('\ufeff') else data
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f"Expected str or bytes, got {type(data).__name__}")
    data = bytes(data)

    family = detect_bom_encoding(data) or _signature_encoding(data)
    declared = detect_xml_encoding(data)
    canonical = _canonical_name(declared) if declared else None
    chosen = _canonical_name(encoding) if encoding else None

    if chosen:
        if family and not _is_compatible(family, chosen):
            raise InvalidDocumentEncoding(
                f"Requested encoding '{encoding}' does not match the document bytes ({family})"
            )
        if canonical and _unicode_family(canonical) != _unicode_family(chosen):
            raise InvalidDocumentEncoding(
                f"Requested encoding '{encoding}' contradicts the declared '{declared}'"
            )
    elif canonical and not _is_compatible(family, canonical):
        raise InvalidDocumentEncoding(
            f"Declared encoding '{declared}' does not match the document bytes "
            f"({family or 'ASCII-compatible'})"
        )

    encoding = family or chosen or canonical or 'utf-8'
    try:
        return data[_bom_length(data):].decode(encoding)
    except UnicodeDecodeError as e:
        raise InvalidDocumentEncoding(f"Document is not valid {encoding}: {e.reason}") from e


_DECLARED_ENCODING_RE = re.compile(
    r"""^(\s*<\?xml\s[^>]*?\bencoding\s*=\s*)(["'])[^"']*\2"""
)


def with_utf8_declaration(text: str) -> str:
    """Rewrite the XML declaration's encoding to UTF-8.

    Used when decoded text is re-encoded as UTF-8 for a byte-oriented parser,
    so the declaration cannot ask the parser to decode it a second time.
    """
    return _DECLARED_ENCODING_RE.sub(r'\1\2UTF-8\2', text, count=1)
