"""
Entity declaration scanner: lexical pre-filter for DOCTYPE internal subsets.

Decides whether a document declares entities without parsing it. The text is
walked once, left to right; nothing is resolved, fetched, or expanded, so a
hostile document cannot turn the scan itself into the attack it guards
against.

Detects:
- Internal general entities: <!ENTITY name "replacement"> (billion laughs)
- External entities: <!ENTITY name SYSTEM "file:///..."> (XXE)
- Parameter entities: <!ENTITY % name SYSTEM "http://..."> (remote DTD)

Ignores <!ELEMENT>, <!ATTLIST>, <!NOTATION>, comments and processing
instructions, so documents that only use DTD validation pass.

HTML parsers end comments and processing instructions differently from XML
(`--!>`, `<!-->`, a bare `>`), so in HTML mode no such boundary is trusted:
any `<!ENTITY` after a `<!DOCTYPE` counts.
"""

import re

# Fallback search once the structure can no longer be followed
_ENTITY_RE = re.compile(r"<!\s*ENTITY", re.IGNORECASE)
_DOCTYPE_RE = re.compile(r"<!\s*DOCTYPE", re.IGNORECASE)

_WHITESPACE = " \t\r\n"
_QUOTES = "\"'"


def contains_entity_declaration(text: str, html: bool = False) -> bool:
    """Return True when the document declares, or may declare, an entity.

    Ambiguous input (an unterminated internal subset or literal) counts as
    a declaration.
    """
    return find_entity_declaration(text, html) != -1


def find_entity_declaration(text: str, html: bool = False) -> int:
    """Return the offset of the first entity declaration, or -1 if none.

    When the DOCTYPE structure is malformed the offset of the DOCTYPE that
    could not be followed is returned instead. With ``html`` set, any
    ``<!ENTITY`` following a ``<!DOCTYPE`` is reported as well, wherever
    comments or processing instructions appear to put it.
    """
    if not isinstance(text, str):
        raise TypeError(f"Expected str, got {type(text).__name__}")

    found = _walk(text)
    if html:
        loose = _search_after_doctype(text)
        if loose != -1 and (found == -1 or loose < found):
            found = loose
    return found


def _search_after_doctype(text: str) -> int:
    doctype = _DOCTYPE_RE.search(text)
    if doctype is None:
        return -1
    return _search_remainder(text, doctype.end())


def _walk(text: str) -> int:
    pos = text.find('<')
    while pos != -1:
        if text.startswith('<!--', pos):
            end = text.find('-->', pos + 4)
            if end == -1:
                return _search_remainder(text, pos)
            pos = text.find('<', end + 3)
        elif text.startswith('<![CDATA[', pos):
            end = text.find(']]>', pos + 9)
            if end == -1:
                return _search_remainder(text, pos)
            pos = text.find('<', end + 3)
        elif text.startswith('<?', pos):
            end = text.find('?>', pos + 2)
            if end == -1:
                return _search_remainder(text, pos)
            pos = text.find('<', end + 2)
        elif text.startswith('<!', pos):
            keyword = _skip_whitespace(text, pos + 2)
            if _keyword_at(text, keyword, 'DOCTYPE'):
                found, resume = _scan_doctype(text, pos, keyword + 7)
                if found != -1:
                    return found
                pos = text.find('<', resume)
            else:
                pos = text.find('<', pos + 2)
        else:
            pos = text.find('<', pos + 1)
    return -1


def _skip_whitespace(text: str, pos: int) -> int:
    n = len(text)
    while pos < n and text[pos] in _WHITESPACE:
        pos += 1
    return pos


def _keyword_at(text: str, pos: int, keyword: str) -> bool:
    # Case-insensitive: HTML allows <!doctype>, and a lowercase <!entity>
    # is refused rather than trusted.
    return text[pos:pos + len(keyword)].upper() == keyword


def _search_remainder(text: str, pos: int) -> int:
    match = _ENTITY_RE.search(text, pos)
    return match.start() if match else -1


def _skip_declaration(text: str, pos: int) -> int:
    """Return the index just past a markup declaration's closing '>'.

    -1 when the declaration is unterminated or holds a '<' outside a literal.
    """
    n = len(text)
    while pos < n:
        ch = text[pos]
        if ch in _QUOTES:
            end = text.find(ch, pos + 1)
            if end == -1:
                return -1
            pos = end + 1
        elif ch == '>':
            return pos + 1
        elif ch == '<':
            return -1
        else:
            pos += 1
    return -1


def _scan_doctype(text: str, start: int, pos: int):
    """Walk a DOCTYPE header up to its internal subset or closing '>'.

    Returns (offset, resume) where offset is -1 when the declaration is
    clean and resume is where the outer walk continues.
    """
    n = len(text)
    while pos < n:
        ch = text[pos]
        if ch in _QUOTES:
            end = text.find(ch, pos + 1)
            if end == -1:
                return _search_remainder(text, start), n
            pos = end + 1
        elif ch == '[':
            return _scan_internal_subset(text, start, pos + 1)
        elif ch == '>':
            return -1, pos + 1
        else:
            pos += 1
    # Truncated header with no internal subset: nothing was declared
    return -1, n


def _scan_internal_subset(text: str, start: int, pos: int):
    """Scan the bracketed internal subset with bracket-depth tracking.

    Conditional sections (<![INCLUDE[ ... ]]>) nest; the subset ends when
    the depth returns to zero. Reaching the end of the text first means the
    subset is unterminated and the DOCTYPE offset is reported.
    """
    n = len(text)
    depth = 1
    while pos < n:
        ch = text[pos]
        if ch in _QUOTES:
            # Literals only belong inside a markup declaration
            return start, n
        elif text.startswith('<!--', pos):
            end = text.find('-->', pos + 4)
            if end == -1:
                return start, n
            pos = end + 3
        elif text.startswith('<?', pos):
            end = text.find('?>', pos + 2)
            if end == -1:
                return start, n
            pos = end + 2
        elif text.startswith('<!', pos):
            keyword = _skip_whitespace(text, pos + 2)
            if _keyword_at(text, keyword, 'ENTITY'):
                return pos, keyword
            if text.startswith('[', keyword):
                pos = keyword  # conditional section
            else:
                pos = _skip_declaration(text, keyword)
                if pos == -1:
                    return start, n
        elif ch == '[':
            depth += 1
            pos += 1
        elif ch == ']':
            depth -= 1
            pos += 1
            if depth == 0:
                return -1, pos
        else:
            pos += 1
    return start, n
