"""
Value types shared by the scanner, the parse targets and the server.
"""

from dataclasses import dataclass, field
from enum import Enum


class ScanVerdict(Enum):
    """Outcome of the entity-declaration scan. UNSAFE carries no payload."""
    SAFE = "safe"
    UNSAFE = "unsafe"

    @classmethod
    def from_detection(cls, detected: bool) -> 'ScanVerdict':
        return cls.UNSAFE if detected else cls.SAFE

    @property
    def is_safe(self) -> bool:
        return self == ScanVerdict.SAFE


class Dialect(Enum):
    """Markup dialect handed to the parser."""
    XML = "xml"
    HTML = "html"

    @classmethod
    def from_string(cls, value: str) -> 'Dialect':
        if not isinstance(value, str):
            raise TypeError(f"Expected str, got {type(value).__name__}")
        lowered = value.strip().lower()
        try:
            return cls(lowered)
        except ValueError:
            raise ValueError(
                f"Invalid dialect: '{value}'. "
                f"Valid dialects: {', '.join(d.value for d in cls)}"
            )


@dataclass(frozen=True)
class HtmlOptions:
    """HTML parser flags.

    no_implied:     keep the markup as a fragment, no auto-inserted
                    ``<html>``/``<body>`` elements.
    no_default_dtd: do not add an implied doctype when the markup has none.
    """
    no_implied: bool = False
    no_default_dtd: bool = False


@dataclass(frozen=True)
class ParseOptions:
    """Per-call parse configuration.

    External entity loading and network access are not options: every
    delegated parse runs with both disabled.
    """
    dialect: Dialect = Dialect.XML
    html: HtmlOptions = field(default_factory=HtmlOptions)

    @property
    def is_html(self) -> bool:
        return self.dialect == Dialect.HTML
