"""
Exception taxonomy for guarded XML parsing.

Security errors are fatal to the call and must never be retried with other
options. A malformed document is a normal outcome for untrusted input and is
turned into a plain ``False`` by the scan entry points.
"""

ENTITY_DETECT = "Detected use of ENTITY in XML, disabled to prevent XXE/XEE attacks"


class XmlSecurityError(RuntimeError):
    """Base class for documents that must be refused outright."""


class EntityDeclarationDetected(XmlSecurityError):
    """The DOCTYPE internal subset declares at least one entity."""

    def __init__(self, message: str = ENTITY_DETECT, offset: int = -1):
        super().__init__(message)
        self.offset = offset


class InvalidDocumentEncoding(XmlSecurityError):
    """The raw bytes cannot be decoded to one unambiguous text."""


class MalformedDocument(ValueError):
    """The parser could not build a tree from entity-free text."""
