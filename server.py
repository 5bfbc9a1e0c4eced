#!/usr/bin/env python3
"""
xmlguard MCP Server: vet untrusted XML/HTML before anything parses it.

Every tool runs documents through the scan-then-parse protocol of
``xmlguard.safe_xml``: entity-declaring documents are refused, malformed ones
are reported as not well-formed, and only vetted text reaches a parser.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any, Sequence

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    GetPromptResult,
    Prompt,
    PromptArgument,
    PromptMessage,
    Resource,
    TextContent,
    Tool,
)

from xmlguard.encoding import decode_document
from xmlguard.errors import XmlSecurityError
from xmlguard.models import Dialect, HtmlOptions, ParseOptions
from xmlguard.safe_xml import scan, scan_document, scan_file, scan_html, scan_verdict
from xmlguard.scanner import find_entity_declaration
from xmlguard.targets import XmlDocument

server = Server("xmlguard-mcp-server")
DOCS_DIR = os.environ.get("XMLGUARD_DOCS_DIR", os.getcwd())
LOG_LEVEL = os.environ.get("XMLGUARD_LOG_LEVEL", "INFO")

# Maximum file size for scanning (default 50 MB).
MAX_FILE_SIZE = int(os.environ.get("XMLGUARD_MAX_FILE_SIZE_MB", "50")) * 1024 * 1024

XML_EXTENSIONS = ('.xml', '.xhtml', '.svg', '.rss', '.atom', '.xsd', '.xsl', '.xslt')

logger = logging.getLogger("xmlguard-mcp-server")


# ============================================================================
# SECURITY UTILITIES
# ============================================================================

def _validate_filepath(filepath: str, allowed_extensions: tuple[str, ...] | None = None) -> str:
    """Validate a user-provided file path against traversal and size attacks.

    Resolves symlinks, blocks null bytes, enforces extension whitelist, and
    checks file size before any reading takes place.

    Raises:
        ValueError: For invalid paths (null bytes, bad extensions, oversized).
        FileNotFoundError: When the resolved path does not exist.
    """
    if '\x00' in filepath:
        raise ValueError("Invalid file path: null byte detected")

    resolved = Path(filepath).resolve()

    if not resolved.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    if not resolved.is_file():
        raise ValueError(f"Not a regular file: {filepath}")

    if allowed_extensions and resolved.suffix.lower() not in allowed_extensions:
        raise ValueError(
            f"Invalid file type '{resolved.suffix}'. "
            f"Allowed: {', '.join(allowed_extensions)}"
        )

    if resolved.stat().st_size > MAX_FILE_SIZE:
        size_mb = resolved.stat().st_size / (1024 * 1024)
        raise ValueError(f"File too large ({size_mb:.1f} MB). Maximum: {MAX_FILE_SIZE // (1024 * 1024)} MB")

    return str(resolved)


def _validate_directory(directory: str) -> str:
    """Validate a user-provided directory path.

    Resolves symlinks, blocks null bytes, and verifies the path is a real
    directory.

    Raises:
        ValueError: For invalid paths (null bytes, not a directory).
    """
    if '\x00' in directory:
        raise ValueError("Invalid directory path: null byte detected")

    resolved = Path(directory).resolve()

    if not resolved.is_dir():
        raise ValueError(f"Not a valid directory: {directory}")

    return str(resolved)


def _require_text(arguments: dict, key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return value


# ============================================================================
# UTILITIES
# ============================================================================

def find_xml_files(directory: str) -> list[str]:
    """Find all XML-family files in a directory."""
    path = Path(directory)
    files = [str(f) for f in path.rglob("*") if f.is_file() and f.suffix.lower() in XML_EXTENSIONS]
    return sorted(files)


def summarize_tree(root) -> str:
    """Describe a parsed element tree (ElementTree or lxml) as markdown."""
    tags: dict[str, int] = {}
    for elem in root.iter():
        if not isinstance(elem.tag, str):
            continue  # comments and PIs
        tags[elem.tag] = tags.get(elem.tag, 0) + 1
    total = sum(tags.values())
    lines = [
        f"- **Root**: `{root.tag}`",
        f"- **Elements**: {total}",
        f"- **Distinct tags**: {len(tags)}",
    ]
    for tag, count in sorted(tags.items(), key=lambda kv: (-kv[1], kv[0]))[:10]:
        lines.append(f"  - `{tag}`: {count}")
    return "\n".join(lines)


def _html_options(arguments: dict) -> HtmlOptions:
    return HtmlOptions(
        no_implied=bool(arguments.get("no_implied", False)),
        no_default_dtd=bool(arguments.get("no_default_dtd", False)),
    )


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


def _not_well_formed():
    """Standard response when the parser cannot build a tree."""
    return _text("Document is not well-formed")


# ============================================================================
# MCP RESOURCES: File discovery
# ============================================================================

@server.list_resources()
async def list_resources() -> list[Resource]:
    """Expose discovered XML files as MCP resources."""
    resources = []
    for f in find_xml_files(DOCS_DIR):
        p = Path(f)
        resources.append(Resource(
            uri=f"file://{f}",
            name=p.stem,
            description=f"XML document: {p.name}",
            mimeType="application/xml",
        ))
    return resources


@server.read_resource()
async def read_resource(uri: str) -> str:
    """Scan an XML file and return a summary."""
    filepath = str(uri).replace("file://", "")
    try:
        filepath = _validate_filepath(filepath, XML_EXTENSIONS)
        root = scan_file(filepath)
    except (ValueError, FileNotFoundError) as e:
        return str(e)
    except XmlSecurityError as e:
        return f"Rejected: {e}"

    if root is False:
        return f"Document is not well-formed: {filepath}"
    return f"XML Document: {Path(filepath).name}\n{summarize_tree(root)}\nPath: {filepath}"


# ============================================================================
# MCP PROMPTS: Pre-built workflows
# ============================================================================

@server.list_prompts()
async def list_prompts() -> list[Prompt]:
    return [
        Prompt(
            name="audit-xml-file",
            description="Check an XML file for entity declarations, then parse and validate it",
            arguments=[
                PromptArgument(name="filepath", description="Path to XML file", required=True),
            ],
        ),
    ]


@server.get_prompt()
async def get_prompt(name: str, arguments: dict[str, str] | None = None) -> GetPromptResult:
    args = arguments or {}
    filepath = args.get("filepath", "<path to your .xml file>")

    if name == "audit-xml-file":
        return GetPromptResult(
            description="Audit an untrusted XML file",
            messages=[PromptMessage(
                role="user",
                content=TextContent(
                    type="text",
                    text=f"""Audit this XML file before I use it.

File: {filepath}

Please:
1. Use `parse_xml_file` to scan and parse it
2. If it is rejected, explain that it declares entities and must not be processed
3. If it parses, summarize its structure
4. If it carries an internal DTD, use `validate_xml_dtd` on its contents and report the result"""
                ),
            )],
        )

    raise ValueError(f"Unknown prompt: {name}")


# ============================================================================
# TOOL DEFINITIONS
# ============================================================================

@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="check_xml",
            description="Scan XML text for DOCTYPE entity declarations without parsing it",
            inputSchema={
                "type": "object",
                "properties": {
                    "xml": {"type": "string", "description": "XML document text"},
                    "dialect": {"type": "string", "enum": ["xml", "html"], "default": "xml"}
                },
                "required": ["xml"]
            }
        ),
        Tool(
            name="parse_xml",
            description="Scan and parse XML or HTML text; entity-declaring documents are refused",
            inputSchema={
                "type": "object",
                "properties": {
                    "xml": {"type": "string", "description": "Document text"},
                    "dialect": {"type": "string", "enum": ["xml", "html"], "default": "xml"},
                    "no_implied": {"type": "boolean", "default": False},
                    "no_default_dtd": {"type": "boolean", "default": False}
                },
                "required": ["xml"]
            }
        ),
        Tool(
            name="parse_xml_file",
            description="Scan and parse an XML file from disk",
            inputSchema={
                "type": "object",
                "properties": {"filepath": {"type": "string", "description": "Path to XML file"}},
                "required": ["filepath"]
            }
        ),
        Tool(
            name="validate_xml_dtd",
            description="Scan, parse, and validate XML against its internal DTD (<!ELEMENT>/<!ATTLIST>)",
            inputSchema={
                "type": "object",
                "properties": {"xml": {"type": "string", "description": "XML document text"}},
                "required": ["xml"]
            }
        ),
        Tool(
            name="scan_html",
            description="Scan and parse HTML, returning the re-serialized markup",
            inputSchema={
                "type": "object",
                "properties": {
                    "html": {"type": "string", "description": "HTML markup"},
                    "no_implied": {"type": "boolean", "description": "Do not add <html>/<body>", "default": False},
                    "no_default_dtd": {"type": "boolean", "description": "Do not add a default doctype", "default": False}
                },
                "required": ["html"]
            }
        ),
        Tool(
            name="list_documents",
            description="List XML documents in a directory",
            inputSchema={
                "type": "object",
                "properties": {
                    "directory": {"type": "string", "description": "Directory to search (default: XMLGUARD_DOCS_DIR)"}
                }
            }
        ),
    ]


# ============================================================================
# TOOL HANDLERS: Each tool gets its own function
# ============================================================================

async def handle_check_xml(arguments: dict) -> Sequence[TextContent]:
    xml = _require_text(arguments, "xml")
    dialect = Dialect.from_string(arguments.get("dialect", "xml"))
    verdict = scan_verdict(xml, dialect)
    if verdict.is_safe:
        return _text("SAFE: no entity declarations found")
    try:
        offset = find_entity_declaration(decode_document(xml), dialect == Dialect.HTML)
    except XmlSecurityError:
        return _text("UNSAFE: document encoding cannot be verified")
    return _text(f"UNSAFE: entity declaration at offset {offset}")


async def handle_parse_xml(arguments: dict) -> Sequence[TextContent]:
    xml = _require_text(arguments, "xml")
    options = ParseOptions(
        dialect=Dialect.from_string(arguments.get("dialect", "xml")),
        html=_html_options(arguments),
    )
    result = scan_document(xml, options)
    if result is False:
        return _not_well_formed()
    root = result.root if isinstance(result, XmlDocument) else result
    if root is None:
        return _text("# Parsed HTML\n\nNo elements found")
    title = "HTML" if options.is_html else "XML"
    return _text(f"# Parsed {title}\n\n{summarize_tree(root)}")


async def handle_parse_xml_file(arguments: dict) -> Sequence[TextContent]:
    filepath = _validate_filepath(_require_text(arguments, "filepath"), XML_EXTENSIONS)
    root = scan_file(filepath)
    if root is False:
        return _not_well_formed()
    return _text(f"# {Path(filepath).name}\n\n{summarize_tree(root)}")


async def handle_validate_xml_dtd(arguments: dict) -> Sequence[TextContent]:
    xml = _require_text(arguments, "xml")
    doc = scan(xml, XmlDocument())
    if doc is False:
        return _not_well_formed()
    if doc.validate():
        return _text("VALID: document conforms to its internal DTD")
    return _text("INVALID: document does not conform to an internal DTD (or has none)")


async def handle_scan_html(arguments: dict) -> Sequence[TextContent]:
    html = _require_text(arguments, "html")
    doc = scan_html(html, XmlDocument(), _html_options(arguments))
    if doc is False:
        return _not_well_formed()
    return _text(doc.save_html())


async def handle_list_documents(arguments: dict) -> Sequence[TextContent]:
    directory = arguments.get("directory", DOCS_DIR)
    resolved_dir = _validate_directory(directory)
    files = find_xml_files(resolved_dir)
    if not files:
        return _text(f"No XML documents found in {directory}")
    return _text(f"Found {len(files)} XML document(s):\n" + "\n".join(f"  - {f}" for f in files))


TOOL_HANDLERS = {
    "check_xml": handle_check_xml,
    "parse_xml": handle_parse_xml,
    "parse_xml_file": handle_parse_xml_file,
    "validate_xml_dtd": handle_validate_xml_dtd,
    "scan_html": handle_scan_html,
    "list_documents": handle_list_documents,
}


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> Sequence[TextContent]:
    handler = TOOL_HANDLERS.get(name)
    if not handler:
        return _text(f"Unknown tool: {name}")
    try:
        return await handler(arguments)
    except XmlSecurityError as e:
        return _text(f"Rejected: {e}")
    except FileNotFoundError as e:
        return _text(f"File not found: {e}")
    except ValueError as e:
        return _text(f"Validation error: {e}")
    except Exception as e:
        logger.exception("Error in tool %s", name)
        return _text(f"Error: {type(e).__name__}")


# ============================================================================
# MAIN
# ============================================================================

async def main():
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main_sync():
    """Synchronous entry point for use as a console script."""
    import asyncio
    # stdout carries the MCP protocol
    logging.basicConfig(level=LOG_LEVEL.upper(), stream=sys.stderr)
    asyncio.run(main())


if __name__ == "__main__":
    main_sync()
