"""Tree-sitter wrapper for parsing test-runner config sources."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, cast

import tree_sitter
import tree_sitter_language_pack as tslp

if TYPE_CHECKING:
    from tree_sitter_language_pack import SupportedLanguage

logger = logging.getLogger(__name__)

# Map config file extensions to tree-sitter language names
EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
}

SUPPORTED_LANGUAGES = frozenset({"javascript", "typescript"})

_parser_cache: dict[str, tree_sitter.Parser] = {}


def detect_language(file_path: str | Path) -> str:
    """Detect language from file extension, defaulting to JavaScript."""
    ext = Path(file_path).suffix.lower()
    return EXTENSION_TO_LANGUAGE.get(ext, "javascript")


def get_parser(language: str) -> tree_sitter.Parser:
    """Get a (cached) tree-sitter parser for the given language."""
    if language not in SUPPORTED_LANGUAGES:
        raise ValueError(f"Unsupported language: {language}")
    cached = _parser_cache.get(language)
    if cached is not None:
        return cached
    parser = tslp.get_parser(cast("SupportedLanguage", language))
    _parser_cache[language] = parser
    return parser


def parse_code(source: bytes, language: str = "javascript") -> tree_sitter.Tree:
    """Parse source code bytes into a tree-sitter AST."""
    tree = get_parser(language).parse(source)
    if tree.root_node.has_error:
        logger.debug("Source has %s parse errors; using the recovered tree", language)
    return tree


def node_text(node: tree_sitter.Node | None) -> str:
    """Decode node text from bytes, returning empty string for None."""
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace") if node.text else ""


def walk(node: tree_sitter.Node) -> list[tree_sitter.Node]:
    """Return *node* and all of its descendants in document order."""
    nodes: list[tree_sitter.Node] = []
    stack = [node]
    while stack:
        current = stack.pop()
        nodes.append(current)
        stack.extend(reversed(current.children))
    return nodes
