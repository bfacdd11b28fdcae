"""Source parsing for test-runner configs."""

from covlens.parsing.treesitter import detect_language, get_parser, node_text, parse_code, walk

__all__ = [
    "detect_language",
    "get_parser",
    "node_text",
    "parse_code",
    "walk",
]
