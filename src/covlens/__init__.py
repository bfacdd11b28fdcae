"""covlens: normalized line-level views over Cobertura and LCOV coverage reports."""

__version__ = "0.4.0"
