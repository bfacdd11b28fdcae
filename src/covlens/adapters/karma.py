"""Karma config discovery and coverage report location.

Karma configs (``karma.conf.js``, ``karma-ci.conf.js``, ...) are JavaScript
modules. The ``coverageReporter`` section tells where karma-coverage writes
its reports::

    coverageReporter: {
      dir: 'coverage/',
      reporters: [
        { type: 'lcov', subdir: 'report-lcov' },
        { type: 'cobertura', subdir: '.', file: 'cobertura.xml' },
      ],
    }

The config is never executed. It is parsed with tree-sitter and the
``coverageReporter`` value is evaluated on the AST: literals, ``__dirname``,
``process.env``, string concatenation, ``path.join``/``path.resolve`` and
variables declared in the same file. A property that needs anything else
(function calls, values from other modules) is left undefined.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from covlens.config import DiscoveryConfig
from covlens.parsing.treesitter import detect_language, node_text, parse_code, walk
from covlens.utils.globs import matches_any

if TYPE_CHECKING:
    import tree_sitter

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────

REPORT_TYPES = ("cobertura", "lcov")

_DEFAULT_REPORT_FILES = {
    "cobertura": "cobertura-coverage.xml",
    "lcov": "lcov.info",
}

_SECTION_KEY = "coverageReporter"

_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}

# Wrappers that evaluate to their single inner expression
_TRANSPARENT_NODES = frozenset(
    {"parenthesized_expression", "as_expression", "satisfies_expression", "non_null_expression"}
)

_MEMBER_NODES = frozenset({"member_expression", "subscript_expression"})

_PATH_MODULES = frozenset({"path", "node:path"})


# ── Data models ──────────────────────────────────────────────────


@dataclass(frozen=True)
class ReporterConfig:
    """One entry of ``coverageReporter.reporters``."""

    type: str
    subdir: str = ""
    file: str = ""


@dataclass(frozen=True)
class KarmaConfig:
    """Coverage settings read from one Karma config file."""

    config_path: Path
    """Path of the Karma config."""

    coverage_dir: str | None = None
    """``coverageReporter.dir``; None when the config declares none."""

    reporters: tuple[ReporterConfig, ...] = field(default_factory=tuple)
    """Configured coverage reporters."""

    @property
    def config_dir(self) -> Path:
        """Directory containing the config; relative report paths start here."""
        return self.config_path.parent

    def reporter(self, report_type: str) -> ReporterConfig | None:
        """Return the first reporter of *report_type*, if configured."""
        return next((r for r in self.reporters if r.type == report_type), None)


# ── AST evaluation ───────────────────────────────────────────────


class UnresolvedValueError(ValueError):
    """Raised when a config expression cannot be evaluated statically."""


def _decode_escape(text: str) -> str:
    body = text[1:]
    if body[:1] in {"u", "x"} and len(body) > 1:
        try:
            return chr(int(body[1:].strip("{}"), 16))
        except ValueError:
            return body
    if body.startswith(("\n", "\r")):
        # Line continuation
        return ""
    return _SIMPLE_ESCAPES.get(body, body)


def _js_str(value: Any) -> str:
    """Convert *value* the way JavaScript's ``String()`` does."""
    if value is None:
        return "undefined"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _truthy(value: Any) -> bool:
    return value not in (None, False, 0, "")


def _property_name(key: tree_sitter.Node | None) -> str | None:
    """Return the static name of an object key, or None for computed keys."""
    if key is None:
        return None
    if key.type in {"property_identifier", "identifier", "number"}:
        return node_text(key)
    if key.type == "string":
        return node_text(key)[1:-1]
    return None


def _js_path_join(parts: list[str]) -> str:
    joined = "/".join(part for part in parts if part)
    return os.path.normpath(joined) if joined else "."


class _ConfigEvaluator:
    """Evaluate the literal parts of a Karma config AST."""

    def __init__(
        self, source: bytes, root: tree_sitter.Node, config_dir: Path, filename: str
    ) -> None:
        self._source = source
        self._config_dir = os.path.abspath(config_dir)
        self._filename = os.path.join(self._config_dir, filename) if filename else None
        self._bindings: dict[str, tree_sitter.Node] = {}
        self._resolving: set[str] = set()
        for node in walk(root):
            if node.type != "variable_declarator":
                continue
            name = node.child_by_field_name("name")
            value = node.child_by_field_name("value")
            if name is not None and value is not None and name.type == "identifier":
                self._bindings.setdefault(node_text(name), value)

    def evaluate(self, node: tree_sitter.Node | None) -> Any:
        """Return the Python value of *node*.

        Raises:
            UnresolvedValueError: The expression needs runtime evaluation.
        """
        if node is None:
            raise UnresolvedValueError("missing expression")
        kind = node.type
        if kind in _TRANSPARENT_NODES:
            return self.evaluate(node.named_children[0] if node.named_children else None)
        if kind == "string":
            return self._string(node)
        if kind == "template_string":
            return self._string(node, substitutions=True)
        if kind == "number":
            return self._number(node)
        if kind in {"true", "false"}:
            return kind == "true"
        if kind in {"null", "undefined"}:
            return None
        if kind == "object":
            return self._object(node)
        if kind == "array":
            return self._array(node)
        if kind == "identifier":
            return self._identifier(node)
        if kind in _MEMBER_NODES:
            return self._member(node)
        if kind == "binary_expression":
            return self._binary(node)
        if kind == "ternary_expression":
            condition = self.evaluate(node.child_by_field_name("condition"))
            branch = "consequence" if _truthy(condition) else "alternative"
            return self.evaluate(node.child_by_field_name(branch))
        if kind == "call_expression":
            return self._call(node)
        raise UnresolvedValueError(f"{kind}: {node_text(node)}")

    # -- literals --

    def _string(self, node: tree_sitter.Node, *, substitutions: bool = False) -> str:
        """Decode a string or template literal between its delimiters."""
        out: list[str] = []
        pos = node.start_byte + 1
        for child in node.children:
            if child.type == "escape_sequence":
                out.append(self._source[pos : child.start_byte].decode("utf-8", errors="replace"))
                out.append(_decode_escape(node_text(child)))
                pos = child.end_byte
            elif substitutions and child.type == "template_substitution":
                out.append(self._source[pos : child.start_byte].decode("utf-8", errors="replace"))
                inner = child.named_children[0] if child.named_children else None
                out.append(_js_str(self.evaluate(inner)))
                pos = child.end_byte
        out.append(self._source[pos : node.end_byte - 1].decode("utf-8", errors="replace"))
        return "".join(out)

    @staticmethod
    def _number(node: tree_sitter.Node) -> int | float:
        text = node_text(node).replace("_", "")
        try:
            return int(text, 0)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError as e:
            raise UnresolvedValueError(f"number: {text}") from e

    def _object(self, node: tree_sitter.Node) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for child in node.named_children:
            if child.type == "pair":
                key = _property_name(child.child_by_field_name("key"))
                if key is None:
                    logger.debug("Skipping computed key: %s", node_text(child))
                    continue
                try:
                    result[key] = self.evaluate(child.child_by_field_name("value"))
                except UnresolvedValueError as e:
                    logger.debug("Leaving %s undefined: %s", key, e)
                    result.pop(key, None)
            elif child.type == "shorthand_property_identifier":
                try:
                    result[node_text(child)] = self._identifier(child)
                except UnresolvedValueError as e:
                    logger.debug("Leaving %s undefined: %s", node_text(child), e)
            elif child.type == "spread_element":
                try:
                    inner = child.named_children[0] if child.named_children else None
                    spread = self.evaluate(inner)
                except UnresolvedValueError as e:
                    logger.debug("Ignoring spread: %s", e)
                    continue
                if isinstance(spread, dict):
                    result.update(spread)
        return result

    def _array(self, node: tree_sitter.Node) -> list[Any]:
        items: list[Any] = []
        for child in node.named_children:
            if child.type == "comment":
                continue
            try:
                items.append(self.evaluate(child))
            except UnresolvedValueError as e:
                logger.debug("Dropping array element: %s", e)
        return items

    # -- names --

    def _identifier(self, node: tree_sitter.Node) -> Any:
        name = node_text(node)
        if name == "__dirname":
            return self._config_dir
        if name == "__filename" and self._filename is not None:
            return self._filename
        if name == "undefined":
            return None
        bound = self._bindings.get(name)
        if bound is None or name in self._resolving:
            raise UnresolvedValueError(f"identifier: {name}")
        self._resolving.add(name)
        try:
            return self.evaluate(bound)
        finally:
            self._resolving.discard(name)

    def _member_parts(self, node: tree_sitter.Node) -> tuple[tree_sitter.Node | None, str | None]:
        obj = node.child_by_field_name("object")
        if node.type == "member_expression":
            return obj, node_text(node.child_by_field_name("property"))
        index = node.child_by_field_name("index")
        if index is None:
            return obj, None
        try:
            return obj, _js_str(self.evaluate(index))
        except UnresolvedValueError:
            return obj, None

    def _member(self, node: tree_sitter.Node) -> Any:
        obj, prop = self._member_parts(node)
        if obj is not None and prop is not None and obj.type in _MEMBER_NODES:
            inner_obj, inner_prop = self._member_parts(obj)
            if inner_obj is not None and node_text(inner_obj) == "process" and inner_prop == "env":
                return os.environ.get(prop)
        if obj is not None and prop is not None:
            value = self.evaluate(obj)
            if isinstance(value, dict):
                return value.get(prop)
            if isinstance(value, list) and prop.isdigit():
                index = int(prop)
                return value[index] if index < len(value) else None
            if isinstance(value, (str, list)) and prop == "length":
                return len(value)
        raise UnresolvedValueError(f"member: {node_text(node)}")

    # -- operators --

    def _binary(self, node: tree_sitter.Node) -> Any:
        operator = node_text(node.child_by_field_name("operator"))
        left = self.evaluate(node.child_by_field_name("left"))
        if operator == "||":
            return left if _truthy(left) else self.evaluate(node.child_by_field_name("right"))
        if operator == "&&":
            return self.evaluate(node.child_by_field_name("right")) if _truthy(left) else left
        if operator == "??":
            return left if left is not None else self.evaluate(node.child_by_field_name("right"))
        right = self.evaluate(node.child_by_field_name("right"))
        if operator == "+":
            if isinstance(left, str) or isinstance(right, str):
                return _js_str(left) + _js_str(right)
            if isinstance(left, (int, float)) and isinstance(right, (int, float)):
                return left + right
        raise UnresolvedValueError(f"operator {operator}: {node_text(node)}")

    # -- calls --

    def _is_path_module(self, node: tree_sitter.Node | None) -> bool:
        if node is None:
            return False
        if node.type == "identifier":
            name = node_text(node)
            bound = self._bindings.get(name)
            if bound is not None:
                return bound.type == "call_expression" and self._is_path_module(bound)
            return name == "path"
        if node.type == "call_expression":
            function = node.child_by_field_name("function")
            arguments = node.child_by_field_name("arguments")
            if function is None or node_text(function) != "require" or arguments is None:
                return False
            args = [a for a in arguments.named_children if a.type != "comment"]
            return len(args) == 1 and args[0].type == "string" and self._string(args[0]) in _PATH_MODULES
        return False

    def _call(self, node: tree_sitter.Node) -> str:
        function = node.child_by_field_name("function")
        if function is None or function.type != "member_expression":
            raise UnresolvedValueError(f"call: {node_text(node)}")
        if not self._is_path_module(function.child_by_field_name("object")):
            raise UnresolvedValueError(f"call: {node_text(node)}")

        method = node_text(function.child_by_field_name("property"))
        arguments = node.child_by_field_name("arguments")
        args = [
            self.evaluate(arg)
            for arg in (arguments.named_children if arguments is not None else [])
            if arg.type != "comment"
        ]
        if not all(isinstance(arg, str) for arg in args):
            raise UnresolvedValueError(f"non-string path argument: {node_text(node)}")
        if method == "join":
            return _js_path_join(args)
        if method == "resolve":
            # Relative segments resolve against the config directory
            return os.path.normpath(os.path.join(self._config_dir, *args))
        if method == "dirname" and len(args) == 1:
            return os.path.dirname(args[0]) or "."
        raise UnresolvedValueError(f"path.{method} is not supported")


def _section_value(root: tree_sitter.Node) -> tree_sitter.Node | None:
    """Return the value node of the last ``coverageReporter`` assignment."""
    found: tree_sitter.Node | None = None
    for node in walk(root):
        if node.type == "pair":
            if _property_name(node.child_by_field_name("key")) == _SECTION_KEY:
                found = node.child_by_field_name("value")
        elif node.type == "assignment_expression":
            left = node.child_by_field_name("left")
            if (
                left is not None
                and left.type == "member_expression"
                and node_text(left.child_by_field_name("property")) == _SECTION_KEY
            ):
                found = node.child_by_field_name("right")
    return found


def extract_coverage_reporter(
    source: str,
    config_dir: Path,
    *,
    filename: str = "",
    language: str = "javascript",
) -> dict[str, Any] | None:
    """Evaluate the ``coverageReporter`` section of Karma config source.

    Args:
        source: Config source text.
        config_dir: Directory ``__dirname`` evaluates to.
        filename: Config file name, used for ``__filename``.
        language: tree-sitter grammar to parse with.

    Returns:
        The section as a dict, or None when the config has no
        ``coverageReporter`` or the section cannot be evaluated.
    """
    encoded = source.encode("utf-8")
    root = parse_code(encoded, language).root_node
    value_node = _section_value(root)
    if value_node is None:
        return None
    if value_node.has_error:
        logger.warning("coverageReporter has syntax errors")
        return None

    evaluator = _ConfigEvaluator(encoded, root, config_dir, filename)
    try:
        section = evaluator.evaluate(value_node)
    except UnresolvedValueError as e:
        logger.warning("coverageReporter cannot be evaluated statically: %s", e)
        return None
    if not isinstance(section, dict):
        logger.warning("coverageReporter is not an object")
        return None
    return section


def _parse_reporters(section: dict[str, Any]) -> tuple[ReporterConfig, ...]:
    raw_reporters = section.get("reporters")
    if raw_reporters is None and "type" in section:
        # Single-reporter form: coverageReporter: { type: 'lcov', dir: ... }
        raw_reporters = [section]
    if not isinstance(raw_reporters, list):
        return ()

    reporters: list[ReporterConfig] = []
    for entry in raw_reporters:
        if not isinstance(entry, dict) or not isinstance(entry.get("type"), str):
            continue
        reporters.append(
            ReporterConfig(
                type=entry["type"],
                subdir=str(entry.get("subdir") or ""),
                file=str(entry.get("file") or ""),
            )
        )
    return tuple(reporters)


# ── Detector ─────────────────────────────────────────────────────


class KarmaConfigDetector:
    """Find Karma configs in a workspace and locate their coverage reports."""

    def __init__(self, workspace_root: str | Path, discovery: DiscoveryConfig | None = None) -> None:
        self._root = Path(workspace_root)
        self._discovery = discovery or DiscoveryConfig()

    def find_configs(self) -> list[Path]:
        """Return Karma config files under the workspace root.

        Excluded directories are not descended into. Results are sorted and
        capped at ``max_configs``.
        """
        if not self._root.is_dir():
            return []

        found: list[Path] = []
        exclude = self._discovery.exclude
        for dirpath, dirnames, filenames in os.walk(self._root):
            current = Path(dirpath)
            rel_dir = current.relative_to(self._root).as_posix()
            dirnames[:] = sorted(
                name
                for name in dirnames
                if not matches_any(name if rel_dir == "." else f"{rel_dir}/{name}", exclude)
            )
            for filename in filenames:
                rel = filename if rel_dir == "." else f"{rel_dir}/{filename}"
                if not Path(filename).match(self._discovery.pattern):
                    continue
                if matches_any(rel, exclude):
                    continue
                found.append(current / filename)

        found.sort()
        if len(found) > self._discovery.max_configs:
            logger.info(
                "Found %d Karma configs, keeping the first %d",
                len(found),
                self._discovery.max_configs,
            )
        return found[: self._discovery.max_configs]

    def parse_config(self, config_path: str | Path) -> KarmaConfig | None:
        """Read coverage settings from a Karma config.

        Returns:
            None when the file cannot be read; otherwise a KarmaConfig whose
            ``coverage_dir`` is None if no usable ``coverageReporter`` was
            found.
        """
        path = Path(config_path)
        try:
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.info("Cannot read Karma config %s: %s", path, e)
            return None

        section = extract_coverage_reporter(
            source, path.parent, filename=path.name, language=detect_language(path)
        )
        if section is None:
            logger.info("No usable coverageReporter in %s", path)
            return KarmaConfig(config_path=path)

        coverage_dir = section.get("dir")
        reporters = _parse_reporters(section)
        logger.debug(
            "Extracted coverageReporter from %s: dir=%s reporters=%s",
            path,
            coverage_dir,
            [r.type for r in reporters],
        )
        return KarmaConfig(
            config_path=path,
            coverage_dir=coverage_dir if isinstance(coverage_dir, str) and coverage_dir else None,
            reporters=reporters,
        )

    def load_configs(self) -> list[KarmaConfig]:
        """Find and parse every Karma config in the workspace."""
        configs: list[KarmaConfig] = []
        for path in self.find_configs():
            config = self.parse_config(path)
            if config is not None:
                configs.append(config)
        return configs

    @staticmethod
    def get_coverage_file_path(config: KarmaConfig, report_type: str = "cobertura") -> Path | None:
        """Return the expected report path of *report_type* for *config*.

        Args:
            config: Parsed Karma config.
            report_type: ``"cobertura"`` or ``"lcov"``.

        Returns:
            Absolute report path, or None when the config has no coverage
            directory or no reporter of that type.
        """
        default_file = _DEFAULT_REPORT_FILES.get(report_type)
        if default_file is None or not config.coverage_dir:
            return None
        reporter = config.reporter(report_type)
        if reporter is None:
            return None

        report_path = Path(config.coverage_dir)
        if reporter.subdir:
            report_path = report_path / reporter.subdir
        report_path = report_path / (reporter.file or default_file)
        if not report_path.is_absolute():
            report_path = config.config_dir / report_path
        return Path(os.path.normpath(os.path.abspath(report_path)))

    def coverage_file_exists(self, config: KarmaConfig) -> bool:
        """Return True if either the Cobertura or the LCOV report exists."""
        for report_type in REPORT_TYPES:
            path = self.get_coverage_file_path(config, report_type)
            if path is not None and path.is_file():
                return True
        return False
