"""Best-effort structural metadata extraction per language family.

Each language maps to a pure function ``text -> metadata``. The result of a
known language always carries the keys ``functions``, ``classes``,
``imports`` and ``package`` in that order, each a comma-joined list that is
empty when nothing was found. Unknown languages yield an empty mapping.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, Iterable, Pattern

from codecompass.models import METADATA_KEYS
from codecompass.utils.text import join_values

LOGGER = logging.getLogger(__name__)

Extractor = Callable[[str], Dict[str, str]]

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "java": "Java",
    "kt": "Kotlin",
    "kts": "Kotlin",
    "scala": "Scala",
    "groovy": "Groovy",
    "py": "Python",
    "js": "JavaScript",
    "jsx": "JavaScript",
    "ts": "TypeScript",
    "tsx": "TypeScript",
    "c": "C",
    "h": "C",
    "cpp": "C++",
    "cc": "C++",
    "hpp": "C++",
    "cs": "C#",
    "go": "Go",
    "rs": "Rust",
    "php": "PHP",
    "rb": "Ruby",
    "swift": "Swift",
    "xml": "XML",
    "json": "JSON",
    "yaml": "YAML",
    "yml": "YAML",
    "toml": "TOML",
    "md": "Markdown",
}


def detect_language(extension: str) -> str:
    """Map a file extension (with or without dot) to a language name."""
    return LANGUAGE_BY_EXTENSION.get(extension.lower().lstrip("."), "Unknown")


def _find_all(pattern: Pattern[str], text: str) -> list[str]:
    """Collect matches in order; for alternations the first non-empty group wins."""
    found: list[str] = []
    for match in pattern.finditer(text):
        groups = match.groups() or (match.group(0),)
        for group in groups:
            if group:
                found.append(group.strip())
                break
    return found


def _first(pattern: Pattern[str], text: str) -> str:
    match = pattern.search(text)
    return match.group(1) if match else ""


def _build(
    functions: Iterable[str] = (),
    classes: Iterable[str] = (),
    imports: Iterable[str] = (),
    package: str = "",
) -> Dict[str, str]:
    values = {
        "functions": join_values(functions),
        "classes": join_values(classes),
        "imports": join_values(imports),
        "package": package.strip(),
    }
    return {key: values[key] for key in METADATA_KEYS}


_PY_DEF = re.compile(r"^\s*(?:async\s+)?def\s+(\w+)\s*\(", re.MULTILINE)
_PY_CLASS = re.compile(r"^\s*class\s+(\w+)", re.MULTILINE)
_PY_IMPORT = re.compile(r"^\s*(?:from\s+([\w.]+)\s+import|import\s+([\w.]+))", re.MULTILINE)


def extract_python(text: str) -> Dict[str, str]:
    return _build(_find_all(_PY_DEF, text), _find_all(_PY_CLASS, text), _find_all(_PY_IMPORT, text))


_JAVA_PACKAGE = re.compile(r"^\s*package\s+([\w.]+)", re.MULTILINE)
_JAVA_CLASS = re.compile(r"\b(?:class|interface|enum|record)\s+(\w+)")
_JAVA_IMPORT = re.compile(r"^\s*import\s+(?:static\s+)?([\w.*]+)", re.MULTILINE)
_JAVA_METHOD = re.compile(
    r"^[ \t]*(?:(?:public|protected|private|internal|static|final|abstract|synchronized|"
    r"default|override|virtual|async)\s+)*[\w<>\[\],.?]+\s+(\w+)\s*\([^;{)]*\)\s*"
    r"(?:throws\s+[\w.,\s]+?)?\s*\{",
    re.MULTILINE,
)
_JAVA_KEYWORDS = frozenset({"if", "for", "while", "switch", "catch", "return", "new"})


def extract_java(text: str) -> Dict[str, str]:
    methods = [name for name in _find_all(_JAVA_METHOD, text) if name not in _JAVA_KEYWORDS]
    return _build(
        methods,
        _find_all(_JAVA_CLASS, text),
        _find_all(_JAVA_IMPORT, text),
        _first(_JAVA_PACKAGE, text),
    )


_KT_FUN = re.compile(r"\bfun\s+(?:<[^>]*>\s*)?(?:[\w.]+\.)?(\w+)\s*\(")
_KT_CLASS = re.compile(r"\b(?:class|interface|object)\s+(\w+)")


def extract_kotlin(text: str) -> Dict[str, str]:
    return _build(
        _find_all(_KT_FUN, text),
        _find_all(_KT_CLASS, text),
        _find_all(_JAVA_IMPORT, text),
        _first(_JAVA_PACKAGE, text),
    )


_SCALA_DEF = re.compile(r"\bdef\s+(\w+)")
_SCALA_TYPE = re.compile(r"\b(?:class|object|trait)\s+(\w+)")


def extract_scala(text: str) -> Dict[str, str]:
    return _build(
        _find_all(_SCALA_DEF, text),
        _find_all(_SCALA_TYPE, text),
        _find_all(_JAVA_IMPORT, text),
        _first(_JAVA_PACKAGE, text),
    )


_JS_FUNCTION = re.compile(
    r"\bfunction\s*\*?\s*(\w+)\s*\("
    r"|\b(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s+)?(?:function\b|\([^)]*\)\s*=>|\w+\s*=>)"
)
_JS_CLASS = re.compile(r"\bclass\s+(\w+)")
_JS_IMPORT = re.compile(
    r"\bimport\s+(?:[^'\"]*?\s+from\s+)?['\"]([^'\"]+)['\"]"
    r"|\brequire\s*\(\s*['\"]([^'\"]+)['\"]\s*\)"
)
_TS_TYPES = re.compile(r"\b(?:class|interface|type|enum)\s+(\w+)")


def extract_javascript(text: str) -> Dict[str, str]:
    return _build(_find_all(_JS_FUNCTION, text), _find_all(_JS_CLASS, text), _find_all(_JS_IMPORT, text))


def extract_typescript(text: str) -> Dict[str, str]:
    return _build(_find_all(_JS_FUNCTION, text), _find_all(_TS_TYPES, text), _find_all(_JS_IMPORT, text))


_GO_PACKAGE = re.compile(r"^\s*package\s+(\w+)", re.MULTILINE)
_GO_FUNC = re.compile(r"^\s*func\s+(?:\([^)]*\)\s*)?(\w+)\s*[\[(]", re.MULTILINE)
_GO_TYPE = re.compile(r"^\s*type\s+(\w+)\s+(?:struct|interface)\b", re.MULTILINE)
_GO_IMPORT_BLOCK = re.compile(r"^\s*import\s*\(([^)]*)\)", re.MULTILINE)
_GO_IMPORT_LINE = re.compile(r"^\s*import\s+(?:\w+\s+)?\"([^\"]+)\"", re.MULTILINE)
_QUOTED = re.compile(r"\"([^\"]+)\"")


def extract_go(text: str) -> Dict[str, str]:
    imports = _find_all(_GO_IMPORT_LINE, text)
    for block in _GO_IMPORT_BLOCK.findall(text):
        imports.extend(_QUOTED.findall(block))
    return _build(
        _find_all(_GO_FUNC, text),
        _find_all(_GO_TYPE, text),
        imports,
        _first(_GO_PACKAGE, text),
    )


_RS_FN = re.compile(r"\bfn\s+(\w+)\s*[<(]")
_RS_TYPE = re.compile(r"\b(?:struct|enum|trait)\s+(\w+)")
_RS_USE = re.compile(r"^\s*use\s+([\w:]+)", re.MULTILINE)
_RS_MOD = re.compile(r"^\s*(?:pub\s+)?mod\s+(\w+)\s*;", re.MULTILINE)


def extract_rust(text: str) -> Dict[str, str]:
    return _build(
        _find_all(_RS_FN, text),
        _find_all(_RS_TYPE, text),
        _find_all(_RS_USE, text),
        _first(_RS_MOD, text),
    )


_CS_NAMESPACE = re.compile(r"^\s*namespace\s+([\w.]+)", re.MULTILINE)
_CS_USING = re.compile(r"^\s*using\s+(?:static\s+)?([\w.]+)\s*;", re.MULTILINE)
_CS_CLASS = re.compile(r"\b(?:class|interface|struct|enum|record)\s+(\w+)")


def extract_csharp(text: str) -> Dict[str, str]:
    methods = [name for name in _find_all(_JAVA_METHOD, text) if name not in _JAVA_KEYWORDS]
    return _build(
        methods,
        _find_all(_CS_CLASS, text),
        _find_all(_CS_USING, text),
        _first(_CS_NAMESPACE, text),
    )


_C_INCLUDE = re.compile(r"^\s*#\s*include\s*[<\"]([^>\"]+)[>\"]", re.MULTILINE)
_C_FUNCTION = re.compile(
    r"^[ \t]*(?:[\w:<>,]+[ \t\*&]+)+(\w+)\s*\([^;{)]*\)\s*(?:const\s*)?\{", re.MULTILINE
)
_CPP_CLASS = re.compile(r"\b(?:class|struct)\s+(\w+)\s*(?::[^{;]*)?\{")
_CPP_NAMESPACE = re.compile(r"\bnamespace\s+(\w+)")
_C_KEYWORDS = frozenset({"if", "for", "while", "switch", "return", "sizeof"})


def extract_c(text: str) -> Dict[str, str]:
    functions = [name for name in _find_all(_C_FUNCTION, text) if name not in _C_KEYWORDS]
    return _build(
        functions,
        _find_all(_CPP_CLASS, text),
        _find_all(_C_INCLUDE, text),
        _first(_CPP_NAMESPACE, text),
    )


_PHP_FUNCTION = re.compile(r"\bfunction\s+(\w+)\s*\(")
_PHP_CLASS = re.compile(r"\b(?:class|interface|trait)\s+(\w+)")
_PHP_USE = re.compile(r"^\s*use\s+([\w\\]+)", re.MULTILINE)
_PHP_NAMESPACE = re.compile(r"^\s*namespace\s+([\w\\]+)", re.MULTILINE)


def extract_php(text: str) -> Dict[str, str]:
    return _build(
        _find_all(_PHP_FUNCTION, text),
        _find_all(_PHP_CLASS, text),
        _find_all(_PHP_USE, text),
        _first(_PHP_NAMESPACE, text),
    )


_RB_DEF = re.compile(r"^\s*def\s+(?:self\.)?(\w+[?!]?)", re.MULTILINE)
_RB_CLASS = re.compile(r"^\s*(?:class|module)\s+([\w:]+)", re.MULTILINE)
_RB_REQUIRE = re.compile(r"^\s*require(?:_relative)?\s+['\"]([^'\"]+)['\"]", re.MULTILINE)


def extract_ruby(text: str) -> Dict[str, str]:
    return _build(_find_all(_RB_DEF, text), _find_all(_RB_CLASS, text), _find_all(_RB_REQUIRE, text))


EXTRACTORS: dict[str, Extractor] = {
    "Python": extract_python,
    "Java": extract_java,
    "Scala": extract_scala,
    "Groovy": extract_java,
    "Kotlin": extract_kotlin,
    "JavaScript": extract_javascript,
    "TypeScript": extract_typescript,
    "Go": extract_go,
    "Rust": extract_rust,
    "C#": extract_csharp,
    "C": extract_c,
    "C++": extract_c,
    "PHP": extract_php,
    "Ruby": extract_ruby,
}


def extract(language: str, content: str) -> Dict[str, str]:
    """Return structural metadata for *content*; never raises."""
    extractor = EXTRACTORS.get(language)
    if extractor is None or not isinstance(content, str):
        return {}
    try:
        return extractor(content)
    except Exception as exc:  # regex engines can still fail on pathological input
        LOGGER.debug("Metadata extraction failed for %s content: %s", language, exc)
        return _build()
