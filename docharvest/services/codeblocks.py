"""Code-sample detection and language normalisation.

Language evidence is weighed in a fixed order: an explicit marker on the
element (``language-cs`` class, ``data-lang`` attribute, a ``C#`` label right
before it) beats the structural class of a code container, which beats
guessing from the code itself.  Each step is a separate function so it can
be exercised on its own.
"""

import re
import textwrap
from typing import Callable, Iterable, List, Optional, Set, Tuple

from bs4 import NavigableString, Tag

from docharvest.models.page import CodeBlock

_SYNONYMS = {
    "cs": ("cs", "c#", "csharp", "c-sharp", "c sharp"),
    "vb": ("vb", "vb.net", "vbnet", "visual basic", "visualbasic", "visual basic .net"),
    "js": ("js", "javascript", "jscript", "ecmascript"),
    "ts": ("ts", "typescript"),
    "xml": ("xml", "xaml", "xsd"),
    "html": ("html", "xhtml", "aspx", "cshtml", "razor"),
    "css": ("css",),
    "sql": ("sql", "tsql", "t-sql", "mssql"),
    "json": ("json",),
    "python": ("python", "py"),
    "powershell": ("powershell", "ps1", "posh"),
    "bash": ("bash", "sh", "shell", "console"),
}

LANGUAGE_ALIASES = {alias: canonical for canonical, aliases in _SYNONYMS.items() for alias in aliases}

# Class names of elements that wrap a whole code sample
CODE_CONTAINER_MARKERS = {
    "code_content",
    "code-content",
    "codeblock",
    "code-block",
    "code_sample",
    "code-sample",
    "codesample",
}

_CLASS_PREFIXES = ("language-", "lang-", "brush:")

_LANGUAGE_ATTRS = ("data-lang", "data-language", "data-code-language")

# Labels longer than this are prose, not a language caption
_MAX_LABEL_LENGTH = 24

_CS_KEYWORD_RE = re.compile(r"\b(?:public|private|protected|internal|class|namespace|using)\b")
_CS_PUNCT_RE = re.compile(r"[;{}]")
_VB_KEYWORD_RE = re.compile(
    r"^\s*(?:Public|Private|Protected|Friend|Imports|Namespace|Module|Class|Dim|Sub|Function|"
    r"Property|Inherits|Implements|End\s+(?:Class|Sub|Function|Namespace|Module|Property|If))\b",
    re.MULTILINE,
)
_MARKUP_RE = re.compile(r"^\s*<[A-Za-z?!][\s\S]*>\s*$")

_CODE_PUNCT_RE = re.compile(r"[{};]|=>|\(\)")
_CODE_KEYWORDS = {
    # C-family
    "public", "private", "protected", "internal", "static", "using", "namespace",
    "class", "interface", "var", "void", "return", "if", "else", "for", "foreach",
    "while", "new", "const", "let", "function", "import", "await", "async",
    # Visual Basic
    "Public", "Private", "Protected", "Friend", "Imports", "Namespace", "Class",
    "Module", "Dim", "Sub", "Function", "Property", "End", "Return", "If", "Else",
    "For", "Next", "Inherits", "Implements",
}
_COMMENT_PREFIXES = ("//", "/*", "<!--")
# [Serializable], [Persistent("Orders")], <Serializable()>
_ATTRIBUTE_RE = re.compile(r"^(?:\[[A-Za-z_][\w.]*(?:\(.*\))?\]|<[A-Za-z_][\w.]*(?:\(.*\))?>)$")
_HEADING_RE = re.compile(r"^#{1,6}\s")
_HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}

# (language, code) -> placeholder, or None when the language is filtered out
RegisterFn = Callable[[str, str], Optional[str]]


def normalize_language(value: Optional[str]) -> str:
    """Fold a language name or synonym to its canonical tag ("" when unknown)."""
    if not value:
        return ""
    key = value.strip().strip("*_`").rstrip(":;").strip().lower()
    return LANGUAGE_ALIASES.get(key, "")


def normalize_languages(values: Optional[Iterable[str]]) -> Optional[Set[str]]:
    """Canonicalise an allow-list; None or an empty list means "everything"."""
    if not values:
        return None
    allowed = {normalize_language(v) or v.strip().lower() for v in values if v and v.strip()}
    return allowed or None


def filter_code_blocks(blocks: Iterable[CodeBlock], allowed: Optional[Set[str]]) -> List[CodeBlock]:
    """Keep blocks whose language is allowed; untagged blocks always pass."""
    return [
        block for block in blocks
        if not allowed or not block.language or block.language in allowed
    ]


def language_label(line: str) -> str:
    """Return the language named by a caption line such as ``C#`` or ``VB.NET:``."""
    stripped = line.strip()
    if not stripped or len(stripped) > _MAX_LABEL_LENGTH:
        return ""
    return normalize_language(stripped)


def _class_language(value: str) -> str:
    token = value.strip().lower().rstrip(";")
    for prefix in _CLASS_PREFIXES:
        if token.startswith(prefix):
            token = token[len(prefix):]
            break
    for marker in CODE_CONTAINER_MARKERS:
        if token.startswith(marker) and token != marker:
            token = token[len(marker):].lstrip("-_")
            break
    return normalize_language(token)


def explicit_language(tag: Optional[Tag]) -> str:
    """Language declared on *tag* via attributes or class names."""
    if tag is None or not isinstance(tag, Tag):
        return ""
    for attr in _LANGUAGE_ATTRS:
        language = normalize_language(str(tag.get(attr, "")))
        if language:
            return language
    for cls in tag.get("class", []):
        language = _class_language(cls)
        if language:
            return language
    return normalize_language(str(tag.get("lang", "")))


def guess_language(code: str) -> str:
    """Structural heuristic: C# keywords in lower case with C punctuation vs. VB casing."""
    if not code.strip():
        return ""
    if _CS_KEYWORD_RE.search(code) and _CS_PUNCT_RE.search(code):
        return "cs"
    if _VB_KEYWORD_RE.search(code):
        return "vb"
    if _MARKUP_RE.match(code):
        return "xml"
    return ""


def preceding_label(tag: Tag) -> str:
    """Language named by a short caption element right before *tag*.

    A caption that is not a heading is consumed so it does not reach the body.
    """
    previous = tag.find_previous_sibling()
    if previous is None or not isinstance(previous, Tag):
        return ""
    language = language_label(previous.get_text(" ", strip=True))
    if language and previous.name not in _HEADING_TAGS:
        previous.decompose()
    return language


def detect_language(tag: Tag) -> str:
    """Declared language of a code element.

    Explicit markers on the element come first, then those on the inner
    ``<code>`` of a ``<pre>``, then a caption right before the ``<pre>``.
    Samples left without a language are guessed one by one in
    :func:`split_mixed_block`.
    """
    language = explicit_language(tag)
    if language or tag.name != "pre":
        return language
    return explicit_language(tag.find("code")) or preceding_label(tag)


def is_code_container(tag: Tag) -> bool:
    return any(
        cls.lower() in CODE_CONTAINER_MARKERS
        or any(cls.lower().startswith(marker + sep) for marker in CODE_CONTAINER_MARKERS for sep in "-_")
        for cls in tag.get("class", [])
    )


def element_code(tag: Tag) -> str:
    """Plain text of a code element with line structure and indentation preserved."""
    for br in tag.find_all("br"):
        br.replace_with(NavigableString("\n"))
    if tag.name != "pre":
        for block in tag.find_all(["div", "p", "li", "tr"]):
            block.append(NavigableString("\n"))
    return tidy_code(tag.get_text())


def tidy_code(code: str) -> str:
    code = code.replace("\r\n", "\n").replace("\xa0", " ")
    code = textwrap.dedent(code)
    lines = [line.rstrip() for line in code.split("\n")]
    code = "\n".join(lines).strip("\n")
    return re.sub(r"\n{3,}", "\n\n", code)


def split_mixed_block(code: str, language: str = "") -> List[Tuple[str, str]]:
    """Split a sample that holds several languages back to back.

    A caption line naming a language opens a new segment once the current
    segment holds code; a caption before any code only sets the language of
    the current segment.
    """
    segments: List[Tuple[str, List[str]]] = [(language, [])]
    for line in code.split("\n"):
        label = language_label(line)
        if not label:
            segments[-1][1].append(line)
            continue
        current_lines = segments[-1][1]
        if any(text.strip() for text in current_lines):
            segments.append((label, []))
        else:
            segments[-1] = (label, current_lines)

    result: List[Tuple[str, str]] = []
    for segment_language, lines in segments:
        segment_code = tidy_code("\n".join(lines))
        if segment_code:
            result.append((segment_language or guess_language(segment_code), segment_code))
    return result


def looks_like_code(line: str) -> bool:
    stripped = line.strip()
    if not stripped or _HEADING_RE.match(stripped):
        return False
    words = stripped.split()
    # Clear prose: a sentence without braces
    if stripped.endswith(".") and len(words) >= 6 and "{" not in stripped and "}" not in stripped:
        return False
    if _CODE_PUNCT_RE.search(stripped):
        return True
    if stripped.startswith(_COMMENT_PREFIXES) or _ATTRIBUTE_RE.match(stripped):
        return True
    if words[0].rstrip("(") in _CODE_KEYWORDS:
        return True
    return len(stripped) <= 3


def _next_nonblank(lines: List[str], start: int) -> Optional[int]:
    for index in range(start, len(lines)):
        if lines[index].strip():
            return index
    return None


def _is_boundary(line: str, placeholder_re: re.Pattern) -> bool:
    return bool(
        _HEADING_RE.match(line.strip())
        or language_label(line)
        or placeholder_re.search(line)
    )


def _absorb_code(lines: List[str], start: int, placeholder_re: re.Pattern) -> int:
    """Return the exclusive end of the code run that begins at *start*."""
    last = start
    index = start + 1
    while index < len(lines):
        line = lines[index]
        if not line.strip():
            following = _next_nonblank(lines, index + 1)
            if following is None:
                break
            candidate = lines[following]
            if _is_boundary(candidate, placeholder_re) or not looks_like_code(candidate):
                break
            index = following
            continue
        if _is_boundary(line, placeholder_re) or not looks_like_code(line):
            break
        last = index
        index += 1
    return last + 1


def wrap_labeled_code(text: str, register: RegisterFn, placeholder_re: re.Pattern) -> str:
    """Turn "caption line + code-looking lines" runs of plain text into code blocks.

    *register* receives each detected sample and returns the placeholder to
    put in its place, or None to leave the original lines untouched.
    """
    lines = text.split("\n")
    out: List[str] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        language = language_label(line)
        start = _next_nonblank(lines, index + 1) if language else None
        if (
            start is None
            or _is_boundary(lines[start], placeholder_re)
            or not looks_like_code(lines[start])
        ):
            out.append(line)
            index += 1
            continue

        end = _absorb_code(lines, start, placeholder_re)
        code = tidy_code("\n".join(l for l in lines[start:end] if l.strip()))
        placeholder = register(language, code)
        if placeholder is None:
            out.extend(lines[index:end])
        else:
            out.extend(["", placeholder, ""])
        index = end
    return "\n".join(out)
