"""Post-conversion cleanup of Markdown produced from documentation HTML."""

import html
import re

# Cloudflare-style e-mail obfuscation left behind when scripts are stripped
_EMAIL_PROTECTED_RE = re.compile(
    r"\[email(?:\s| |&#160;|&nbsp;)*protected\]", re.IGNORECASE
)

_TEL_URI_RE = re.compile(r"\btel:\S+", re.IGNORECASE)

_NUMERIC_ENTITY_RE = re.compile(r"&#x?[0-9a-fA-F]+;")

_COOKIE_SENTENCE_RE = re.compile(
    r"[^.\n]*\b(?:(?:this (?:website|site) )?uses? cookies|accept all cookies|cookie policy)\b[^.\n]*\.?",
    re.IGNORECASE,
)

# [](...) or [   ](...) left over from icon-only anchors
_EMPTY_LINK_RE = re.compile(r"(?<!!)\[\s*\]\([^)]*\)")

_TRAILING_SPACE_RE = re.compile(r"[ \t]+$", re.MULTILINE)

_BLANK_RUN_RE = re.compile(r"\n{3,}")


def clean_markdown(text: str) -> str:
    """Strip conversion residue from *text* and normalise blank lines."""
    if not text:
        return text

    text = _EMAIL_PROTECTED_RE.sub("", text)
    text = _TEL_URI_RE.sub("", text)
    text = _NUMERIC_ENTITY_RE.sub(lambda m: html.unescape(m.group(0)), text)
    text = _COOKIE_SENTENCE_RE.sub("", text)
    text = _EMPTY_LINK_RE.sub("", text)
    text = _TRAILING_SPACE_RE.sub("", text)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()
