"""
Content sanitization for anything destined for rendering or storage.

Rendering goes through nh3 (ammonia) with a strict allowlist: tags outside
the allowlist are dropped (their text is kept), dangerous elements are
dropped together with their content, only the "class" attribute survives,
and stray angle brackets are escaped. Storage-time stripping keeps the
text verbatim and only removes active markup. Every public method is
total: any input returns a string.
"""

import html
import logging
import re
from typing import FrozenSet, List, Optional, Tuple

import nh3

from config import MAX_DISPLAY_LENGTH

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "... [Content truncated for security]"
FILENAME_PLACEHOLDER = "untitled"
MAX_FILENAME_LENGTH = 255

DISPLAY_TAGS: FrozenSet[str] = frozenset({
    "b", "i", "em", "strong", "code", "pre",
    "blockquote", "p", "br", "ul", "ol", "li",
})
CODE_TAGS: FrozenSet[str] = frozenset({"code", "pre", "span"})

# Elements removed together with everything inside them
DANGEROUS_ELEMENTS: FrozenSet[str] = frozenset({
    "script", "style", "iframe", "object", "embed",
    "template", "noscript", "frame", "frameset", "applet",
})
ACTIVE_URI_SCHEMES: Tuple[str, ...] = ("javascript:", "vbscript:", "data:")

CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
# Unpaired UTF-16 halves (JSON "\ud83d" escapes) cannot be encoded as UTF-8
LONE_SURROGATES_RE = re.compile(r"[\ud800-\udfff]")
_NEWLINES_RE = re.compile(r"\r\n?")
_TAG_OPEN_RE = re.compile(r"<(/?)([A-Za-z][^\s/>]*)")
_ATTR_SEPARATOR_RE = re.compile(r"[\s/]*")
_ATTR_NAME_RE = re.compile(r"([^\s/>][^\s/>=]*)(\s*=\s*)?")
_UNQUOTED_VALUE_RE = re.compile(r"[^\s>]*")
# Browsers ignore whitespace and control characters inside a URI scheme
_URI_NOISE_RE = re.compile(r"[\x00-\x20\x7f]+")
_SAFE_CLASS_RE = re.compile(r"[^\w\- ]")
_FORBIDDEN_FILENAME_RE = re.compile(r'[<>:"/\\|?*]')


class ContentSanitizer:
    """Markup sanitizer for chat content, code and filenames."""

    def __init__(self, max_display_length: int = MAX_DISPLAY_LENGTH):
        self.max_display_length = max_display_length

    def sanitize_for_display(self, raw) -> str:
        """
        Sanitize chat message content for rendering.

        Args:
            raw: Raw content from chat exports (any type)

        Returns:
            Sanitized content safe for rendering, at most max_display_length chars
        """
        return self._sanitize(raw, DISPLAY_TAGS)

    def sanitize_code(self, raw) -> str:
        """Sanitize code content, keeping code/pre/span and their classes."""
        return self._sanitize(raw, CODE_TAGS)

    def sanitize_filename(self, raw) -> str:
        """Strip path traversal and OS-forbidden characters from a filename."""
        if not isinstance(raw, str) or not raw:
            return FILENAME_PLACEHOLDER

        sanitized = CONTROL_CHARS_RE.sub("", raw)
        sanitized = LONE_SURROGATES_RE.sub("", sanitized)
        sanitized = _FORBIDDEN_FILENAME_RE.sub("_", sanitized)  # Windows forbidden chars
        sanitized = sanitized.replace("..", "_")  # Path traversal
        sanitized = sanitized.strip()
        if sanitized.startswith("."):
            sanitized = "_" + sanitized[1:]  # Hidden files
        sanitized = sanitized[:MAX_FILENAME_LENGTH]

        return sanitized or FILENAME_PLACEHOLDER

    def strip_active_content(self, raw) -> Tuple[str, bool]:
        """
        Remove active content while leaving ordinary text untouched.

        Used at storage time: dangerous elements (with their content),
        event-handler and style attributes, and attributes holding a
        javascript:, vbscript: or data: URI are removed. Attribute values
        are entity-decoded before the scheme check. Everything else,
        including prose that merely mentions a URI scheme, harmless markup
        and bare angle brackets, is preserved byte for byte.

        Returns:
            Tuple of (cleaned_text, dangerous_content_found)
        """
        if not isinstance(raw, str) or not raw:
            return "", False

        text = CONTROL_CHARS_RE.sub("", raw)
        text = LONE_SURROGATES_RE.sub("", text)
        out = []
        found = False
        pos = 0

        while True:
            match = _TAG_OPEN_RE.search(text, pos)
            if match is None:
                out.append(text[pos:])
                break

            out.append(text[pos:match.start()])
            closing, name = match.group(1), match.group(2)

            if name.lower() in DANGEROUS_ELEMENTS:
                found = True
                if closing:
                    pos = self._tag_end(text, match.end())
                else:
                    pos = self._skip_element(text, name, match.end())
                continue

            parsed = self._read_attributes(text, match.end())
            if parsed is None:
                # Unterminated tag: a browser renders nothing past this point as markup
                out.append(text[match.start():])
                break

            end, attributes, self_closing = parsed
            kept = [raw_attr for attr_name, raw_attr, value in attributes
                    if not self._is_active_attribute(attr_name, value)]
            if len(kept) == len(attributes):
                out.append(text[match.start():end])
            else:
                found = True
                rebuilt = "".join(f" {raw_attr}" for raw_attr in kept)
                out.append(f"<{closing}{name}{rebuilt}{'/>' if self_closing else '>'}")
            pos = end

        if found:
            logger.debug("Removed active content during sanitization")
        return "".join(out), found

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sanitize(self, raw, allowed_tags: FrozenSet[str]) -> str:
        if not isinstance(raw, str) or not raw:
            return ""

        text = _NEWLINES_RE.sub("\n", raw)
        text = CONTROL_CHARS_RE.sub("", text)
        text = LONE_SURROGATES_RE.sub("", text)

        sanitized = nh3.clean(
            text,
            tags=set(allowed_tags),
            clean_content_tags=set(DANGEROUS_ELEMENTS),
            attributes={"*": set(), **{tag: {"class"} for tag in allowed_tags}},
            attribute_filter=self._filter_attribute,
            strip_comments=True,
            link_rel=None,
            url_schemes=set(),
        )
        return self._truncate(sanitized)

    @staticmethod
    def _filter_attribute(tag: str, attribute: str, value: str) -> Optional[str]:
        if attribute != "class":
            return None
        value = _SAFE_CLASS_RE.sub("", value).strip()
        return value or None

    @staticmethod
    def _read_attributes(text: str, pos: int) -> Optional[Tuple[int, List[Tuple[str, str, str]], bool]]:
        """
        Read the attributes of a tag whose name ends at pos.

        Follows the HTML tokenizer: "/" separates attributes like whitespace
        and a ">" inside a quoted value does not close the tag.

        Returns:
            (end position after ">", [(name, raw_text, value)], self_closing),
            or None when the tag is never closed.
        """
        attributes = []
        length = len(text)

        while True:
            separator = _ATTR_SEPARATOR_RE.match(text, pos)
            pos = separator.end()
            if pos >= length:
                return None
            if text[pos] == ">":
                return pos + 1, attributes, "/" in separator.group(0)

            name_match = _ATTR_NAME_RE.match(text, pos)
            end = name_match.end()
            value = ""
            if name_match.group(2):
                if end < length and text[end] in "\"'":
                    close = text.find(text[end], end + 1)
                    if close == -1:
                        return None
                    value = text[end + 1:close]
                    end = close + 1
                else:
                    unquoted = _UNQUOTED_VALUE_RE.match(text, end)
                    value = unquoted.group(0)
                    end = unquoted.end()

            attributes.append((name_match.group(1), text[pos:end], value))
            pos = end

    @staticmethod
    def _is_active_attribute(name: str, value: str) -> bool:
        lowered = name.lower()
        if lowered.startswith("on") or lowered == "style":
            return True
        target = _URI_NOISE_RE.sub("", html.unescape(value)).lower()
        return target.startswith(ACTIVE_URI_SCHEMES)

    @staticmethod
    def _tag_end(text: str, start: int) -> int:
        close = text.find(">", start)
        return close + 1 if close != -1 else len(text)

    @staticmethod
    def _skip_element(text: str, name: str, start: int) -> int:
        """Return the position just after the matching close tag (or end of text)."""
        close_re = re.compile(rf"</{re.escape(name)}(?=[\s/>])[^>]*>", re.IGNORECASE)
        close = close_re.search(text, start)
        return close.end() if close else len(text)

    def _truncate(self, sanitized: str) -> str:
        limit = self.max_display_length
        if len(sanitized) <= limit:
            return sanitized

        cut = sanitized[:max(limit - len(TRUNCATION_MARKER), 0)]
        # Never leave a half-written tag or entity before the marker
        last_open = cut.rfind("<")
        if last_open > cut.rfind(">"):
            cut = cut[:last_open]
        last_amp = cut.rfind("&")
        if last_amp != -1 and ";" not in cut[last_amp:]:
            cut = cut[:last_amp]
        return (cut + TRUNCATION_MARKER)[:limit]
