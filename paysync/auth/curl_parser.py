"""Parse a captured cURL command into url, method, headers and body."""
import re
from dataclasses import dataclass, field
from typing import Optional

from paysync.errors import MalformedSession

# Flags are matched only at token starts so "--data-raw" never matches "-d"
_FLAG = r"(?<!\S)"
_QUOTED = r"""\$?(?:"((?:[^"\\]|\\.)*)"|'([^']*)')"""

_ARG = r"""(?:\$?"(?:[^"\\]|\\.)*"|\$?'[^']*'|\S+)"""
_VALUE_FLAG = (
    r"(?:-X|--request|-H|--header|-b|--cookie|-A|--user-agent|-e|--referer|-u|--user"
    r"|--data-raw|--data-binary|--data-urlencode|--data|-d)"
)
# Leading options before the URL, e.g. "--location", "-L", "-H 'a: b'"
_LEADING_FLAGS = (
    r"(?:" + _VALUE_FLAG + r"\s+" + _ARG + r"\s+"
    r"|(?!" + _VALUE_FLAG + r"\s)-{1,2}[A-Za-z][\w-]*\s+)*"
)

URL_QUOTED_RE = re.compile(r"curl\s+" + _LEADING_FLAGS + r"""\$?["']([^"'\s]+)["']""")
URL_BARE_RE = re.compile(r"curl\s+" + _LEADING_FLAGS + r"""(https?://[^\s"']+)""")
METHOD_RE = re.compile(_FLAG + r"""(?:-X|--request)\s+["']?([A-Za-z]+)["']?""")
HEADER_RE = re.compile(_FLAG + r"(?:-H|--header)\s+" + _QUOTED)
COOKIE_RE = re.compile(_FLAG + r"(?:-b|--cookie)\s+" + _QUOTED)
DATA_RE = re.compile(
    _FLAG + r"(?:--data-raw|--data-binary|--data-urlencode|--data|-d)\s+"
    r"""(?:\$?"((?:[^"\\]|\\.)*)"|\$?'([^']*)'|([^\s"']+))"""
)


@dataclass
class ParsedCurl:
    """Request pieces recovered from a browser capture."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None

    @property
    def cookie(self) -> Optional[str]:
        return self.headers.get("Cookie")


def normalize_curl(raw: str) -> str:
    """Collapse line continuations and newlines so multi-line captures scan like one line."""
    text = re.sub(r"\\\s*\r?\n", " ", raw)
    text = re.sub(r"[\r\n]+", " ", text)
    return text.strip()


def _quoted_value(match: re.Match) -> str:
    return next((g for g in match.groups() if g is not None), "")


def parse_curl_command(raw: str) -> ParsedCurl:
    """
    Parse a "Copy as cURL" capture.

    Raises MalformedSession when no URL can be found; callers must not make
    network calls with the result in that case.
    """
    if not raw or not raw.strip():
        raise MalformedSession("empty cURL capture")

    text = normalize_curl(raw)

    url_match = URL_QUOTED_RE.search(text) or URL_BARE_RE.search(text)
    if not url_match:
        raise MalformedSession("no URL found in cURL capture")
    url = url_match.group(1).strip()

    headers: dict[str, str] = {}
    for match in HEADER_RE.finditer(text):
        content = _quoted_value(match)
        key, sep, value = content.partition(":")
        key, value = key.strip(), value.strip()
        if sep and key and value:
            headers[key] = value

    # Cookie flag wins over any Cookie header
    cookie_match = COOKIE_RE.search(text)
    if cookie_match:
        headers["Cookie"] = _quoted_value(cookie_match)

    body_parts = [_quoted_value(m) for m in DATA_RE.finditer(text)]
    body_parts = [part for part in body_parts if part]
    body = "\n".join(body_parts) if body_parts else None

    method_match = METHOD_RE.search(text)
    if method_match:
        method = method_match.group(1).upper()
    elif DATA_RE.search(text):
        method = "POST"
    else:
        method = "GET"

    return ParsedCurl(url=url, method=method, headers=headers, body=body)
