"""Final text pass over the assistant answer.

The widget renders its own curated source list, so the model's answer is
cleaned before it is returned:

* ``SOURCES_HEADING`` matches a line that is only a Sources / References /
  Further reading / Citations heading, optionally prefixed with ``#`` marks or
  wrapped in ``**``/``__`` and optionally ending in ``:``. Everything from the
  first such line to the end of the text is dropped.
* ``MARKDOWN_LINK`` matches ``[text](url)``. The link text may contain one
  level of nested brackets and the URL one level of balanced parentheses.
  Links whose URL is not a curated source become ``text (link unavailable)``.
* ``BARE_URL`` matches ``http(s)://`` and ``www.`` URLs outside markdown links.
  Trailing sentence punctuation is not part of the URL. Uncurated URLs are
  followed by `` (link unavailable)`` unless the marker is already there.
* ``PLACEHOLDER`` matches ``[insert link]``, ``[link]``, ``[URL]``,
  ``(insert link here)`` and similar. They become ``see <host>`` (bare host, no
  ``www.``) for the first curated source with a domain or URL, or the unavailable marker.
"""
import logging
import re
from typing import Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse

from .curation import normalize_domain
from .liveness import UNAVAILABLE_MARKER
from .schemas import CuratedSource, ThreadMessage

logger = logging.getLogger("uvicorn.error")

NO_RESPONSE = "No response"

SOURCES_HEADING = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]*)?(?:\*\*|__)?[ \t]*"
    r"(?:sources|references|further reading|citations)"
    r"[ \t]*:?[ \t]*(?:\*\*|__)?[ \t]*:?[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)

_URL_BODY = r"(?:[^\s()<>\[\]]|\([^\s()<>]*\))+"

MARKDOWN_LINK = re.compile(
    r"\[(?P<text>(?:[^\[\]]|\[[^\[\]]*\])*)\]"
    r"\(\s*<?(?P<url>(?:https?://|www\.)" + _URL_BODY + r")>?\s*\)",
    re.IGNORECASE,
)

BARE_URL = re.compile(r"(?<![\w@/.])(?P<url>(?:https?://|www\.)" + _URL_BODY + r")", re.IGNORECASE)

PLACEHOLDER = re.compile(
    r"\[\s*(?:insert\s+)?(?:link|url)(?:\s+here)?\s*\](?!\()"
    r"|\(\s*insert\s+(?:link|url)(?:\s+here)?\s*\)",
    re.IGNORECASE,
)

CITATION_MARKER = re.compile(r"【[^】]*】")

_TRAILING_PUNCT = ".,;:!?*'\""
_STASH = "\x00{}\x00"
_STASH_RE = re.compile(r"\x00(\d+)\x00")


def normalize_url(url: str) -> str:
    """Comparison key: scheme-less, lower-cased host without ``www.``, no trailing slash."""
    raw = (url or "").strip()
    if raw.lower().startswith("www."):
        raw = "https://" + raw
    try:
        parsed = urlparse(raw)
    except ValueError:
        return raw.lower()
    host = (parsed.netloc or "").lower()
    if host.startswith("www."):
        host = host[4:]
    path = parsed.path.rstrip("/")
    key = f"{host}{path}"
    if parsed.query:
        key += f"?{parsed.query}"
    return key


def allowed_urls(sources: Iterable[CuratedSource]) -> Set[str]:
    return {normalize_url(src.url) for src in sources if src.url}


def strip_sources_section(text: str) -> str:
    match = SOURCES_HEADING.search(text)
    if not match:
        return text
    return text[: match.start()].rstrip()


def _split_trailing_punct(url: str) -> Tuple[str, str]:
    core = url
    while core and core[-1] in _TRAILING_PUNCT:
        core = core[:-1]
    # A closing paren belongs to the URL only when it is balanced.
    while core.endswith(")") and core.count(")") > core.count("("):
        core = core[:-1]
    return core, url[len(core):]


def rewrite_links(text: str, allowed: Set[str]) -> str:
    stash: List[str] = []

    def _markdown(match: "re.Match[str]") -> str:
        link_text = match.group("text").strip()
        if normalize_url(match.group("url")) in allowed:
            stash.append(match.group(0))
            return _STASH.format(len(stash) - 1)
        label = link_text or match.group("url")
        return f"{label} {UNAVAILABLE_MARKER}"

    def _bare(match: "re.Match[str]") -> str:
        core, tail = _split_trailing_punct(match.group("url"))
        if not core or normalize_url(core) in allowed:
            return match.group(0)
        if not tail and match.string[match.end():].startswith(" " + UNAVAILABLE_MARKER):
            return match.group(0)
        return f"{core} {UNAVAILABLE_MARKER}{tail}"

    text = MARKDOWN_LINK.sub(_markdown, text)
    text = BARE_URL.sub(_bare, text)
    return _STASH_RE.sub(lambda m: stash[int(m.group(1))], text)


def replace_placeholders(text: str, sources: List[CuratedSource]) -> str:
    # Bare host only; never "www." or a scheme.
    hosts = (normalize_domain(src.domain or src.url) for src in sources)
    domain = next((host for host in hosts if host), None)
    replacement = f"see {domain}" if domain else UNAVAILABLE_MARKER
    return PLACEHOLDER.sub(replacement, text)


def assemble(raw_text: str, sources: List[CuratedSource]) -> str:
    text = CITATION_MARKER.sub("", raw_text or "")
    text = strip_sources_section(text)
    text = rewrite_links(text, allowed_urls(sources))
    text = replace_placeholders(text, sources)
    return text.strip()


def safe_assemble(raw_text: str, sources: List[CuratedSource]) -> str:
    """Assembly is cosmetic; on any failure the raw answer is returned."""
    try:
        return assemble(raw_text, sources)
    except Exception:
        logger.exception("Response assembly failed; returning raw answer")
        return raw_text


def extract_output(message: Optional[ThreadMessage]) -> str:
    text = message.text if message is not None else None
    if not text:
        logger.warning("Assistant message had no text block")
        return NO_RESPONSE
    return text
