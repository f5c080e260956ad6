from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from .categories import synonyms_for
from .schemas import CuratedSource, RegistryEntry

EXACT_CATEGORY_POINTS = 6
PARTIAL_CATEGORY_POINTS = 4
KEYWORD_POINTS = 4
SYNONYM_POINTS = 2
TITLE_POINTS = 1
DOMAIN_POINTS = 1

STRONG_CATEGORY_SCORE = 4
PREFERRED_FALLBACK_LIMIT = 3


@dataclass(frozen=True)
class LinkScore:
    score: int = 0
    category_score: int = 0
    keyword_hits: int = 0


@dataclass(frozen=True)
class ScoredLink:
    entry: RegistryEntry
    score: int
    category_score: int
    keyword_hits: int


def normalize_domain(value: Optional[str]) -> str:
    """Lower-cased host without a leading ``www.``; accepts a bare domain or a URL."""
    raw = (value or "").strip().lower()
    if not raw:
        return ""
    if "://" not in raw:
        raw = "//" + raw
    try:
        host = urlparse(raw).hostname or ""
    except ValueError:
        host = ""
    if host.startswith("www."):
        host = host[4:]
    return host


def entry_domain(entry: RegistryEntry) -> str:
    return normalize_domain(entry.domain) or normalize_domain(entry.url)


def score_link(entry: RegistryEntry, prompt: Optional[str], category: Optional[str]) -> LinkScore:
    """Additive relevance score; all comparisons are case-insensitive substring checks."""
    text = (prompt or "").lower()
    cat = (category or "").strip().lower()
    score = 0
    category_score = 0
    keyword_hits = 0

    tags = [tag.lower() for tag in entry.category if tag]
    if cat and cat in tags:
        score += EXACT_CATEGORY_POINTS
        category_score = EXACT_CATEGORY_POINTS
    elif cat and any(cat in tag or tag in cat for tag in tags):
        score += PARTIAL_CATEGORY_POINTS
        category_score = max(category_score, PARTIAL_CATEGORY_POINTS)

    for keyword in entry.keywords:
        kw = keyword.strip().lower()
        if kw and kw in text:
            score += KEYWORD_POINTS
            keyword_hits += 1

    for word in synonyms_for(cat):
        if word in text:
            score += SYNONYM_POINTS

    if entry.title and entry.title.lower() in text:
        score += TITLE_POINTS
    if entry.domain and entry.domain.lower() in text:
        score += DOMAIN_POINTS

    return LinkScore(score=score, category_score=category_score, keyword_hits=keyword_hits)


def _project(entry: RegistryEntry) -> CuratedSource:
    return CuratedSource(
        id=entry.id,
        title=entry.title or entry.domain or entry.url or entry.id,
        url=entry.url,
        domain=entry.domain or entry_domain(entry) or None,
    )


def _dedupe_by_domain(entries: Iterable[RegistryEntry], limit: int) -> List[RegistryEntry]:
    seen = set()
    picked: List[RegistryEntry] = []
    for entry in entries:
        if len(picked) >= limit:
            break
        key = entry_domain(entry) or (entry.url or "").lower()
        if key in seen:
            continue
        seen.add(key)
        picked.append(entry)
    return picked


def score_entries(
    entries: Iterable[RegistryEntry], category: Optional[str], prompt: Optional[str]
) -> List[ScoredLink]:
    scored: List[ScoredLink] = []
    for entry in entries:
        if not entry.url:
            continue
        result = score_link(entry, prompt, category)
        scored.append(
            ScoredLink(
                entry=entry,
                score=result.score,
                category_score=result.category_score,
                keyword_hits=result.keyword_hits,
            )
        )
    return scored


def filter_candidates(scored: List[ScoredLink]) -> List[ScoredLink]:
    """Prefer strong topical matches, then lexical matches, then everything."""
    if not scored:
        return []
    best_category = max(item.category_score for item in scored)
    if best_category >= STRONG_CATEGORY_SCORE:
        return [item for item in scored if item.category_score >= STRONG_CATEGORY_SCORE]
    with_keywords = [item for item in scored if item.keyword_hits > 0]
    if with_keywords:
        return with_keywords
    return scored


def preferred_defaults(
    entries: Sequence[RegistryEntry], preferred_ids: Sequence[str], max_sources: int
) -> List[RegistryEntry]:
    by_id = {entry.id: entry for entry in entries if entry.url}
    defaults = [by_id[pid] for pid in preferred_ids if pid in by_id]
    return _dedupe_by_domain(defaults, min(PREFERRED_FALLBACK_LIMIT, max_sources))


def curate_sources(
    entries: Sequence[RegistryEntry],
    category: Optional[str],
    prompt: Optional[str],
    max_sources: int = 4,
    preferred_ids: Sequence[str] = (),
) -> List[CuratedSource]:
    if max_sources <= 0:
        return []
    candidates = filter_candidates(score_entries(entries, category, prompt))
    # sorted() is stable, so equal scores keep registry order.
    ranked = sorted(candidates, key=lambda item: item.score, reverse=True)
    picked = _dedupe_by_domain((item.entry for item in ranked), max_sources)
    if not picked and preferred_ids:
        picked = preferred_defaults(entries, preferred_ids, max_sources)
    return [_project(entry) for entry in picked]


def file_sources(files: Iterable[CuratedSource], existing: List[CuratedSource], max_sources: int) -> List[CuratedSource]:
    """Append file-backed citations after registry sources, deduplicated by file id."""
    merged = list(existing)
    seen = {src.file_id for src in merged if src.file_id}
    for src in files:
        if len(merged) >= max_sources:
            break
        if not src.file_id or src.file_id in seen:
            continue
        seen.add(src.file_id)
        merged.append(CuratedSource(id=src.file_id, title=src.title, file_id=src.file_id))
    return merged
