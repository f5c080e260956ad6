import re
from typing import Dict, List, Optional

# Declaration order is the tie-break order for infer_category.
CATEGORY_SYNONYMS: Dict[str, List[str]] = {
    "physical": [
        "injury",
        "rehab",
        "rehabilitation",
        "fitness",
        "exercise",
        "pain",
        "knee",
        "shoulder",
        "hip",
        "ankle",
        "physio",
        "physiotherapy",
        "mobility",
        "strength",
    ],
    "psychological": ["mental", "mood", "anxiety", "depression", "stress", "relationship", "support"],
    "brain-health": [
        "concussion",
        "cte",
        "head knock",
        "post-concussion",
        "headache",
        "light sensitivity",
        "memory",
        "thinking",
        "cognition",
    ],
    "career": [
        "work",
        "job",
        "resume",
        "cv",
        "learning",
        "course",
        "study",
        "scholarship",
        "networking",
        "mentoring",
    ],
    "family": ["partner", "carer", "caregiver", "family", "community", "alumni", "regional"],
    "cultural": ["indigenous", "aboriginal", "torres strait", "culturally", "spiritual", "faith"],
    "identity": ["identity", "foreclosure", "retirement", "lgbtqi", "gender", "sexuality", "inclusion"],
    "financial": ["money", "budget", "grant", "superannuation", "financial", "cost"],
    "environmental": ["alcohol", "drugs", "gambling", "dependency", "addiction"],
    "female": ["women", "female", "motherhood", "menstrual", "pregnancy", "aflw"],
}

_PHYSICAL_FAST_PATH = re.compile(
    r"\b(knee|shoulder|ankle|hip|physio|physiotherapy|rehab|exercise|pain)\b"
)

_SYNONYM_PATTERNS: Dict[str, List["re.Pattern[str]"]] = {
    category: [re.compile(r"\b" + re.escape(word)) for word in words]
    for category, words in CATEGORY_SYNONYMS.items()
}


def synonyms_for(category: Optional[str]) -> List[str]:
    if not category:
        return []
    return CATEGORY_SYNONYMS.get(category.strip().lower(), [])


def infer_category(text: Optional[str]) -> Optional[str]:
    """Map free text to a category.

    Injury terms short-circuit to ``physical``. Otherwise the category with the
    strictly highest count of synonym hits wins. A synonym counts when it starts
    a word, so "knees" and "rehabilitation" hit while "relationship" does not
    hit "hip". On a tie the category declared first in ``CATEGORY_SYNONYMS`` is
    kept. Returns None with no hits.
    """
    lowered = (text or "").lower()
    if not lowered:
        return None
    if _PHYSICAL_FAST_PATH.search(lowered):
        return "physical"
    best: Optional[str] = None
    best_hits = 0
    for category, patterns in _SYNONYM_PATTERNS.items():
        hits = sum(1 for pattern in patterns if pattern.search(lowered))
        if hits > best_hits:
            best = category
            best_hits = hits
    return best


def resolve_category(label: Optional[str], message: Optional[str]) -> Optional[str]:
    """An explicit label from the widget wins over inference."""
    cleaned = (label or "").strip().lower()
    if cleaned:
        return cleaned
    if message:
        return infer_category(message)
    return None
