"""Tier 0: free, deterministic rule-based document classification.

Matches text against a dictionary of known individuals, ordered document-type
patterns, a date pattern and a small location gazetteer. Never infers
connections or events and never touches the network.
"""

import re
from typing import Dict, List, Optional, Tuple

from .models import AnalysisResult, PersonMention, Tier

CONTEXT_WINDOW = 40  # characters on each side of a hit (~80 total)

# name -> (role, category)
KNOWN_PERSONS: Dict[str, Tuple[str, str]] = {
    "jeffrey epstein": ("Accused", "key figure"),
    "ghislaine maxwell": ("Co-conspirator", "key figure"),
    "virginia giuffre": ("Accuser", "victim"),
    "virginia roberts": ("Accuser", "victim"),
    "sarah kellen": ("Assistant", "staff"),
    "nadia marcinkova": ("Associate", "associate"),
    "adriana ross": ("Assistant", "staff"),
    "lesley groff": ("Executive assistant", "staff"),
    "jean-luc brunel": ("Modeling agent", "associate"),
    "johanna sjoberg": ("Witness", "witness"),
    "alan dershowitz": ("Attorney", "legal"),
    "alexander acosta": ("U.S. Attorney", "legal"),
    "prince andrew": ("Royal", "associate"),
    "bill clinton": ("Former President", "political"),
    "donald trump": ("Businessman", "political"),
    "bill richardson": ("Former Governor", "political"),
    "george mitchell": ("Former Senator", "political"),
    "ehud barak": ("Former Prime Minister", "political"),
    "larry summers": ("Economist", "associate"),
    "les wexner": ("Businessman", "associate"),
    "leon black": ("Financier", "associate"),
    "glenn dubin": ("Financier", "associate"),
    "eva andersson-dubin": ("Physician", "associate"),
    "jes staley": ("Banker", "associate"),
    "peter mandelson": ("Politician", "political"),
    "marvin minsky": ("Scientist", "associate"),
    "lawrence krauss": ("Scientist", "associate"),
    "reid hoffman": ("Investor", "associate"),
    "bill gates": ("Businessman", "associate"),
    "steve bannon": ("Political strategist", "political"),
}

# Ordered; first match wins
DOCUMENT_TYPE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"flight log|flight manifest|passenger", re.I), "flight log"),
    (re.compile(r"grand jury", re.I), "grand jury transcript"),
    (re.compile(r"deposition|deposed|videotaped testimony", re.I), "deposition"),
    (re.compile(r"\bFD-302\b|\bform 302\b|federal bureau of investigation", re.I), "fbi report"),
    (re.compile(r"search warrant|affidavit in support", re.I), "search warrant"),
    (re.compile(r"indictment|united states district court|plaintiff|defendant", re.I), "court filing"),
    (re.compile(r"^\s*(from|to|subject|sent):", re.I | re.M), "correspondence"),
    (re.compile(r"wire transfer|account number|bank statement|ledger", re.I), "financial record"),
    (re.compile(r"incident report|police department|offense report", re.I), "police report"),
    (re.compile(r"property|deed|parcel", re.I), "property record"),
]
DEFAULT_DOCUMENT_TYPE = "government record"

DATE_PATTERN = re.compile(
    r"\b(?:"
    r"\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}/\d{1,2}/\d{2,4}"
    r"|(?:January|February|March|April|May|June|July|August|September|October|November|December)"
    r"\s+\d{1,2},\s+\d{4}"
    r")\b"
)

LOCATION_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\bpalm beach\b", re.I), "Palm Beach, Florida"),
    (re.compile(r"\bnew york\b|\bmanhattan\b", re.I), "New York, New York"),
    (re.compile(r"\blittle st\.? james\b", re.I), "Little St. James, U.S. Virgin Islands"),
    (re.compile(r"\bvirgin islands\b", re.I), "U.S. Virgin Islands"),
    (re.compile(r"\bzorro ranch\b|\bstanley,? new mexico\b", re.I), "Zorro Ranch, New Mexico"),
    (re.compile(r"\bparis\b", re.I), "Paris, France"),
    (re.compile(r"\blondon\b", re.I), "London, United Kingdom"),
]


def _proper_case(name: str) -> str:
    return " ".join(part[:1].upper() + part[1:] for part in name.split())


def _context_around(text: str, start: int, end: int) -> str:
    lo = max(0, start - CONTEXT_WINDOW)
    hi = min(len(text), end + CONTEXT_WINDOW)
    return re.sub(r"\s+", " ", text[lo:hi]).strip()


def find_known_persons(text: str) -> List[PersonMention]:
    """Find dictionary individuals with their hit count and a context window."""
    mentions = []
    for known_name, (role, category) in KNOWN_PERSONS.items():
        pattern = re.compile(rf"\b{re.escape(known_name)}\b", re.I)
        hits = list(pattern.finditer(text))
        if not hits:
            continue
        first = hits[0]
        mentions.append(PersonMention(
            name=_proper_case(known_name),
            role=role,
            category=category,
            context=_context_around(text, first.start(), first.end()),
            mention_count=len(hits),
        ))
    return mentions


def infer_document_type(text: str) -> str:
    """Return the first matching document type, else the default."""
    for pattern, document_type in DOCUMENT_TYPE_PATTERNS:
        if pattern.search(text):
            return document_type
    return DEFAULT_DOCUMENT_TYPE


def find_first_date(text: str) -> Optional[str]:
    match = DATE_PATTERN.search(text)
    return match.group(0) if match else None


def find_locations(text: str) -> List[str]:
    return [label for pattern, label in LOCATION_PATTERNS if pattern.search(text)]


def classify_document(
    text: str,
    file_name: str = "",
    data_set: str = "unknown",
    analyzed_at: str = ""
) -> AnalysisResult:
    """
    Run the free rule-based pass over a document.

    Args:
        text: Extracted document text; may be empty
        file_name: Stable document identifier
        data_set: Source collection id
        analyzed_at: Timestamp to stamp on the result, supplied by the caller

    Returns:
        AnalysisResult with persons, type, date and locations; no connections or events
    """
    text = text or ""
    persons = find_known_persons(text)
    document_type = infer_document_type(text) if text.strip() else DEFAULT_DOCUMENT_TYPE

    if not text.strip():
        summary = "No extracted text available; classified from metadata only."
    elif persons:
        names = ", ".join(p.name for p in persons[:5])
        summary = f"Rule-based classification as {document_type}; mentions {names}."
    else:
        summary = f"Rule-based classification as {document_type}."

    return AnalysisResult(
        file_name=file_name,
        data_set=data_set,
        document_type=document_type,
        date_original=find_first_date(text),
        summary=summary,
        persons=persons,
        connections=[],
        events=[],
        locations=find_locations(text),
        key_facts=[],
        tier=Tier.RULE_BASED,
        cost_cents=0.0,
        input_tokens=0,
        output_tokens=0,
        analyzed_at=analyzed_at,
    )
