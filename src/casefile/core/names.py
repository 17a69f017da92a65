"""Person name normalization and pairwise identity matching."""

import re
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Set

_HONORIFICS = re.compile(r"\b(dr|mr|mrs|ms|miss|jr|sr|ii|iii|iv)\b\.?")
_NON_LETTERS = re.compile(r"[^a-z\s]")
_WHITESPACE = re.compile(r"\s+")

# Nickname -> canonical first name
NICKNAMES: Dict[str, str] = {
    "bob": "robert", "rob": "robert", "bobby": "robert", "robby": "robert",
    "bill": "william", "billy": "william", "will": "william", "willy": "william",
    "jim": "james", "jimmy": "james", "jes": "james", "jamie": "james",
    "mike": "michael", "mikey": "michael",
    "dick": "richard", "rick": "richard", "rich": "richard", "ricky": "richard",
    "tom": "thomas", "tommy": "thomas",
    "joe": "joseph", "joey": "joseph",
    "jack": "john", "johnny": "john", "jon": "john",
    "ted": "theodore", "teddy": "theodore",
    "ed": "edward", "eddie": "edward",
    "al": "albert", "bert": "albert",
    "alex": "alexander", "sandy": "alexander",
    "dan": "daniel", "danny": "daniel",
    "dave": "david", "davy": "david",
    "steve": "steven", "stevie": "steven",
    "chris": "christopher",
    "nick": "nicholas", "nicky": "nicholas",
    "tony": "anthony",
    "larry": "lawrence", "laurence": "lawrence",
    "charlie": "charles", "chuck": "charles",
    "harry": "henry", "hank": "henry",
    "greg": "gregory",
    "matt": "matthew",
    "pat": "patrick",
    "pete": "peter",
    "sam": "samuel",
    "ben": "benjamin",
    "ken": "kenneth", "kenny": "kenneth",
    "meg": "megan", "meghan": "megan",
}

# Strategy names, most precise first
EXACT = "exact"
SPACELESS = "spaceless"
SORTED_TOKENS = "sorted_tokens"
EDIT_DISTANCE = "edit_distance"
NICKNAME = "nickname"
ALIAS = "alias"
STRATEGIES = (EXACT, SPACELESS, SORTED_TOKENS, EDIT_DISTANCE, NICKNAME, ALIAS)


@lru_cache(maxsize=65536)
def normalize_name(name: str) -> str:
    """
    Normalize a person name for comparison.

    Lowercases, turns "Last, First" into "First Last", strips honorifics and
    generational suffixes, drops punctuation and collapses whitespace.
    """
    n = name.lower()

    if "," in n:
        parts = [s.strip() for s in n.split(",")]
        if len(parts) == 2 and parts[1]:
            n = f"{parts[1]} {parts[0]}"

    n = _HONORIFICS.sub("", n)
    n = n.replace(".", "")
    n = _NON_LETTERS.sub("", n)
    return _WHITESPACE.sub(" ", n).strip()


def collapse_ocr_spaces(name: str) -> str:
    """Merge OCR-split fragments: "j effrey epstein" -> "jeffrey epstein"."""
    parts = name.split(" ")
    merged: List[str] = []
    i = 0
    while i < len(parts):
        part = parts[i]
        if len(part) == 1 and i + 1 < len(parts):
            merged.append(part + parts[i + 1])
            i += 2
            continue
        if len(part) <= 2 and merged and len(merged[-1]) > 1:
            merged[-1] += part
        else:
            merged.append(part)
        i += 1
    return " ".join(merged)


def canonical_first_name(first: str) -> str:
    return NICKNAMES.get(first, first)


def spaceless_key(name: str) -> str:
    return _WHITESPACE.sub("", name)


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance."""
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


def tokens(normalized: str) -> List[str]:
    return [t for t in normalized.split(" ") if t]


def _prefix_related(a: str, b: str) -> bool:
    return a.startswith(b) or b.startswith(a)


def _edit_distance_match(parts_a: List[str], parts_b: List[str], norm_a: str, norm_b: str) -> bool:
    first_a, last_a = parts_a[0], parts_a[-1]
    first_b, last_b = parts_b[0], parts_b[-1]

    if last_a == last_b and len(last_a) >= 3:
        # "J. Smith" / "James Smith", "Ghisaine" / "Ghislaine"
        if _prefix_related(first_a, first_b):
            return True
        if len(first_a) >= 4 and len(first_b) >= 4 and edit_distance(first_a, first_b) <= 2:
            return True

        # Skip leading initials: "R. Alexander Acosta" / "Alexander Acosta"
        real_a = next((p for p in parts_a if len(p) >= 2), first_a)
        real_b = next((p for p in parts_b if len(p) >= 2), first_b)
        if (real_a != first_a or real_b != first_b) and len(real_a) >= 3 and len(real_b) >= 3:
            if _prefix_related(real_a, real_b):
                return True

    if len(last_a) >= 5 and len(last_b) >= 5 and edit_distance(last_a, last_b) <= 1:
        if first_a == first_b and len(first_a) >= 3:
            return True
        if len(first_a) >= 3 and len(first_b) >= 3 and _prefix_related(first_a, first_b):
            return True

    # Same first name, one surname a prefix of the other: "Mennin" / "Menninger"
    if first_a == first_b and len(first_a) >= 3:
        short_last, long_last = sorted([last_a, last_b], key=len)
        if len(short_last) >= 4 and long_last.startswith(short_last):
            return True

    # Extra words around the same name: "David Perry QC" / "David Perry"
    if len(norm_a) >= 8 and len(norm_b) >= 8 and len(norm_a) != len(norm_b):
        shorter, longer = sorted([norm_a, norm_b], key=len)
        shorter_parts, longer_parts = tokens(shorter), tokens(longer)
        if len(shorter_parts) >= 2 and shorter in longer:
            if longer.startswith(shorter) or shorter_parts[0] == longer_parts[0]:
                return True

    if len(norm_a) >= 10 and len(norm_b) >= 10 and edit_distance(norm_a, norm_b) <= 2:
        if first_a == first_b and len(last_a) >= 4 and len(last_b) >= 4 and edit_distance(last_a, last_b) <= 2:
            return True
        if last_a == last_b and len(first_a) >= 3 and len(first_b) >= 3 and edit_distance(first_a, first_b) <= 2:
            return True

    return False


def _nickname_match(parts_a: List[str], parts_b: List[str]) -> bool:
    first_a, last_a = parts_a[0], parts_a[-1]
    first_b, last_b = parts_b[0], parts_b[-1]
    canon_a, canon_b = canonical_first_name(first_a), canonical_first_name(first_b)

    if last_a == last_b and len(last_a) >= 3:
        if canon_a == canon_b or _prefix_related(canon_a, canon_b):
            return True
        real_a = canonical_first_name(next((p for p in parts_a if len(p) >= 2), first_a))
        real_b = canonical_first_name(next((p for p in parts_b if len(p) >= 2), first_b))
        if len(real_a) >= 3 and len(real_b) >= 3 and _prefix_related(real_a, real_b):
            return True

    if len(last_a) >= 5 and len(last_b) >= 5 and edit_distance(last_a, last_b) <= 1 and canon_a == canon_b:
        return True

    # "Megan Markel" / "Meghan Markle"
    if len(last_a) >= 6 and len(last_b) >= 6 and edit_distance(last_a, last_b) <= 2:
        if canon_a == canon_b and len(canon_a) >= 3:
            return True

    return False


def match_strategy(
    name_a: str,
    name_b: str,
    aliases_a: Sequence[str] = (),
    aliases_b: Sequence[str] = ()
) -> Optional[str]:
    """
    Decide whether two names refer to the same individual.

    Returns:
        Name of the first strategy that matched, or None. Names with fewer
        than two tokens never match here.
    """
    norm_a, norm_b = normalize_name(name_a), normalize_name(name_b)
    parts_a, parts_b = tokens(norm_a), tokens(norm_b)
    if len(parts_a) < 2 or len(parts_b) < 2:
        return None

    if norm_a == norm_b:
        return EXACT

    if len(norm_a) >= 6 and spaceless_key(norm_a) == spaceless_key(norm_b):
        return SPACELESS
    if collapse_ocr_spaces(norm_a) == collapse_ocr_spaces(norm_b):
        return SPACELESS

    if sorted(parts_a) == sorted(parts_b):
        return SORTED_TOKENS

    if _edit_distance_match(parts_a, parts_b, norm_a, norm_b):
        return EDIT_DISTANCE

    if _nickname_match(parts_a, parts_b):
        return NICKNAME

    normalized_aliases_a = {normalize_name(a) for a in aliases_a or ()}
    normalized_aliases_b = {normalize_name(b) for b in aliases_b or ()}
    if norm_b in normalized_aliases_a or norm_a in normalized_aliases_b:
        return ALIAS

    return None


def is_same_person(name_a: str, name_b: str, aliases_a: Sequence[str] = (), aliases_b: Sequence[str] = ()) -> bool:
    return match_strategy(name_a, name_b, aliases_a, aliases_b) is not None


def blocking_keys(name: str, aliases: Sequence[str] = ()) -> Set[str]:
    """
    Bucket keys for candidate generation.

    Any two names a strategy can match share at least one key, so pairwise
    checks only need to run within buckets.
    """
    keys: Set[str] = set()
    for variant in [name, *(aliases or ())]:
        norm = normalize_name(variant)
        parts = tokens(norm)
        if not parts:
            continue
        for token in parts + tokens(collapse_ocr_spaces(norm)):
            if len(token) >= 2:
                keys.add(f"tok:{token}")
        keys.add(f"sorted:{' '.join(sorted(parts))}")
        keys.add(f"first3:{parts[0][:3]}")
        keys.add(f"canon:{canonical_first_name(parts[0])}")
        keys.add(f"space:{spaceless_key(norm)[:4]}")
    return keys
