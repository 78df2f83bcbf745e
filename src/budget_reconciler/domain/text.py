import re
from collections import Counter
from collections.abc import Iterable

from rapidfuzz import fuzz

_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"[a-z0-9]+")
# Trailing reference numbers such as "1234", "#5521", "*0042" or "ref 77-12"
_TRAILING_REFERENCE_RE = re.compile(r"(?:\s+(?:ref\.?|no\.?)?\s*[#*]?\d[\d/-]*)+$", re.IGNORECASE)
_CARD_PREFIX_RE = re.compile(r"^(?:visa|mastercard|debit|credit)\s*", re.IGNORECASE)
_COMPANY_SUFFIX_RE = re.compile(r"\s*\b(?:inc|llc|ltd|as|asa)\.?$", re.IGNORECASE)
_DOMAIN_SUFFIX_RE = re.compile(r"\.(?:com|net|org|io|co)\b", re.IGNORECASE)

NOISE_WORDS = frozenset({
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "visa", "mastercard", "debit", "credit", "card", "payment", "purchase", "pos",
    "inc", "llc", "ltd", "as", "asa", "corp", "company", "www", "com",
})


def normalize_description(description: str) -> str:
    """Lower-case, trim, collapse whitespace and drop trailing reference numerals."""
    collapsed = _WHITESPACE_RE.sub(" ", description.strip().lower())
    stripped = _TRAILING_REFERENCE_RE.sub("", collapsed).strip()
    return stripped or collapsed


def tokenize(description: str) -> list[str]:
    return _TOKEN_RE.findall(normalize_description(description))


def significant_tokens(description: str) -> list[str]:
    """Tokens that identify a merchant: no digits, no noise words, unique, in order."""
    tokens: list[str] = []
    seen = set()
    for token in tokenize(description):
        if len(token) < 2 or token in NOISE_WORDS or any(ch.isdigit() for ch in token):
            continue
        if token not in seen:
            tokens.append(token)
            seen.add(token)
    return tokens


def loose_key(description: str) -> str:
    return " ".join(sorted(significant_tokens(description)))


def common_tokens(descriptions: Iterable[str]) -> list[str]:
    """Significant tokens shared by every description, ordered as in the first one."""
    token_lists = [significant_tokens(description) for description in descriptions]
    if not token_lists:
        return []
    shared = set(token_lists[0])
    for tokens in token_lists[1:]:
        shared &= set(tokens)
    return [token for token in token_lists[0] if token in shared]


def token_set_ratio(left: str, right: str) -> float:
    """Token-set overlap of two strings in [0, 1]."""
    if not left or not right:
        return 0.0
    return fuzz.token_set_ratio(left, right) / 100.0


def name_similarity(left: str, right: str) -> float:
    return token_set_ratio(normalize_description(left), normalize_description(right))


def most_common(values: Iterable[str]) -> str | None:
    counts = Counter(value for value in values if value)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def guess_name(description: str) -> str:
    name = _CARD_PREFIX_RE.sub("", description.strip())
    name = _TRAILING_REFERENCE_RE.sub("", name).strip()
    name = _DOMAIN_SUFFIX_RE.sub("", name)
    name = _COMPANY_SUFFIX_RE.sub("", name)
    name = _WHITESPACE_RE.sub(" ", name.replace(".", " ")).strip()
    return name.title() or "Unknown Subscription"
