import re
from typing import Callable

# Requests the coach never forwards to the model: file production and off-topic creation.
FILE_FORMAT_PATTERNS = [
    r"\bpdf\b",
    r"\bdocx?\b",
    r"\bpptx?\b",
    r"\bpowerpoint\b",
    r"\bword (?:dosyası|belgesi|document|file)\b",
]

# Stems match inflected forms ("oluştur" covers "oluşturur", "oluşturabilir misin").
CREATION_VERB_PATTERNS = [
    r"\boluştur",
    r"\büret",
    r"\byap\b",
    r"\byapar m",
    r"\btasarla",
    r"\bçiz",
    r"\byaz\b",
    r"\byazar m",
    r"\bcreate",
    r"\bgenerate",
    r"\bmake\b",
    r"\bdesign",
    r"\bdraw",
    r"\bwrite\b",
]

DISALLOWED_TARGET_PATTERNS = [
    r"\bgörsel",
    r"\bresim",
    r"\bfotoğraf",
    r"\blogo",
    r"\bvideo",
    r"\bkod",
    r"\bscript",
    r"\bweb ?site",
    r"\buygulama",
    r"\bimage",
    r"\bpicture",
    r"\bcode\b",
    r"\bapp\b",
]

REFUSAL_MESSAGES = {
    "tr": "Ben bir FitCal AI kalori koçuyum, bu isteği yerine getiremiyorum.",
    "en": "I am a FitCal AI calorie coach, so I can't help with this request.",
}

RefusalPolicy = Callable[[str], bool]


def _compile(patterns: list[str]) -> list[re.Pattern[str]]:
    return [re.compile(pattern, flags=re.IGNORECASE) for pattern in patterns]


_FILE_FORMATS = _compile(FILE_FORMAT_PATTERNS)
_CREATION_VERBS = _compile(CREATION_VERB_PATTERNS)
_DISALLOWED_TARGETS = _compile(DISALLOWED_TARGET_PATTERNS)


def _normalize(message: str) -> str:
    # str.lower() turns the Turkish dotted capital I into "i" plus a combining dot.
    return (message or "").replace("İ", "i").lower()


def mentions_file_format(message: str) -> bool:
    lowered = _normalize(message)
    return any(pattern.search(lowered) for pattern in _FILE_FORMATS)


def asks_for_off_topic_creation(message: str) -> bool:
    lowered = _normalize(message)
    has_verb = any(pattern.search(lowered) for pattern in _CREATION_VERBS)
    if not has_verb:
        return False
    return any(pattern.search(lowered) for pattern in _DISALLOWED_TARGETS)


def is_refused_request(message: str) -> bool:
    """Keyword heuristic; false positives and negatives are accepted."""
    return mentions_file_format(message) or asks_for_off_topic_creation(message)


def refusal_text(language: str = "tr") -> str:
    return REFUSAL_MESSAGES.get((language or "tr")[:2].lower(), REFUSAL_MESSAGES["tr"])
