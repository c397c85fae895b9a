# assistant/ai_engine/keywords.py

import re
from typing import Iterable, List, Optional

MIN_KEYWORD_LENGTH = 3
MAX_KEYWORDS = 10

STOP_WORDS = frozenset([
    # articles
    "a", "an", "the",
    # pronouns
    "i", "me", "my", "myself", "we", "our", "ours", "ourselves", "you", "your",
    "yours", "yourself", "yourselves", "he", "him", "his", "himself", "she",
    "her", "hers", "herself", "it", "its", "itself", "they", "them", "their",
    "theirs", "themselves", "what", "which", "who", "whom", "this", "that",
    "these", "those",
    # auxiliaries
    "am", "is", "are", "was", "were", "be", "been", "being", "have", "has",
    "had", "having", "do", "does", "did", "doing", "will", "would", "should",
    "could", "ought", "might", "must", "shall", "can", "may",
    # conjunctions
    "and", "but", "if", "or", "because", "as", "until", "while", "nor", "so",
    "than", "too", "very", "then", "once",
    # prepositions
    "of", "at", "by", "for", "with", "about", "against", "between", "into",
    "through", "during", "before", "after", "above", "below", "to", "from",
    "up", "down", "in", "out", "on", "off", "over", "under", "again",
    "further", "here", "there", "when", "where", "why", "how",
    # generic task words
    "task", "tasks", "work", "need", "needs", "make", "get", "got", "go",
    "going", "thing", "things", "some", "any", "all", "both", "each", "every",
    "few", "more", "most", "other", "such", "no", "not", "only", "own", "same",
    "just", "also", "now", "new", "todo",
])

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

# Category vocabularies. A task belongs to the category sharing the most words.
CATEGORY_KEYWORDS = {
    "writing": ["write", "draft", "report", "blog", "post", "article", "email", "proposal", "document", "essay", "copy"],
    "research": ["research", "investigate", "compare", "analyze", "analysis", "study", "review", "evaluate", "survey", "read"],
    "meeting": ["meeting", "call", "sync", "standup", "interview", "presentation", "demo", "workshop", "agenda"],
    "development": ["code", "bug", "fix", "deploy", "feature", "refactor", "test", "api", "build", "release", "implement"],
    "planning": ["plan", "roadmap", "strategy", "schedule", "organize", "prepare", "outline", "budget", "goals"],
    "admin": ["invoice", "pay", "bill", "expense", "tax", "form", "submit", "renew", "file", "insurance"],
    "personal": ["gym", "workout", "doctor", "appointment", "dinner", "gift", "family", "birthday", "groceries", "clean"],
}

DEFAULT_CATEGORY = "general"


def extract_keywords(text: Optional[str]) -> List[str]:
    """
    Normalized keyword fingerprint of free text.

    Lowercases, turns punctuation into spaces, drops short tokens and stop
    words, and keeps the first ``MAX_KEYWORDS`` distinct tokens in order of
    appearance.
    """
    if not text:
        return []
    cleaned = _NON_ALNUM.sub(" ", text.lower())
    seen = []
    for word in cleaned.split():
        if len(word) < MIN_KEYWORD_LENGTH or word in STOP_WORDS or word in seen:
            continue
        seen.append(word)
        if len(seen) == MAX_KEYWORDS:
            break
    return seen


def task_keywords(title: str, description: Optional[str] = None) -> List[str]:
    return extract_keywords(f"{title} {description or ''}")


def categorize(keywords: Iterable[str]) -> str:
    words = set(keywords)
    best, best_hits = DEFAULT_CATEGORY, 0
    # dict order breaks ties
    for category, vocabulary in CATEGORY_KEYWORDS.items():
        hits = len(words.intersection(vocabulary))
        if hits > best_hits:
            best, best_hits = category, hits
    return best
