"""
Sentiment and priority heuristics for comments, mentions and messages.

Keyword matching only: score = positive / (positive + negative) over the
lower-cased word tokens, 0.5 when no keyword is present.
"""
from __future__ import annotations

import re
from typing import Any, Iterable

from engagement_hub.db.models.social_media_mention import (
    EngagementPriority,
    MentionContext,
    MentionType,
)
from engagement_hub.db.models.social_media_message import MessageType

NEUTRAL_SCORE = 0.5
POSITIVE_THRESHOLD = 0.6
NEUTRAL_THRESHOLD = 0.4
HIGH_INFLUENCE_FOLLOWERS = 10_000

_BASE_POSITIVE = frozenset(
    "love amazing great awesome fantastic wonderful excellent perfect beautiful happy".split()
)
_BASE_NEGATIVE = frozenset(
    "hate terrible awful bad worst disappointed angry upset problem issue".split()
)

COMMENT_POSITIVE_WORDS = _BASE_POSITIVE
COMMENT_NEGATIVE_WORDS = _BASE_NEGATIVE
MENTION_POSITIVE_WORDS = _BASE_POSITIVE | {"good", "best"}
MENTION_NEGATIVE_WORDS = _BASE_NEGATIVE | {"horrible"}
MESSAGE_POSITIVE_WORDS = _BASE_POSITIVE | {"thanks"}
MESSAGE_NEGATIVE_WORDS = _BASE_NEGATIVE | {"horrible"}

FLAGGED_KEYWORDS = (
    "complaint", "problem", "issue", "bad", "terrible",
    "worst", "hate", "awful", "disappointed", "refund",
)
COMPLAINT_KEYWORDS = (
    "problem", "issue", "complaint", "bad", "terrible",
    "awful", "disappointed", "refund", "help", "support",
)
COMPLIMENT_KEYWORDS = (
    "love", "amazing", "awesome", "great", "fantastic",
    "wonderful", "beautiful", "perfect", "excellent",
)
PROFANITY_WORDS = frozenset({"spam", "fake", "scam", "stupid", "idiot"})

_LANGUAGE_INDICATORS = (
    ("en", frozenset("the and or but with for this that".split())),
    ("es", frozenset("el la de que en un una".split())),
    ("fr", frozenset("le la de et est dans".split())),
)

_WORD_RE = re.compile(r"\w+")
_QUESTION_WORDS_RE = re.compile(r"\b(what|how|when|where|why|which|can|could|would|should)\b", re.I)
_MENTION_QUESTION_RE = re.compile(
    r"\b(what|how|when|where|why|which|can|could|would|should|is|are|do|does)\b", re.I
)
_HANDLE_RE = re.compile(r"@\w+")
_HASHTAG_RE = re.compile(r"#\w+")
_TAG_FRIEND_RE = re.compile(r"\b(check|look|see)\b", re.I)
_REPOST_RE = re.compile(r"\b(repost|share|feature)\b", re.I)
_REPEATED_CHARS_RE = re.compile(r"(.)\1{4,}")
_EMOJI_RE = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF\U0001F1E0-\U0001F1FF]"
)
_PROMOTIONAL_RES = (
    re.compile(r"bit\.ly/\w+"),
    re.compile(r"tinyurl\.com/\w+"),
    re.compile(r"goo\.gl/\w+"),
    re.compile(r"www\.\w+\.com"),
    re.compile(r"https?://\w+"),
    re.compile(r"\b(buy|purchase|discount|deal|offer|sale)\b.*\b(link|url|site|website)\b", re.I),
)
_BOT_RES = (
    re.compile(r"^(nice|good|great|amazing)\s*(post|pic|photo|content)[\s!]*$", re.I),
    re.compile(r"^(love|like)\s*(this|it)[\s!]*$", re.I),
    re.compile(r"^follow\s+me[\s!]*$", re.I),
)
_HARASSMENT_RES = (
    re.compile(r"you\s+(are|suck|stupid)", re.I),
    re.compile(r"shut\s+up", re.I),
    re.compile(r"go\s+away", re.I),
    re.compile(r"nobody\s+cares", re.I),
)
_THREAT_RES = (
    re.compile(r"i('ll|\s+will)\s+report", re.I),
    re.compile(r"you('ll|\s+will)\s+regret", re.I),
    re.compile(r"watch\s+out", re.I),
    re.compile(r"i\s+know\s+where", re.I),
)


def tokenize(text: str | None) -> list[str]:
    if not text:
        return []
    return _WORD_RE.findall(text.lower())


def sentiment_score(
    text: str | None,
    positive_words: Iterable[str] = COMMENT_POSITIVE_WORDS,
    negative_words: Iterable[str] = COMMENT_NEGATIVE_WORDS,
) -> float:
    """Fraction of sentiment keywords that are positive; always within [0, 1]."""
    positive_words = frozenset(positive_words)
    negative_words = frozenset(negative_words)
    positive = negative = 0
    for word in tokenize(text):
        if word in positive_words:
            positive += 1
        elif word in negative_words:
            negative += 1
    total = positive + negative
    if total == 0:
        return NEUTRAL_SCORE
    return positive / total


def sentiment_label(score: float | None) -> str:
    if score is None:
        return "unknown"
    if score >= POSITIVE_THRESHOLD:
        return "positive"
    if score >= NEUTRAL_THRESHOLD:
        return "neutral"
    return "negative"


# ─── Comments ────────────────────────────────────────────────────────────────

def comment_sentiment(text: str | None) -> float:
    return sentiment_score(text, COMMENT_POSITIVE_WORDS, COMMENT_NEGATIVE_WORDS)


def contains_flagged_keywords(text: str | None) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(keyword in lowered for keyword in FLAGGED_KEYWORDS)


def comment_requires_attention(text: str | None, score: float | None) -> bool:
    return sentiment_label(score) == "negative" or contains_flagged_keywords(text)


def detect_language(text: str | None) -> str:
    """Very rough en/es/fr guess from function words; "unknown" when none match"""
    words = tokenize(text)
    best_language, best_count = "unknown", 0
    for language, indicators in _LANGUAGE_INDICATORS:
        count = sum(1 for word in words if word in indicators)
        if count > best_count:
            best_language, best_count = language, count
    return best_language


def extract_mentions_and_hashtags(text: str | None) -> dict[str, list[str]]:
    if not text:
        return {"mentions": [], "hashtags": []}
    return {
        "mentions": _HANDLE_RE.findall(text),
        "hashtags": _HASHTAG_RE.findall(text),
    }


def moderation_flags(text: str | None) -> list[str]:
    """Spam and abuse indicators, in a stable order"""
    if not text:
        return []
    flags = []
    emoji_count = len(_EMOJI_RE.findall(text))
    if emoji_count > len(text) * 0.3:
        flags.append("excessive_emojis")
    if _REPEATED_CHARS_RE.search(text):
        flags.append("repeated_characters")
    if any(pattern.search(text) for pattern in _PROMOTIONAL_RES):
        flags.append("promotional_links")
    stripped = text.strip()
    if any(pattern.match(stripped) for pattern in _BOT_RES):
        flags.append("bot_behavior")
    if PROFANITY_WORDS.intersection(tokenize(text)):
        flags.append("profanity")
    if any(pattern.search(text) for pattern in _HARASSMENT_RES):
        flags.append("harassment")
    if any(pattern.search(text) for pattern in _THREAT_RES):
        flags.append("threats")
    return flags


_COMMENT_REPLIES = {
    "positive": [
        "Thank you so much for your kind words! ❤️",
        "We're thrilled you love it! Thank you for the support! \U0001F64C",
        "Your feedback means the world to us! Thank you! ✨",
    ],
    "negative": [
        "We're sorry to hear about your experience. Please DM us so we can help resolve this.",
        "Thank you for bringing this to our attention. We'd love to make this right, please send us a message.",
        "We apologize for any inconvenience. Our team would like to help, please reach out via DM.",
    ],
    "neutral": [
        "Thanks for taking the time to comment! \U0001F64F",
        "We appreciate your feedback!",
        "Thank you for engaging with our content!",
    ],
}


def comment_reply_suggestions(text: str | None, score: float | None) -> list[str]:
    suggestions = list(_COMMENT_REPLIES.get(sentiment_label(score), []))
    if text and "?" in text:
        suggestions.extend([
            "Great question! Let us get back to you with more details.",
            "Thanks for asking! We'll send you more information via DM.",
        ])
    return list(dict.fromkeys(suggestions))[:3]


# ─── Mentions ────────────────────────────────────────────────────────────────

def mention_type(data: dict[str, Any]) -> MentionType:
    if data.get("media_id"):
        return MentionType.POST_MENTION
    if data.get("comment_id"):
        return MentionType.COMMENT_MENTION
    return MentionType.STORY_MENTION


def mention_text(data: dict[str, Any]) -> str:
    for key in ("text", "message", "caption"):
        value = data.get(key)
        if value:
            return str(value)
    return ""


def mention_context(text: str | None) -> MentionContext:
    """First matching context wins: question, complaint, compliment, tag, repost."""
    if not text or not text.strip():
        return MentionContext.UNKNOWN
    lowered = text.lower()
    if "?" in lowered or _MENTION_QUESTION_RE.search(lowered):
        return MentionContext.QUESTION
    if any(keyword in lowered for keyword in COMPLAINT_KEYWORDS):
        return MentionContext.COMPLAINT
    if any(keyword in lowered for keyword in COMPLIMENT_KEYWORDS):
        return MentionContext.COMPLIMENT
    if _HANDLE_RE.search(lowered) and _TAG_FRIEND_RE.search(lowered):
        return MentionContext.TAG_FRIEND
    if _REPOST_RE.search(lowered):
        return MentionContext.REPOST_REQUEST
    return MentionContext.GENERAL


def mention_sentiment(text: str | None) -> float:
    return sentiment_score(text, MENTION_POSITIVE_WORDS, MENTION_NEGATIVE_WORDS)


def mention_priority(
    context: MentionContext,
    score: float,
    follower_count: int | None = None,
) -> EngagementPriority:
    if context == MentionContext.COMPLAINT:
        return EngagementPriority.HIGH
    if context == MentionContext.QUESTION and score < 0.4:
        return EngagementPriority.HIGH
    if follower_count is not None and follower_count > HIGH_INFLUENCE_FOLLOWERS:
        return EngagementPriority.MEDIUM
    if context == MentionContext.QUESTION:
        return EngagementPriority.MEDIUM
    if score > 0.7:
        return EngagementPriority.MEDIUM
    return EngagementPriority.LOW


# ─── Messages ────────────────────────────────────────────────────────────────

def message_sentiment(text: str | None) -> float:
    return sentiment_score(text, MESSAGE_POSITIVE_WORDS, MESSAGE_NEGATIVE_WORDS)


def contains_question(text: str | None) -> bool:
    if not text:
        return False
    return "?" in text or bool(_QUESTION_WORDS_RE.search(text))


def contains_complaint(text: str | None) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(keyword in lowered for keyword in COMPLAINT_KEYWORDS)


def message_priority(
    text: str | None,
    score: float,
    message_type: MessageType = MessageType.DIRECT_MESSAGE,
) -> EngagementPriority:
    question = contains_question(text)
    if contains_complaint(text):
        return EngagementPriority.HIGH
    if question and score < 0.4:
        return EngagementPriority.HIGH
    if message_type == MessageType.STORY_REPLY and score < 0.3:
        return EngagementPriority.HIGH
    if question:
        return EngagementPriority.MEDIUM
    if score > 0.7:
        return EngagementPriority.MEDIUM
    return EngagementPriority.LOW


def message_requires_response(
    text: str | None,
    priority: EngagementPriority,
    message_type: MessageType,
) -> bool:
    if message_type == MessageType.AUTOMATED_MESSAGE:
        return False
    return priority == EngagementPriority.HIGH or contains_question(text) or contains_complaint(text)
