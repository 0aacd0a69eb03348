"""Caption alignment

Turns voiceover timing information into caption segments. Two sources are
supported: word-level timestamps from a transcription (accurate), or the raw
script plus the voiceover duration (estimated, proportional to text length).
"""

from __future__ import annotations

import re
from typing import List, Optional, Sequence
import logging

from .content_models import CaptionSegment, CaptionWord, WordTimestamp
from ..utils.errors import InvariantViolation


logger = logging.getLogger(__name__)

MAX_WORDS = 5
MAX_CHARS = 40
PAUSE_THRESHOLD = 0.4  # seconds of silence that forces a new caption
MIN_FRAGMENT_SECONDS = 1.0

_SENTENCE_END = re.compile(r"[.!?]$")
_SENTENCE_BREAK = re.compile(r"([.!?])\s+")
_CLAUSE_BREAK = re.compile(r"([,;:])\s+")


def _close_segment(words: List[WordTimestamp], text: str) -> CaptionSegment:
    return CaptionSegment(
        text=text,
        start_time=words[0].start_time,
        end_time=words[-1].end_time,
        words=[CaptionWord(word=w.word, start_time=w.start_time, end_time=w.end_time) for w in words],
    )


def segment_from_words(
    words: Sequence[WordTimestamp],
    max_words: int = MAX_WORDS,
    max_chars: int = MAX_CHARS,
    pause_threshold: float = PAUSE_THRESHOLD,
) -> List[CaptionSegment]:
    """Group word timestamps into caption segments in a single left-to-right pass.

    Before a word is added, the open segment is closed when it already holds
    ``max_words`` words, when appending the word would reach ``max_chars``,
    when the silence before the word exceeds ``pause_threshold``, or when the
    open text ends a sentence. The word then starts the next segment.
    Segment bounds are the first and last word timestamps, so pauses fall
    between segments.
    """
    if not words:
        raise InvariantViolation("segment_from_words requires at least one word")

    segments: List[CaptionSegment] = []
    current: List[WordTimestamp] = []
    text = ""

    for word in words:
        candidate = f"{text} {word.word}" if text else word.word
        has_pause = bool(current) and (word.start_time - current[-1].end_time) > pause_threshold

        should_split = bool(current) and (
            len(current) >= max_words
            or len(candidate) >= max_chars
            or has_pause
            or bool(_SENTENCE_END.search(text))
        )

        if should_split:
            segments.append(_close_segment(current, text))
            current = [word]
            text = word.word
        else:
            current.append(word)
            text = candidate

    if current:
        segments.append(_close_segment(current, text))

    logger.debug(f"Segmented {len(words)} words into {len(segments)} captions")
    return segments


def split_script(script: str) -> List[str]:
    """Split script text at sentence and clause punctuation, dropping empty fragments."""
    marked = _SENTENCE_BREAK.sub(r"\1|", script)
    marked = _CLAUSE_BREAK.sub(r"\1|", marked)
    return [fragment.strip() for fragment in marked.split("|") if fragment.strip()]


def estimate_word_timings(text: str, start_time: float, duration: float) -> List[CaptionWord]:
    """Spread a fragment's duration over its words by character length."""
    tokens = [w for w in text.split() if w]
    if not tokens:
        return []

    total_chars = sum(len(w) for w in tokens)
    result = []
    t = start_time
    for token in tokens:
        word_duration = duration * (len(token) / total_chars)
        result.append(CaptionWord(word=token, start_time=t, end_time=t + word_duration))
        t += word_duration
    return result


def segment_from_script(
    script: str,
    total_duration: float,
    min_duration: float = MIN_FRAGMENT_SECONDS,
) -> List[CaptionSegment]:
    """Estimate caption segments from script text when no timestamps exist.

    Each fragment gets a share of ``total_duration`` proportional to its
    character count, floored at ``min_duration``. Fragments are laid out
    back to back from 0, so the floor may push the last caption past
    ``total_duration``; that overrun is left as is.
    """
    if not script or not script.strip():
        raise InvariantViolation("segment_from_script requires non-empty script text")
    if total_duration <= 0:
        raise InvariantViolation(f"total_duration must be positive, got {total_duration}")

    fragments = split_script(script)
    total_chars = sum(len(f) for f in fragments)

    segments = []
    t = 0.0
    for fragment in fragments:
        duration = max(total_duration * len(fragment) / total_chars, min_duration)
        segments.append(CaptionSegment(
            text=fragment,
            start_time=t,
            end_time=t + duration,
            words=estimate_word_timings(fragment, t, duration),
        ))
        t += duration

    if t > total_duration:
        logger.debug(f"Estimated captions overrun voiceover by {t - total_duration:.2f}s")
    return segments


def build_captions(
    words: Optional[Sequence[WordTimestamp]] = None,
    script: Optional[str] = None,
    total_duration: Optional[float] = None,
    config=None,
) -> List[CaptionSegment]:
    """Pick the accurate path when word timestamps exist, else estimate from the script.

    ``config`` is an optional ``CaptionConfig`` overriding the segmentation constants.
    """
    max_words = getattr(config, 'max_words', MAX_WORDS)
    max_chars = getattr(config, 'max_chars', MAX_CHARS)
    pause_threshold = getattr(config, 'pause_threshold', PAUSE_THRESHOLD)
    min_duration = getattr(config, 'min_fragment_seconds', MIN_FRAGMENT_SECONDS)

    if words:
        return segment_from_words(words, max_words, max_chars, pause_threshold)

    if script and script.strip():
        if total_duration is None:
            raise InvariantViolation("Script captions need the voiceover duration")
        logger.info("No word timestamps available, estimating caption timing from script")
        return segment_from_script(script, total_duration, min_duration)

    raise InvariantViolation("Captions need word timestamps or script text")
