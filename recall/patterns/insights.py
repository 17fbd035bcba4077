"""Human-readable observations derived from pattern evidence.

Everything here is template text over counts, concepts and time spans; no
language model is involved.
"""

from __future__ import annotations

from collections import Counter
from typing import Sequence

from recall.clustering.concepts import categorize_domains
from recall.memory.models import Memory
from recall.utils.clock import days_between


def _plural(count: int, word: str, plural: str | None = None) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {plural or word + 's'}"


def span_insight(memories: Sequence[Memory]) -> str | None:
    if not memories:
        return None
    first = min(m.timestamp for m in memories)
    last = max(m.timestamp for m in memories)
    days = days_between(first, last)
    if days < 1:
        return f"All within one day ({first:%Y-%m-%d})."
    return f"Spans {days:.0f} days ({first:%Y-%m-%d} to {last:%Y-%m-%d})."


def emotion_insight(memories: Sequence[Memory]) -> str | None:
    emotions = Counter(m.dominant_emotion for m in memories if m.dominant_emotion)
    if not emotions:
        return None
    emotion, count = sorted(emotions.items(), key=lambda item: (-item[1], item[0]))[0]
    return f"Most common emotion: {emotion} ({count} of {len(memories)})."


def concept_insights(concepts: Sequence[str], limit: int = 3) -> list[str]:
    insights = []
    if concepts:
        insights.append(f"Centred on: {', '.join(concepts[:limit])}.")
        domains = categorize_domains(concepts)
        if domains:
            insights.append(f"Touches {', '.join(domains)}.")
    return insights


def cycle_insights(
    polarity: str,
    run_length: int,
    band: str,
    occurrences: int,
    memories: Sequence[Memory],
) -> list[str]:
    insights = [
        f"Seen {_plural(occurrences, 'time')}: {polarity} stretches of "
        f"{_plural(run_length, 'entry', 'entries')} at {band} intensity."
    ]
    for line in (span_insight(memories), emotion_insight(memories)):
        if line:
            insights.append(line)
    return insights


def breakthrough_insights(
    breakthroughs: Sequence[Memory],
    lifts: Sequence[float],
    concepts: Sequence[str],
) -> list[str]:
    average_lift = sum(lifts) / len(lifts) if lifts else 0.0
    insights = [
        f"{_plural(len(breakthroughs), 'breakthrough')}, lifting mood by "
        f"{average_lift:+.2f} over the prior week on average."
    ]
    if concepts:
        insights.append(f"Arrived right after new reflection on: {', '.join(concepts[:3])}.")
    span = span_insight(breakthroughs)
    if span:
        insights.append(span)
    return insights


def challenge_insights(
    concepts: Sequence[str],
    members: Sequence[Memory],
    emotional_context: float,
    phase: str,
) -> list[str]:
    insights = [f"Came up {_plural(len(members), 'time')} in this period."]
    insights.extend(concept_insights(concepts))
    insights.append(f"Average mood {emotional_context:+.2f}, mostly in {phase} phase.")
    span = span_insight(members)
    if span:
        insights.append(span)
    return insights


def accelerator_insights(
    concepts: Sequence[str],
    supporting: Sequence[Memory],
    lift: float,
    slope: float,
) -> list[str]:
    insights = [
        f"Mood in the following days runs {lift:+.2f} above this theme's baseline.",
        f"Theme strength rising ({slope:+.3f} per entry).",
    ]
    insights.extend(concept_insights(concepts))
    span = span_insight(supporting)
    if span:
        insights.append(span)
    return insights
