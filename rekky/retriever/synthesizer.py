"""
Synthesizer

LLM summary of grouped search results.

Key principle: the summary only states what the network actually said.
- Claims must come from the reviews in the context
- Thin data (few reviews, no ratings) is called out, not papered over
- Any LLM failure degrades to a deterministic template, never an error
"""

import logging
from datetime import date
from typing import List, Optional, Sequence

from ..common.errors import SummaryGenerationError
from ..common.llm_client import LLMClient
from ..common.llm_utils import parse_llm_json
from ..common.ttl_cache import TTLCache
from .aggregator import EntityGroup, GroupType
from .relevance import RelevanceValidator, no_relevant_results_message

logger = logging.getLogger("rekky.retriever.synthesizer")

MAX_GROUPS_IN_CONTEXT = 10
MAX_REVIEWS_PER_GROUP = 6
MAX_CONTEXT_CHARS = 12000
MIN_SUMMARY_CHARS = 50
EXCERPT_CHARS = 140


SYSTEM_PROMPT = """You are a local recommendation assistant for a private social network.
Answer only from the search results provided. Every place, rating and opinion you mention
must appear in the results. If the results are thin (few reviews, no ratings, old visits),
say so plainly. Never invent places, prices or opening hours."""

SUMMARY_PROMPT = """User searched for: "{query}"

SEARCH RESULTS:
{context}

---
Write a helpful answer that uses these results.

Format:
- Start with a brief direct answer
- Highlight the top 2-3 options with specific details (ratings, what reviewers said)
- Mention caveats such as limited reviews
- End with a helpful next step

Be conversational and concise. Focus on what was found."""

NO_RESULTS_MESSAGE = (
    'I couldn\'t find any recommendations for "{query}" in your network yet.\n\n'
    "Try using different keywords or ask your friends to share their experiences first. "
    "Sometimes being more specific about what you're looking for helps too!"
)


def no_results_summary(query: str) -> str:
    return NO_RESULTS_MESSAGE.format(query=query)


def summary_cache_key(query: str, groups: Sequence[EntityGroup]) -> str:
    """query::ids-of-group-1|ids-of-group-2|..."""
    return f"{query}::" + "|".join(",".join(g.hit_ids) for g in groups)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _excerpt(text: str) -> str:
    return text[:EXCERPT_CHARS] + ("..." if len(text) > EXCERPT_CHARS else "")


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _format_group(group: EntityGroup) -> str:
    """One block of context for a group, bounded to its first reviews"""
    hits = group.hits[:MAX_REVIEWS_PER_GROUP]
    reviewed = [h for h in hits if h.notes and h.notes.strip()]
    rated = [h for h in hits if h.rating]

    if group.type == GroupType.PLACE:
        kind = "Place"
    elif group.type == GroupType.SERVICE:
        kind = group.entity_meta.get("service_type") or "Service"
    else:
        kind = group.entity_meta.get("content_type", "other")

    labels: List[str] = []
    for h in hits:
        for label in h.labels:
            if label not in labels:
                labels.append(label)

    lines = [f"**{group.display_name}** ({kind}) - {group.average_similarity:.0%} match"]
    if group.address:
        lines.append(f"Address: {group.address}")
    if labels:
        lines.append(f"Tags: {', '.join(labels)}")
    if rated:
        avg = sum(h.rating for h in rated) / len(rated)
        lines.append(f"Rating: {avg:.1f}/5 ({_plural(len(rated), 'rating')})")
    else:
        lines.append("Rating: No ratings")

    reviewers = {h.author_name or "Anonymous" for h in hits}
    review_text = f"{len(reviewed)} with notes" if reviewed else "No detailed reviews available"
    lines.append(f"Reviews: {review_text} | Reviewers: {len(reviewers)}")

    dates = sorted(d for d in (_parse_date(h.visit_date) for h in hits) if d)
    if dates:
        recency = f"Recency: {dates[-1].isoformat()}"
        if dates[0] != dates[-1]:
            recency += f" (range since {dates[0].isoformat()})"
        lines.append(recency)

    if reviewed:
        feedback = "; ".join(f'{h.author_name or "Anonymous"}: "{h.notes}"' for h in reviewed)
        lines.append(f"Key feedback: {feedback}")
        pros = [h for h in reviewed if (h.rating or 0) >= 4]
        cons = [h for h in reviewed if h.rating is not None and h.rating <= 2]
        if pros:
            lines.append(f'Pros: + {pros[0].author_name}: "{_excerpt(pros[0].notes)}"')
        if cons:
            lines.append(f'Cons: - {cons[0].author_name}: "{_excerpt(cons[0].notes)}"')

    if reviewed and rated:
        quality = "High"
    elif reviewed or rated:
        quality = "Medium"
    else:
        quality = "Low"
    lines.append(f"Data Quality: {quality}")
    return "\n".join(lines)


def build_summary_context(groups: Sequence[EntityGroup]) -> str:
    """
    Render groups into the bounded LLM context.

    At most 10 groups, 6 reviews per group, and 12000 characters (then "...").
    """
    limited = list(groups[:MAX_GROUPS_IN_CONTEXT])
    total_reviews = 0
    total_ratings = 0
    complete = 0
    all_dates = []
    for group in limited:
        hits = group.hits[:MAX_REVIEWS_PER_GROUP]
        reviews = sum(1 for h in hits if h.notes and h.notes.strip())
        ratings = sum(1 for h in hits if h.rating)
        total_reviews += reviews
        total_ratings += ratings
        if reviews and ratings:
            complete += 1
        all_dates.extend(d for d in (_parse_date(h.visit_date) for h in hits) if d)

    if total_reviews and total_ratings:
        completeness = "Good"
    elif total_reviews or total_ratings:
        completeness = "Partial"
    else:
        completeness = "Limited"

    header = [
        "## Search Analysis Overview",
        f"- Total Options: {len(limited)} ({len(groups)} total available)",
        f"- Data Quality: {complete}/{len(limited)} options have both reviews and ratings",
        f"- Review Coverage: {total_reviews} detailed reviews across all options",
        f"- Rating Coverage: {total_ratings} ratings across all options",
        f"- Data Completeness: {completeness}",
    ]
    if all_dates:
        header.append(f"- Most Recent Visit: {max(all_dates).isoformat()}")

    text = "\n".join(header) + "\n\n---\n\n" + "\n\n".join(_format_group(g) for g in limited)
    if len(text) > MAX_CONTEXT_CHARS:
        text = text[:MAX_CONTEXT_CHARS] + "..."
    return text


def fallback_summary(query: str, groups: Sequence[EntityGroup]) -> str:
    """Deterministic summary from the top group. Never calls a service, never raises."""
    if not groups:
        return no_results_summary(query)

    top = groups[0]
    reviews = top.review_count
    ratings = len(top.ratings)
    first = f'I found {_plural(len(groups), "option")} for "{query}" in your network.'

    second = f"{top.display_name} looks like the best match ({top.average_similarity:.0%} match"
    if top.average_rating is not None:
        second += f", rated {top.average_rating:.1f}/5"
    second += f") with {_plural(reviews, 'review')} and {_plural(ratings, 'rating')}."
    return f"{first} {second}"


class Synthesizer:
    """
    Summarizes grouped search results using an LLM.

    Falls back to a template if the LLM is missing, slow, or unhelpful.
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        cache: Optional[TTLCache] = None,
        relevance: Optional[RelevanceValidator] = None,
        temperature: float = 0.2,
        max_tokens: int = 700,
        timeout: float = 20.0,
    ):
        """
        Initialize synthesizer.

        Args:
            llm_client: Text generation client (optional)
            cache: Summary cache (10 minute TTL in the default wiring)
            relevance: Relevance gate run before the LLM (optional)
            temperature: Sampling temperature
            max_tokens: Completion budget
            timeout: Per-request timeout in seconds
        """
        self._llm = llm_client
        self._cache = cache
        self._relevance = relevance
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout

    @property
    def has_llm(self) -> bool:
        return self._llm is not None and self._llm.is_available

    def summarize(self, query: str, groups: Sequence[EntityGroup]) -> str:
        """
        Summarize groups for a query.

        Returns:
            Summary text; always a string, even when every backend fails
        """
        if not groups:
            return no_results_summary(query)

        key = summary_cache_key(query, groups)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Summary cache hit for %r", query)
                return cached

        summary = None
        if self._relevance is not None:
            try:
                verdict = self._relevance.validate(query, groups)
                if not verdict.is_relevant:
                    logger.info("Results not relevant to %r: %s", query, verdict.reason)
                    summary = no_relevant_results_message(query)
            except Exception as e:
                logger.warning("Relevance validation failed, summarizing anyway: %s", e)

        if summary is None:
            try:
                summary = self.generate(query, groups)
            except SummaryGenerationError as e:
                logger.warning("Using fallback summary for %r: %s", query, e)
                summary = fallback_summary(query, groups)

        if self._cache is not None:
            self._cache.set(key, summary)
        return summary

    def generate(self, query: str, groups: Sequence[EntityGroup]) -> str:
        """
        Ask the LLM for a summary.

        Raises:
            SummaryGenerationError: on missing client, timeout, API error,
                or an empty / too-short response
        """
        if not self.has_llm:
            raise SummaryGenerationError("LLM client is not available")

        prompt = SUMMARY_PROMPT.format(query=query, context=build_summary_context(groups))
        try:
            raw = self._llm.generate(
                prompt,
                system=SYSTEM_PROMPT,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                timeout=self._timeout,
            )
        except Exception as e:
            raise SummaryGenerationError(f"LLM call failed: {e}") from e

        summary = (raw or "").strip()
        if summary.startswith("{"):
            # Some models wrap the answer in JSON despite instructions
            summary = str(parse_llm_json(summary).get("summary", "")).strip()

        if len(summary) <= MIN_SUMMARY_CHARS:
            raise SummaryGenerationError(f"Summary too short ({len(summary)} chars)")
        return summary
