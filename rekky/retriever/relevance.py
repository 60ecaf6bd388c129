"""
Relevance Validator

Semantic search happily returns "close enough" neighbours: a query for
"hotel" can surface a highly rated restaurant at 0.71. Before a summary is
written, the top group is checked against the query's intent:

1. Top group similarity must reach the minimum threshold
2. Category queries (hotel, restaurant, cafe, bar, service) get a stricter
   threshold unless keywords back the match up
3. Keyword / label / place-type checks accept the match
4. High similarity accepts the match without keywords
5. Borderline cases ask the LLM, falling back to the keyword check
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..common.llm_client import LLMClient
from ..common.llm_utils import parse_llm_json
from .aggregator import EntityGroup, GroupType

logger = logging.getLogger("rekky.retriever.relevance")

MIN_SIMILARITY_THRESHOLD = 0.65
CATEGORY_SPECIFIC_THRESHOLD = 0.7
HIGH_CONFIDENCE_THRESHOLD = 0.72
BORDERLINE_ACCEPT_THRESHOLD = 0.68
MAX_RESULTS_TO_VALIDATE = 3

CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "hotel": ["hotel", "lodging", "accommodation", "stay", "room", "resort", "inn", "hostel"],
    "restaurant": ["restaurant", "cafe", "food", "dining", "eat", "meal", "cuisine", "bistro"],
    "cafe": ["cafe", "coffee", "coffeeshop", "espresso", "latte"],
    "bar": ["bar", "pub", "cocktail", "drinks", "nightlife"],
    "service": ["service", "provider", "professional", "business"],
}

# Place types as reported by Google Places
PLACE_TYPE_MAPPING: Dict[str, List[str]] = {
    "hotel": ["lodging", "hotel", "resort", "inn", "hostel", "motel", "bed_and_breakfast"],
    "restaurant": ["restaurant", "food", "meal_takeaway", "meal_delivery", "cafe", "bakery", "bistro"],
    "cafe": ["cafe", "bakery", "coffee_shop"],
    "bar": ["bar", "night_club", "pub"],
    "service": ["establishment", "point_of_interest"],
}

SYNONYMS: Dict[str, List[str]] = {
    "asian": ["asian", "pan asian", "oriental", "chinese", "japanese", "thai", "indian", "korean"],
    "food": ["food", "cuisine", "restaurant", "dining", "meal", "dish", "dishes"],
    "dj": ["dj", "disc jockey", "deejay", "music", "mixer", "disc", "jockey"],
    "sweet": ["sweet", "sweets", "dessert", "candy", "confectionery", "mithai"],
    "shop": ["shop", "store", "wala", "house"],
}

STOP_WORDS = {
    "the", "a", "an", "for", "in", "on", "at", "to", "of", "and", "or", "but", "is", "are",
    "was", "were", "be", "been", "being", "have", "has", "had", "do", "does", "did", "will",
    "would", "should", "could", "may", "might", "must", "can", "some", "any", "looking",
}

VALIDATION_SYSTEM_PROMPT = (
    "You are a relevance validator. Decide whether search results match the user's "
    "query intent. Be reasonable: mark results relevant when they are reasonably related, "
    'even if not perfect matches ("asian food" matches "Pan Asian restaurant", '
    '"sweet shop" matches places with "sweets" in the name).'
)

VALIDATION_PROMPT = """Query: "{query}"

Search Results:
{results}

Are these results relevant to the query? Only reject results that are clearly unrelated.

Respond with ONLY a JSON object:
{{"isRelevant": true/false, "reason": "brief explanation", "confidence": 0.0-1.0}}"""

NO_RELEVANT_RESULTS_MESSAGE = (
    'Unfortunately, your network doesn\'t have any relevant information about "{query}" yet.\n\n'
    "The search found some loosely related recommendations, but they don't match what "
    "you're looking for. Try asking your friends to share their experiences, or refine "
    "your search with more specific keywords."
)


@dataclass
class RelevanceResult:
    is_relevant: bool
    reason: str
    confidence: float


def detect_query_intent(query: str) -> List[str]:
    """Categories mentioned in the query, most keyword hits first"""
    query_lower = query.lower()
    scored = []
    for category, keywords in CATEGORY_KEYWORDS.items():
        matches = sum(1 for k in keywords if k in query_lower)
        if matches:
            scored.append((matches, category))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [category for _, category in scored]


def extract_query_keywords(query: str) -> List[str]:
    return [w for w in query.lower().split() if len(w) > 2 and w not in STOP_WORDS]


def words_are_related(query_word: str, result_text: str) -> bool:
    q = query_word.lower()
    r = result_text.lower()
    if not q or not r:
        return False
    if q in r or r in q:
        return True
    for key, synonyms in SYNONYMS.items():
        query_side = key in q or any(s in q for s in synonyms)
        result_side = key in r or any(s in r for s in synonyms)
        if query_side and result_side:
            return True
    return False


def _group_place_types(group: EntityGroup) -> List[str]:
    types: List[str] = []
    for hit in group.hits:
        primary = hit.content_data.get("primary_type") or hit.content_data.get("place_primary_type")
        if primary:
            types.append(str(primary).lower())
        for t in hit.content_data.get("place_types") or hit.content_data.get("types") or []:
            types.append(str(t).lower())
    return types


def quick_keyword_check(query: str, group: EntityGroup, categories: Sequence[str]) -> bool:
    """
    Keyword-level relevance of the group to the query.

    Queries without a category and without meaningful keywords pass.
    Category queries need a place type, service type, label or name/notes
    match.
    """
    name = (group.display_name or "").lower()
    description = " ".join(h.notes for h in group.hits if h.notes).lower()
    keywords = extract_query_keywords(query)

    def keywords_match() -> bool:
        return any(
            k in name or k in description or words_are_related(k, name) or words_are_related(k, description)
            for k in keywords
        )

    if not categories:
        return not keywords or keywords_match()

    place_types = _group_place_types(group)
    for category in categories:
        expected = PLACE_TYPE_MAPPING.get(category, [])
        if any(t in pt or pt in t for t in expected for pt in place_types):
            return True

    service_type = (group.entity_meta.get("service_type") or "").lower()
    if group.type == GroupType.SERVICE and "service" in categories and service_type:
        if any(k in service_type for k in CATEGORY_KEYWORDS["service"]):
            return True

    labels = [l.lower() for l in group.labels]
    for k in keywords:
        if any(k in l or l in k or words_are_related(k, l) for l in labels):
            return True
    for category in categories:
        if any(k in l or l in k for k in CATEGORY_KEYWORDS.get(category, []) for l in labels):
            return True

    return keywords_match()


class RelevanceValidator:
    """Decides whether the best search groups actually answer the query."""

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        min_threshold: float = MIN_SIMILARITY_THRESHOLD,
        timeout: float = 10.0,
    ):
        self._llm = llm_client
        self._min_threshold = min_threshold
        self._timeout = timeout

    def validate(self, query: str, groups: Sequence[EntityGroup]) -> RelevanceResult:
        if not groups:
            return RelevanceResult(False, "No search results found", 0.0)

        top = groups[0]
        similarity = top.average_similarity

        if similarity < self._min_threshold:
            return RelevanceResult(
                False,
                f"Top result similarity ({similarity:.0%}) below threshold ({self._min_threshold:.0%})",
                0.2,
            )

        categories = detect_query_intent(query)
        keyword_relevant = quick_keyword_check(query, top, categories)

        if categories and similarity < CATEGORY_SPECIFIC_THRESHOLD and not keyword_relevant:
            return RelevanceResult(
                False,
                f"Category query ({', '.join(categories)}) but similarity {similarity:.0%} "
                f"below {CATEGORY_SPECIFIC_THRESHOLD:.0%}",
                0.3,
            )

        if keyword_relevant:
            return RelevanceResult(True, "Keyword match found", min(0.95, similarity + 0.15))

        if similarity >= HIGH_CONFIDENCE_THRESHOLD:
            return RelevanceResult(True, "High similarity score", min(0.9, similarity + 0.1))

        ai_result = self._validate_with_llm(query, groups, categories)
        if ai_result.is_relevant or similarity >= BORDERLINE_ACCEPT_THRESHOLD:
            return RelevanceResult(
                True,
                ai_result.reason if ai_result.is_relevant else "Similarity score acceptable",
                max(ai_result.confidence, similarity),
            )
        return ai_result

    def _validate_with_llm(
        self, query: str, groups: Sequence[EntityGroup], categories: Sequence[str]
    ) -> RelevanceResult:
        def keyword_fallback(reason: str) -> RelevanceResult:
            relevant = quick_keyword_check(query, groups[0], categories)
            return RelevanceResult(relevant, reason, 0.6 if relevant else 0.3)

        if self._llm is None or not self._llm.is_available:
            return keyword_fallback("Keyword check (LLM unavailable)")

        lines = []
        for i, group in enumerate(groups[:MAX_RESULTS_TO_VALIDATE], 1):
            type_info = ""
            if group.entity_meta.get("service_type"):
                type_info = f" [Service: {group.entity_meta['service_type']}]"
            lines.append(f"{i}. {group.display_name}{type_info} ({group.average_similarity:.0%} match)")

        try:
            raw = self._llm.generate(
                VALIDATION_PROMPT.format(query=query, results="\n".join(lines)),
                system=VALIDATION_SYSTEM_PROMPT,
                max_tokens=200,
                temperature=0.1,
                timeout=self._timeout,
            )
        except Exception as e:
            logger.warning("LLM relevance check failed: %s", e)
            return keyword_fallback("Keyword check (LLM failed)")

        parsed = parse_llm_json(raw)
        if "isRelevant" in parsed:
            confidence = parsed.get("confidence")
            return RelevanceResult(
                bool(parsed["isRelevant"]),
                parsed.get("reason") or "LLM validation",
                float(confidence) if isinstance(confidence, (int, float)) else 0.5,
            )

        lowered = raw.lower()
        relevant = "relevant" in lowered and "not relevant" not in lowered
        return RelevanceResult(relevant, "LLM validation (parsed from text)", 0.7 if relevant else 0.3)


def no_relevant_results_message(query: str) -> str:
    return NO_RELEVANT_RESULTS_MESSAGE.format(query=query)
