"""
Search Scenario Tests

End-to-end read path on the in-memory store: a viewer asks their network
for a cozy coffee shop. Embedding and LLM clients are mocked; vectors are
built so each record's similarity to the query is known in advance.
"""

import logging
import math
import time

import numpy as np
import pytest
from unittest.mock import Mock

DIM = 1536
QUERY_TEXT = "Looking for: cozy coffee shop. Search query for recommendations."
LONG_SUMMARY = (
    "Your friends love Blue Tokai Coffee in Indiranagar: Asha gave it 5/5 for the quiet "
    "corner seats and Ben liked the pour-over."
)


def _axis(k):
    v = np.zeros(DIM)
    v[k] = 1.0
    return v


QUERY_VECTOR = _axis(0).tolist()


def _vector_at(similarity, k):
    return (similarity * _axis(0) + math.sqrt(1 - similarity ** 2) * _axis(k)).tolist()


@pytest.fixture
def store():
    from rekky.common.record_store import InMemoryRecordStore

    store = InMemoryRecordStore()
    store.add_place("p1", "Blue Tokai Coffee", "Indiranagar, Bangalore")
    store.add_service("s1", "Brew Crew", service_type="barista training")
    for user_id, name in [("viewer", "Vee"), ("asha", "Asha"), ("ben", "Ben"), ("zed", "Zed")]:
        store.add_user(user_id, name)
    store.social_graph.follow("viewer", "asha")
    store.social_graph.follow("viewer", "ben")

    rows = [
        ("r1", "asha", 0.92, {"content_type": "place", "place_id": "p1", "rating": 5,
                              "notes": "Quiet corner seats, perfect for reading"}),
        ("r2", "ben", 0.78, {"content_type": "place", "place_id": "p1", "rating": 4,
                             "notes": "Great pour-over"}),
        ("r3", "asha", 0.71, {"content_type": "service", "service_id": "s1",
                              "notes": "Home barista lessons"}),
        ("r4", "ben", 0.65, {"content_type": "tip", "notes": "Buy beans on Sunday"}),
        ("r5", "zed", 0.95, {"content_type": "tip", "notes": "Secret cafe"}),
    ]
    for k, (record_id, user_id, similarity, fields) in enumerate(rows, 1):
        store.add_record("recommendation", {
            "id": record_id, "user_id": user_id, "embedding": _vector_at(similarity, k), **fields,
        })
    return store


@pytest.fixture
def embedding():
    service = Mock()
    service.dimensions = DIM
    service.is_available = True
    service.embed.return_value = QUERY_VECTOR
    return service


@pytest.fixture
def llm():
    client = Mock()
    client.is_available = True
    client.generate.return_value = LONG_SUMMARY
    return client


@pytest.fixture
def app(store, embedding, llm):
    from rekky.app import RekkyApp
    from rekky.common.config import RekkyConfig
    return RekkyApp(RekkyConfig(), store, embedding, llm)


@pytest.fixture
def network():
    from rekky.common.schemas.records import SearchFilters
    return SearchFilters(viewer_id="viewer")


class TestCozyCoffeeShop:
    @pytest.mark.asyncio
    async def test_grouped_results_and_summary(self, app, embedding, network):
        response = await app.search("  cozy coffee shop ", filters=network)

        assert response.query == "cozy coffee shop"
        embedding.embed.assert_called_once_with(QUERY_TEXT)

        assert response.total_hits == 3
        assert response.total_groups == 2
        place, service = response.groups
        assert place.display_name == "Blue Tokai Coffee"
        assert place.hit_ids == ["r1", "r2"]
        assert place.average_similarity == pytest.approx(0.85)
        assert place.ratings == [5, 4]
        assert service.group_key == "service:s1"
        assert service.average_similarity == pytest.approx(0.71)

        assert response.summary == LONG_SUMMARY

    @pytest.mark.asyncio
    async def test_response_dict(self, app, network):
        data = (await app.search("cozy coffee shop", filters=network)).to_dict()

        assert data["query"] == "cozy coffee shop"
        assert data["total_groups"] == 2
        assert data["total_recommendations"] == 3
        assert data["results"][0]["name"] == "Blue Tokai Coffee"
        assert data["results"][0]["recommendations"][0]["user_name"] == "Asha"
        assert data["search_metadata"] == {"threshold": 0.7, "limit": 10}

    @pytest.mark.asyncio
    async def test_repeat_query_served_from_caches(self, app, embedding, llm, network):
        first = await app.search("cozy coffee shop", filters=network)
        second = await app.search("cozy coffee shop ", filters=network)

        assert first.summary == second.summary
        assert embedding.embed.call_count == 1
        assert llm.generate.call_count == 1

    @pytest.mark.asyncio
    async def test_llm_timeout_uses_template(self, app, llm, network):
        llm.generate.side_effect = TimeoutError("LLM timed out")

        response = await app.search("cozy coffee shop", filters=network)

        assert "Blue Tokai Coffee" in response.summary
        assert "85% match" in response.summary
        assert "rated 4.5/5" in response.summary

    @pytest.mark.asyncio
    async def test_summary_can_be_skipped(self, app, llm, network):
        response = await app.search("cozy coffee shop", filters=network, include_summary=False)

        assert response.summary is None
        assert response.total_groups == 2
        llm.generate.assert_not_called()


class TestFiltering:
    @pytest.mark.asyncio
    async def test_outside_network_excluded(self, app):
        from rekky.common.schemas.records import SearchFilters

        scoped = await app.search("cozy coffee shop", filters=SearchFilters(viewer_id="viewer"))
        everyone = await app.search("cozy coffee shop")

        assert "r5" not in [h for g in scoped.groups for h in g.hit_ids]
        assert "r5" in [h for g in everyone.groups for h in g.hit_ids]

    @pytest.mark.asyncio
    async def test_threshold(self, app, network):
        default = await app.search("cozy coffee shop", filters=network)
        loose = await app.search("cozy coffee shop", filters=network, threshold=0.6)

        assert default.total_hits == 3
        assert loose.total_hits == 4
        assert loose.threshold == 0.6

    @pytest.mark.asyncio
    async def test_limit_and_threshold_are_clamped(self, app, network):
        response = await app.search("cozy coffee shop", filters=network, limit=500, threshold=3)

        assert response.limit == 50
        assert response.threshold == 1.0
        assert response.total_hits == 0

    @pytest.mark.asyncio
    async def test_content_type_filter(self, app):
        from rekky.common.schemas.records import SearchFilters

        response = await app.search(
            "cozy coffee shop", filters=SearchFilters(viewer_id="viewer", content_type="service"),
        )

        assert [g.group_key for g in response.groups] == ["service:s1"]


class TestQuestionsAndAnswers:
    @pytest.mark.asyncio
    async def test_qna_from_network(self, app, store, network):
        store.add_record("question", {
            "id": "q1", "user_id": "asha", "text": "Where can I work from a cafe?",
            "embedding": _vector_at(0.4, 20),
        })
        store.add_record("question", {
            "id": "q2", "user_id": "zed", "text": "Best espresso?", "embedding": _vector_at(0.9, 21),
        })
        store.add_record("recommendation", {
            "id": "ans1", "user_id": "ben", "question_id": "q1", "notes": "Try the library cafe",
            "embedding": _vector_at(0.5, 22),
        })

        response = await app.search("cozy coffee shop", filters=network, include_qna=True)

        assert [h.record_id for h in response.qna["questions"]] == ["q1"]
        assert [h.record_id for h in response.qna["answers"]] == ["ans1"]
        assert "ans1" not in [h for g in response.groups for h in g.hit_ids]
        assert response.to_dict()["qna"]["answers"][0]["question_id"] == "q1"

    @pytest.mark.asyncio
    async def test_qna_needs_viewer(self, app):
        response = await app.search("cozy coffee shop", include_qna=True)
        assert response.qna == {}

    @pytest.mark.asyncio
    async def test_searcher_without_viewer(self, store):
        from rekky.retriever.searcher import Searcher

        result = await Searcher(store).search_questions_and_answers(QUERY_VECTOR, None)
        assert result == {"questions": [], "answers": []}

    def test_qna_limit(self):
        from rekky.retriever.searcher import qna_limit

        assert qna_limit(4) == 5
        assert qna_limit(20) == 10
        assert qna_limit(50) == 20


class TestDegradedPaths:
    @pytest.mark.asyncio
    async def test_empty_query(self, app, embedding, llm):
        from rekky.retriever.synthesizer import no_results_summary

        response = await app.search("   ")

        assert response.groups == []
        assert response.summary == no_results_summary("")
        embedding.embed.assert_not_called()
        llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_matches(self, app, embedding, llm):
        from rekky.retriever.synthesizer import no_results_summary

        embedding.embed.return_value = _axis(999).tolist()
        response = await app.search("underwater basket weaving")

        assert response.total_hits == 0
        assert response.summary == no_results_summary("underwater basket weaving")
        llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_embedding_failure_is_unavailable_not_empty(self, app, embedding, caplog):
        from rekky.common.errors import EmbeddingServiceError, SearchUnavailableError

        embedding.embed.side_effect = EmbeddingServiceError("upstream 503")

        with caplog.at_level(logging.ERROR, logger="rekky.retriever.service"):
            with pytest.raises(SearchUnavailableError):
                await app.search("cozy coffee shop")
        assert "Could not embed search query" in caplog.text

    @pytest.mark.asyncio
    async def test_slow_summary_times_out(self, store, embedding):
        from rekky.retriever.searcher import Searcher
        from rekky.retriever.service import SearchService

        synthesizer = Mock()
        synthesizer.summarize.side_effect = lambda query, groups: time.sleep(0.5) or "late"

        service = SearchService(embedding, Searcher(store), synthesizer, summary_timeout=0.05)
        response = await service.search("cozy coffee shop")

        assert response.summary.startswith('I found 3 options for "cozy coffee shop"')


class TestRecordSaved:
    @pytest.mark.asyncio
    async def test_saved_record_gets_embedded(self, app, store, embedding):
        store.add_record("recommendation", {"id": "new", "user_id": "asha", "notes": "New bakery"})

        task_id = app.record_saved("recommendation", "new")
        await app.queue.join()
        await app.close()

        assert task_id == "recommendation-new-1"
        assert store.get_record("recommendation", "new").embedding == QUERY_VECTOR

    def test_scheduling_failure_never_raises(self, app, caplog):
        with caplog.at_level(logging.ERROR, logger="rekky.app"):
            assert app.record_saved("bookmark", "r1") is None
        assert "Failed to enqueue embedding" in caplog.text

    def test_from_config_without_database(self, caplog):
        from rekky.app import RekkyApp
        from rekky.common.config import RekkyConfig
        from rekky.common.record_store import InMemoryRecordStore

        with caplog.at_level(logging.WARNING, logger="rekky.app"):
            app = RekkyApp.from_config(RekkyConfig())

        assert isinstance(app.store, InMemoryRecordStore)
        assert not app.embedding_service.is_available
        assert not app.llm_client.is_available
        assert "DATABASE_URL not set" in caplog.text
