"""Tests for result grouping"""

import pytest


def _hit(record_id, similarity, **fields):
    from rekky.common.schemas.records import SearchHit
    return SearchHit(record_id=record_id, similarity=similarity, **fields)


class TestGroupKey:
    def test_place_and_service_keys(self):
        from rekky.retriever.aggregator import group_key_for

        assert group_key_for(_hit("a", 0.9, content_type="place", place_id="p1")) == "place:p1"
        assert group_key_for(_hit("b", 0.9, content_type="service", service_id="s1")) == "service:s1"
        assert group_key_for(_hit("c", 0.9, content_type="tip")) == "type:tip"

    def test_missing_foreign_key_falls_back_to_type(self):
        from rekky.retriever.aggregator import group_key_for

        assert group_key_for(_hit("a", 0.9, content_type="place")) == "type:place"
        assert group_key_for(_hit("b", 0.9, content_type="service")) == "type:service"


class TestAggregate:
    def test_hits_about_one_place_collapse(self):
        from rekky.retriever.aggregator import GroupType, aggregate

        groups = aggregate([
            _hit("r1", 0.92, content_type="place", place_id="p1", place_name="Blue Tokai Coffee", rating=5),
            _hit("r2", 0.78, content_type="place", place_id="p1", place_name="Blue Tokai Coffee", rating=4),
            _hit("r3", 0.71, content_type="service", service_id="s1", service_name="Ramesh"),
        ])

        assert len(groups) == 2
        place, service = groups
        assert place.type == GroupType.PLACE
        assert place.group_key == "place:p1"
        assert place.total_hits == 2
        assert place.average_similarity == pytest.approx(0.85)
        assert place.average_rating == pytest.approx(4.5)
        assert place.hit_ids == ["r1", "r2"]
        assert service.type == GroupType.SERVICE
        assert service.average_similarity == pytest.approx(0.71)

    def test_running_mean_matches_true_mean(self):
        from rekky.retriever.aggregator import aggregate

        scores = [0.91, 0.73, 0.88, 0.7001, 0.95, 0.81]
        groups = aggregate([_hit(f"r{i}", s, content_type="tip") for i, s in enumerate(scores)])

        assert groups[0].average_similarity == pytest.approx(sum(scores) / len(scores))
        assert groups[0].total_hits == len(scores)

    def test_running_mean_independent_of_hit_order(self):
        import itertools
        from rekky.retriever.aggregator import aggregate

        scores = [0.91, 0.73, 0.88, 0.7001, 0.95]
        expected = sum(scores) / len(scores)
        for order in itertools.permutations(range(len(scores))):
            groups = aggregate([_hit(f"r{i}", scores[i], content_type="place", place_id="p1") for i in order])

            assert len(groups) == 1
            assert groups[0].average_similarity == pytest.approx(expected)
            assert groups[0].hit_ids == [f"r{i}" for i in order]

    def test_groups_ranked_by_average(self):
        from rekky.retriever.aggregator import aggregate

        groups = aggregate([
            _hit("a1", 0.95, content_type="place", place_id="a"),
            _hit("a2", 0.71, content_type="place", place_id="a"),  # avg 0.83
            _hit("b1", 0.90, content_type="place", place_id="b"),  # avg 0.90
        ])

        assert [g.group_key for g in groups] == ["place:b", "place:a"]

    def test_ties_keep_first_seen_order(self):
        from rekky.retriever.aggregator import aggregate

        groups = aggregate([
            _hit("x", 0.8, content_type="place", place_id="x"),
            _hit("y", 0.8, content_type="place", place_id="y"),
            _hit("z", 0.8, content_type="place", place_id="z"),
        ])

        assert [g.group_key for g in groups] == ["place:x", "place:y", "place:z"]

    def test_max_groups(self):
        from rekky.retriever.aggregator import aggregate

        hits = [_hit(f"r{i}", 0.9 - i * 0.01, content_type="place", place_id=f"p{i}") for i in range(5)]

        assert len(aggregate(hits, max_groups=2)) == 2
        assert aggregate(hits, max_groups=0) == []

    def test_empty(self):
        from rekky.retriever.aggregator import aggregate
        assert aggregate([]) == []


class TestEntityGroup:
    def test_add_keeps_mean_after_each_hit(self):
        from rekky.retriever.aggregator import EntityGroup

        scores = [0.82, 0.7, 0.99, 0.75, 0.9]
        hits = [_hit(f"r{i}", s, content_type="place", place_id="p1") for i, s in enumerate(scores)]
        group = EntityGroup.seed(hits[0])
        assert group.total_hits == 0

        for i, hit in enumerate(hits):
            group.add(hit)
            seen = scores[:i + 1]
            assert group.total_hits == i + 1
            assert group.average_similarity == pytest.approx(sum(seen) / len(seen))

    def test_display_name_prefers_entity_name(self):
        from rekky.retriever.aggregator import aggregate

        group = aggregate([_hit("r1", 0.9, content_type="place", place_id="p1",
                                place_name="Blue Tokai Coffee", title="Best flat white")])[0]
        assert group.display_name == "Blue Tokai Coffee"

    def test_display_name_for_content_type_group(self):
        from rekky.retriever.aggregator import aggregate

        group = aggregate([_hit("r1", 0.9, content_type="tip", title="Renew early")])[0]
        assert group.display_name == "Tip recommendations"

    def test_display_name_falls_back_to_title(self):
        from rekky.retriever.aggregator import aggregate

        group = aggregate([_hit("r1", 0.9, content_type="service", service_id="s1", title="Great plumber")])[0]
        assert group.display_name == "Great plumber"

    def test_review_count_and_labels(self):
        from rekky.retriever.aggregator import aggregate

        group = aggregate([
            _hit("r1", 0.9, content_type="place", place_id="p1", notes="Lovely", labels=["cozy", "wifi"]),
            _hit("r2", 0.8, content_type="place", place_id="p1", notes="  ", labels=["wifi", "quiet"]),
        ])[0]

        assert group.review_count == 1
        assert group.labels == ["cozy", "wifi", "quiet"]
        assert group.average_rating is None

    def test_to_dict(self):
        from rekky.retriever.aggregator import aggregate

        group = aggregate([_hit("r1", 0.91234, content_type="place", place_id="p1",
                                place_name="Blue Tokai Coffee", place_address="Indiranagar")])[0]
        data = group.to_dict()

        assert data["group_key"] == "place:p1"
        assert data["type"] == "place"
        assert data["name"] == "Blue Tokai Coffee"
        assert data["entity"]["address"] == "Indiranagar"
        assert data["average_similarity"] == 0.9123
        assert data["recommendations"][0]["id"] == "r1"
