"""
Result Aggregator

Collapses hits about the same real-world entity into one group so a place
reviewed five times shows up once, ranked by its average similarity.

Grouping keys:
- place:<place_id>      content_type "place" with a place id
- service:<service_id>  content_type "service" with a service id
- type:<content_type>   everything else (including place/service hits
                        missing their foreign key)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..common.schemas.records import SearchHit


class GroupType(str, Enum):
    PLACE = "place"
    SERVICE = "service"
    CONTENT_TYPE = "content_type"


def group_key_for(hit: SearchHit) -> str:
    if hit.content_type == "place" and hit.place_id:
        return f"place:{hit.place_id}"
    if hit.content_type == "service" and hit.service_id:
        return f"service:{hit.service_id}"
    return f"type:{hit.content_type}"


@dataclass
class EntityGroup:
    """Hits about one place, one service, or one content type"""
    group_key: str
    type: GroupType
    entity_meta: Dict[str, Any] = field(default_factory=dict)
    hits: List[SearchHit] = field(default_factory=list)
    average_similarity: float = 0.0
    total_hits: int = 0

    @classmethod
    def seed(cls, hit: SearchHit) -> "EntityGroup":
        """Start a group from the first hit's denormalized entity fields"""
        key = group_key_for(hit)
        if key.startswith("place:"):
            return cls(key, GroupType.PLACE, {
                "place_id": hit.place_id,
                "name": hit.place_name,
                "address": hit.place_address,
                "lat": hit.place_lat,
                "lng": hit.place_lng,
            })
        if key.startswith("service:"):
            return cls(key, GroupType.SERVICE, {
                "service_id": hit.service_id,
                "name": hit.service_name,
                "service_type": hit.service_type,
                "business_name": hit.business_name,
                "address": hit.service_address,
            })
        return cls(key, GroupType.CONTENT_TYPE, {"content_type": hit.content_type})

    def add(self, hit: SearchHit) -> None:
        """Append a hit, updating the running mean in O(1)"""
        self.hits.append(hit)
        self.total_hits += 1
        self.average_similarity += (hit.similarity - self.average_similarity) / self.total_hits

    @property
    def display_name(self) -> str:
        name = self.entity_meta.get("name")
        if name:
            return name
        if self.type == GroupType.CONTENT_TYPE:
            return f"{self.entity_meta.get('content_type', 'other')} recommendations".capitalize()
        # Place/service whose row had no name joined in
        for hit in self.hits:
            if hit.title:
                return hit.title
        return self.type.value.capitalize()

    @property
    def address(self) -> Optional[str]:
        return self.entity_meta.get("address")

    @property
    def ratings(self) -> List[int]:
        return [h.rating for h in self.hits if h.rating is not None]

    @property
    def average_rating(self) -> Optional[float]:
        ratings = self.ratings
        if not ratings:
            return None
        return sum(ratings) / len(ratings)

    @property
    def review_count(self) -> int:
        """Hits carrying written notes"""
        return sum(1 for h in self.hits if h.notes and h.notes.strip())

    @property
    def labels(self) -> List[str]:
        seen: List[str] = []
        for hit in self.hits:
            for label in hit.labels:
                if label not in seen:
                    seen.append(label)
        return seen

    @property
    def hit_ids(self) -> List[str]:
        return [h.record_id for h in self.hits]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_key": self.group_key,
            "type": self.type.value,
            "name": self.display_name,
            "entity": dict(self.entity_meta),
            "average_similarity": round(self.average_similarity, 4),
            "total_hits": self.total_hits,
            "average_rating": self.average_rating,
            "recommendations": [h.to_dict() for h in self.hits],
        }


def aggregate(hits: Iterable[SearchHit], max_groups: Optional[int] = None) -> List[EntityGroup]:
    """
    Group hits by entity and rank groups by average similarity.

    Hits are visited in input order, so hits inside a group keep their
    search ranking. Groups with equal averages keep first-seen order.

    Args:
        hits: Search hits, typically sorted by descending similarity
        max_groups: Keep only the best N groups

    Returns:
        EntityGroups sorted by descending average_similarity
    """
    groups: Dict[str, EntityGroup] = {}
    for hit in hits:
        key = group_key_for(hit)
        group = groups.get(key)
        if group is None:
            group = EntityGroup.seed(hit)
            groups[key] = group
        group.add(hit)

    ranked = sorted(groups.values(), key=lambda g: g.average_similarity, reverse=True)
    if max_groups is not None:
        ranked = ranked[:max(0, max_groups)]
    return ranked
