from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from lifesim.domain.models.item import RelationshipType, normalize_relationship_type


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# users.relationship_status written for both partners.
RELATIONSHIP_STATUS: dict[RelationshipType, str] = {
    RelationshipType.DATING: "dating",
    RelationshipType.ENGAGEMENT: "engaged",
    RelationshipType.MARRIAGE: "married",
    RelationshipType.FRIENDSHIP: "single",
}

# Allowed upgrades of an existing relationship.
UPGRADES: dict[RelationshipType, RelationshipType] = {
    RelationshipType.DATING: RelationshipType.ENGAGEMENT,
    RelationshipType.ENGAGEMENT: RelationshipType.MARRIAGE,
}


@dataclass
class Proposal:
    id: Optional[str]
    from_user_id: str
    to_user_id: str
    from_username: str
    to_username: str
    relationship_type: RelationshipType
    ring_item_id: Optional[str] = None
    status: ProposalStatus = ProposalStatus.PENDING

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Proposal":
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            from_user_id=str(row.get("from_user_id") or ""),
            to_user_id=str(row.get("to_user_id") or ""),
            from_username=str(row.get("from_username") or ""),
            to_username=str(row.get("to_username") or ""),
            relationship_type=normalize_relationship_type(row.get("relationship_type")) or RelationshipType.DATING,
            ring_item_id=row.get("ring_item_id") or None,
            status=ProposalStatus(str(row.get("status") or ProposalStatus.PENDING.value)),
        )


@dataclass
class Relationship:
    id: Optional[str]
    user1_id: str
    user2_id: str
    user1_username: str
    user2_username: str
    relationship_type: RelationshipType
    started_at: Optional[str] = None

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def partner_of(self, user_id: str) -> tuple[str, str]:
        if user_id == self.user1_id:
            return self.user2_id, self.user2_username
        return self.user1_id, self.user1_username

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Relationship":
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            user1_id=str(row.get("user1_id") or ""),
            user2_id=str(row.get("user2_id") or ""),
            user1_username=str(row.get("user1_username") or ""),
            user2_username=str(row.get("user2_username") or ""),
            relationship_type=normalize_relationship_type(row.get("relationship_type")) or RelationshipType.DATING,
            started_at=None if row.get("started_at") is None else str(row["started_at"]),
        )
