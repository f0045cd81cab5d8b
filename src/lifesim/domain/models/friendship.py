from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from lifesim.domain.models.relationship import ProposalStatus


def _text(value: Any) -> str:
    return str(value or "")


def _optional_id(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def parse_item_data(value: Any) -> dict[str, Any]:
    """Item snapshots travel as JSON text in SQL and as objects over REST."""

    if isinstance(value, Mapping):
        return dict(value)
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


@dataclass
class FriendRequest:
    id: Optional[str]
    requester_id: str
    addressee_id: str
    requester_username: str = ""
    addressee_username: str = ""
    status: ProposalStatus = ProposalStatus.PENDING
    created_at: Optional[str] = None

    def involves(self, user_id: str) -> bool:
        return user_id in (self.requester_id, self.addressee_id)

    def other_side(self, user_id: str) -> tuple[str, str]:
        if user_id == self.requester_id:
            return self.addressee_id, self.addressee_username
        return self.requester_id, self.requester_username

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FriendRequest":
        return cls(
            id=_optional_id(row.get("id")),
            requester_id=_text(row.get("requester_id")),
            addressee_id=_text(row.get("addressee_id")),
            requester_username=_text(row.get("requester_username")),
            addressee_username=_text(row.get("addressee_username")),
            status=ProposalStatus(_text(row.get("status")) or ProposalStatus.PENDING.value),
            created_at=_optional_id(row.get("created_at")),
        )


@dataclass
class FriendshipItemRequest:
    id: Optional[str]
    from_user_id: str
    from_username: str
    to_user_id: str
    to_username: str
    item_data: dict[str, Any] = field(default_factory=dict)
    status: ProposalStatus = ProposalStatus.PENDING
    created_at: Optional[str] = None
    processed_at: Optional[str] = None

    @property
    def item_name(self) -> str:
        return _text(self.item_data.get("name")) or _text(self.item_data.get("id"))

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FriendshipItemRequest":
        return cls(
            id=_optional_id(row.get("id")),
            from_user_id=_text(row.get("from_user_id")),
            from_username=_text(row.get("from_username")),
            to_user_id=_text(row.get("to_user_id")),
            to_username=_text(row.get("to_username")),
            item_data=parse_item_data(row.get("item_data")),
            status=ProposalStatus(_text(row.get("status")) or ProposalStatus.PENDING.value),
            created_at=_optional_id(row.get("created_at")),
            processed_at=_optional_id(row.get("processed_at")),
        )


@dataclass
class ConnectedSoul:
    """Two players bound by an accepted friendship item."""

    id: Optional[str]
    user1_id: str
    user1_username: str
    user2_id: str
    user2_username: str
    item_name: str
    item_data: dict[str, Any] = field(default_factory=dict)
    connected_at: Optional[str] = None

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def partner_of(self, user_id: str) -> tuple[str, str]:
        if user_id == self.user1_id:
            return self.user2_id, self.user2_username
        return self.user1_id, self.user1_username

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ConnectedSoul":
        return cls(
            id=_optional_id(row.get("id")),
            user1_id=_text(row.get("user1_id")),
            user1_username=_text(row.get("user1_username")),
            user2_id=_text(row.get("user2_id")),
            user2_username=_text(row.get("user2_username")),
            item_name=_text(row.get("item_name")),
            item_data=parse_item_data(row.get("item_data")),
            connected_at=_optional_id(row.get("connected_at")),
        )
