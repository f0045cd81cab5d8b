from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class StatsChanged:
    user_id: str
    before: Dict[str, int]
    after: Dict[str, int]
    reason: str = ""


@dataclass
class WalletChanged:
    user_id: str
    balance: int
    delta: int
    reason: str = ""


@dataclass
class InventoryChanged:
    user_id: str
    item_ids: List[str] = field(default_factory=list)
    reason: str = ""


@dataclass
class DiseaseContracted:
    user_id: str
    disease_name: str


@dataclass
class DiseaseCured:
    user_id: str
    disease_name: str
    remaining: List[str] = field(default_factory=list)


@dataclass
class TemporaryEffectAdded:
    user_id: str
    message: str
    effect_type: str
    expires_at: float


@dataclass
class RelationshipChanged:
    user_id: str
    partner_id: Optional[str]
    relationship_type: Optional[str]
    action: str


@dataclass
class OrderStatusChanged:
    order_id: str
    status: str
    kind: str = "order"


@dataclass
class FriendshipChanged:
    user_id: str
    friend_id: str
    action: str
