from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from lifesim.domain.models.item import ItemEffect
from lifesim.domain.models.order import OrderLine


@dataclass
class OperationResult:
    ok: bool
    code: str = "ok"
    message: str = ""

    @classmethod
    def success(cls, message: str = "", **kwargs) -> "OperationResult":
        return cls(ok=True, code="ok", message=message, **kwargs)

    @classmethod
    def failure(cls, code: str, message: str, **kwargs) -> "OperationResult":
        return cls(ok=False, code=code, message=message, **kwargs)


@dataclass
class TransferResult(OperationResult):
    amount: int = 0
    sender_balance: Optional[int] = None
    receiver_balance: Optional[int] = None
    transaction_id: Optional[str] = None
    quantity: int = 0
    truncated: int = 0


@dataclass
class GrantResult(OperationResult):
    requested: int = 0
    granted: int = 0
    truncated: int = 0
    quantity: int = 0


@dataclass
class StatDelta:
    """Per-stat deltas produced by resolving an item's effects."""

    values: Dict[str, int] = field(default_factory=dict)
    messages: List[str] = field(default_factory=list)
    transient: bool = False

    def get(self, stat: str) -> int:
        return int(self.values.get(stat, 0))

    def is_empty(self) -> bool:
        return not any(self.values.values())


@dataclass
class UseItemResult(OperationResult):
    item_name: str = ""
    stats_before: Dict[str, int] = field(default_factory=dict)
    stats_after: Dict[str, int] = field(default_factory=dict)
    cured_disease: Optional[str] = None
    messages: List[str] = field(default_factory=list)


@dataclass
class DisplayItem:
    row_id: Optional[str]
    item_id: str
    name: str
    quantity: int = 1
    description: str = ""
    icon: str = ""
    price: int = 0
    item_type: str = "object"
    category: str = ""
    store_key: Optional[str] = None
    store_id: Optional[str] = None
    effects: Tuple[ItemEffect, ...] = ()
    relationship_type: Optional[str] = None
    is_custom: bool = False
    is_medicine: bool = False
    cures: Optional[str] = None
    sendable: bool = True
    usable: bool = True
    sent_by_username: Optional[str] = None
    received_at: Optional[str] = None

    @property
    def is_ring(self) -> bool:
        return self.relationship_type is not None


@dataclass
class InventoryView:
    items: List[DisplayItem] = field(default_factory=list)
    received: List[DisplayItem] = field(default_factory=list)
    stale: bool = False


@dataclass
class TemporaryEffectView:
    message: str
    effect_type: str
    expires_at: float


@dataclass
class PlayerStatusView:
    user_id: Optional[str]
    username: str
    display_name: str
    stats: Dict[str, int]
    wallet_balance: int
    diseases: List[str] = field(default_factory=list)
    effects: List[TemporaryEffectView] = field(default_factory=list)
    relationship_status: str = "single"
    stale: bool = False


@dataclass
class TransactionView:
    id: Optional[str]
    direction: str
    counterparty: str
    amount: int
    transaction_type: str
    description: str = ""
    created_at: Optional[str] = None


@dataclass
class ShareOption:
    percent: int
    value: int


@dataclass
class CartView:
    store_key: str
    lines: List[OrderLine] = field(default_factory=list)
    total: int = 0
