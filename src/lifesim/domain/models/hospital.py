from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


CURE_TREATMENT_PREFIX = "Cura para "


class TreatmentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class TreatmentRequest:
    id: Optional[str]
    user_id: str
    username: str
    treatment_type: str
    treatment_cost: int
    status: TreatmentStatus = TreatmentStatus.PENDING
    manager_notes: str = ""

    @property
    def disease_name(self) -> Optional[str]:
        if self.treatment_type.startswith(CURE_TREATMENT_PREFIX):
            return self.treatment_type[len(CURE_TREATMENT_PREFIX):].strip() or None
        return None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TreatmentRequest":
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            user_id=str(row.get("user_id") or ""),
            username=str(row.get("username") or ""),
            treatment_type=str(row.get("treatment_type") or ""),
            treatment_cost=int(row.get("treatment_cost") or 0),
            status=TreatmentStatus(str(row.get("status") or TreatmentStatus.PENDING.value)),
            manager_notes=str(row.get("manager_notes") or ""),
        )
