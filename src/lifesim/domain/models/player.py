from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from lifesim.domain.models.disease import Disease
from lifesim.domain.models.stats import PlayerStats


UNKNOWN_DISPLAY_NAME = "Usuário desconhecido"
_DISAMBIGUATOR = re.compile(r"\d{4}$")


def strip_disambiguator(username: str | None) -> str:
    if not username:
        return UNKNOWN_DISPLAY_NAME
    stripped = _DISAMBIGUATOR.sub("", username)
    return stripped or username


@dataclass
class Player:
    id: Optional[str]
    username: str
    nickname: Optional[str] = None
    stats: PlayerStats = field(default_factory=PlayerStats)
    wallet_balance: int = 0
    diseases: list[Disease] = field(default_factory=list)
    relationship_status: str = "single"

    @property
    def display_name(self) -> str:
        return self.nickname or strip_disambiguator(self.username)

    @property
    def disease_names(self) -> list[str]:
        return [disease.name for disease in self.diseases]

    def has_disease(self, name: str) -> bool:
        return any(disease.name == name for disease in self.diseases)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Player":
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            username=str(row.get("username") or ""),
            nickname=row.get("nickname") or None,
            stats=PlayerStats.from_row(row),
            wallet_balance=int(row.get("wallet_balance") or 0),
            diseases=parse_diseases(row.get("diseases_json")),
            relationship_status=str(row.get("relationship_status") or "single"),
        )


def parse_diseases(raw_value: Any) -> list[Disease]:
    if raw_value is None:
        return []
    payload = raw_value
    if isinstance(raw_value, str):
        text_value = raw_value.strip()
        if not text_value:
            return []
        try:
            payload = json.loads(text_value)
        except ValueError:
            return []
    if not isinstance(payload, list):
        return []
    diseases: list[Disease] = []
    seen: set[str] = set()
    for entry in payload:
        if isinstance(entry, Mapping):
            name = str(entry.get("name") or "").strip()
            medicine = str(entry.get("medicine") or "").strip()
        else:
            name = str(entry or "").strip()
            medicine = ""
        if name and name not in seen:
            diseases.append(Disease(name=name, medicine=medicine))
            seen.add(name)
    return diseases


def diseases_to_json(diseases: list[Disease]) -> str:
    return json.dumps([{"name": d.name, "medicine": d.medicine} for d in diseases], ensure_ascii=False)
