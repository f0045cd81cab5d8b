from __future__ import annotations

from dataclasses import dataclass


MALNUTRITION = "Desnutrição"


@dataclass(frozen=True)
class Disease:
    name: str
    medicine: str = ""


# Diseases a player can contract, keyed by name. The medicine is the item name that cures it.
DISEASE_CATALOG: dict[str, Disease] = {
    disease.name: disease
    for disease in (
        Disease("Queimadura Solar Arcana", 'Protetor Solar "Luz de Sombra"'),
        Disease("Gripe do Vento Gelado", "Elixir Refrescante de Gelo"),
        Disease("Febre da Lua Cheia", "Máscara da Luz Divina"),
        Disease("Enjoo do Portal", "Essência do Calmante Sereno"),
        Disease("Virose do Pó de Fada", "Gel Purificador do Clérigo"),
        Disease("Dor Fantasma de Batalha", "Pomada do Sábio Curador"),
        Disease("Irritação de Poeira Mágica", "Máscara da Névoa Purificadora"),
        Disease("Pele de Pedra", "Pomada da Fênix"),
        Disease("Febre de Dragão", "Néctar das Sereias"),
        # No pharmacy cure; treated at the hospital.
        Disease(MALNUTRITION, "Consulta médica"),
    )
}


def lookup_disease(name: str) -> Disease:
    return DISEASE_CATALOG.get(name) or Disease(name=name)
