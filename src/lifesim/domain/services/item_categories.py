from __future__ import annotations

from typing import Optional

from lifesim.domain.models.item import ItemDefinition, ItemType


_CAFETERIA_DRINKS = frozenset(
    {
        "cafe_expresso",
        "cafe_latte",
        "cappuccino",
        "mocha",
        "cha_verde",
        "cha_camomila",
        "chocolate_quente",
        "smoothie_frutas",
        "suco_laranja",
        "agua_gas",
        "refrigerante",
        "energetico",
        "latte_nuvens_doces",
    }
)

_NON_ALCOHOLIC_BAR_DRINKS = frozenset(
    {
        "refresco_pessego",
        "cha_gelado",
        "leite_dourado",
        "agua_cristalina",
        "smoothie_energia",
        "mocktail_tropical",
        "limonada_magica",
        "mate_gelado",
        "kombucha_saude",
        "agua_infusao",
    }
)

_LIGHT_DRINKS = frozenset({"soju_brando", "cerveja_fogo", "cerveja_gelada", "vinho_elfico"})
_MEDIUM_DRINKS = frozenset({"makgeolli_floresta", "licor_lua", "vinho_tinto", "hidromel_abelhas"})
_STRONG_DRINKS = frozenset({"whisky_draconian", "absinto_verde", "vodka_gelo", "rum_capitao", "tequila_agave", "cachaca_ouro"})

LIGHT_ALCOHOL_LEVEL = 5
MEDIUM_ALCOHOL_LEVEL = 10
STRONG_ALCOHOL_LEVEL = 20
DEFAULT_ALCOHOL_LEVEL = 8

_FOOD_STORES = frozenset({"restaurant", "pizzeria", "icecream"})

CATEGORY_NAMES = {
    ItemType.FOOD: "Comidas",
    ItemType.DRINK: "Bebidas",
    ItemType.OBJECT: "Objetos",
}


def item_type_for(store_key: str, item: ItemDefinition | str) -> ItemType:
    """Which bag tab an item lands in.

    An explicit ``item_type`` on the definition overrides the store rule.
    """

    if isinstance(item, ItemDefinition):
        if item.item_type is not None:
            return item.item_type
        item_id = item.id
    else:
        item_id = item
    if store_key == "bar":
        return ItemType.DRINK
    if store_key in _FOOD_STORES:
        return ItemType.FOOD
    if store_key == "cafeteria":
        return ItemType.DRINK if item_id in _CAFETERIA_DRINKS else ItemType.FOOD
    return ItemType.OBJECT


def is_alcoholic(store_key: str, item_id: str) -> bool:
    if store_key == "bar":
        return item_id not in _NON_ALCOHOLIC_BAR_DRINKS
    return False


def alcohol_level(store_key: str, item_id: str) -> int:
    if not is_alcoholic(store_key, item_id):
        return 0
    if item_id in _LIGHT_DRINKS:
        return LIGHT_ALCOHOL_LEVEL
    if item_id in _MEDIUM_DRINKS:
        return MEDIUM_ALCOHOL_LEVEL
    if item_id in _STRONG_DRINKS:
        return STRONG_ALCOHOL_LEVEL
    return DEFAULT_ALCOHOL_LEVEL


def category_name(item_type: Optional[ItemType]) -> str:
    return CATEGORY_NAMES.get(item_type or ItemType.OBJECT, "Objetos")
