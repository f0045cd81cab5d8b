from __future__ import annotations

from typing import Any, Iterable, Optional

from lifesim.domain.models.item import (
    ItemDefinition,
    ItemEffect,
    ItemType,
    Store,
    normalize_relationship_type,
)


def _item(
    item_id: str,
    name: str,
    price: int,
    description: str = "",
    *,
    category: str = "",
    effect: Optional[dict[str, Any]] = None,
    effects: Iterable[dict[str, Any]] = (),
    item_type: Optional[str] = None,
    icon: str = "",
    kind: str = "",
    cures: Optional[str] = None,
    relationship_type: Optional[str] = None,
) -> ItemDefinition:
    raw_effects = [effect] if effect else list(effects)
    return ItemDefinition(
        id=item_id,
        name=name,
        price=price,
        description=description,
        category=category,
        item_type=ItemType(item_type) if item_type else None,
        icon=icon,
        effects=tuple(
            ItemEffect(
                type=str(raw["type"]),
                value=int(raw["value"]),
                message=str(raw.get("message") or ""),
                duration=raw.get("duration"),
            )
            for raw in raw_effects
        ),
        relationship_type=normalize_relationship_type(relationship_type),
        kind=kind,
        cures=cures,
    )


def _medicine(item_id: str, name: str, price: int, cures: str, description: str, **kwargs: Any) -> ItemDefinition:
    return _item(item_id, name, price, description, kind="medicine", cures=cures, **kwargs)


_PHARMACY = Store(
    key="pharmacy",
    id="farmacia",
    name="Farmácia",
    manager_username="Farmacia1212",
    items=(
        _medicine(
            "elixir_gelo",
            "Elixir Refrescante de Gelo",
            180,
            "Gripe do Vento Gelado",
            "Alívio rápido da dor e previne bolhas",
            category="Produtos Para Queimaduras",
            effect={"type": "health", "value": 15, "message": "Sensação de frescor gelado"},
        ),
        _medicine(
            "essencia_calmante",
            "Essência do Calmante Sereno",
            40,
            "Enjoo do Portal",
            "Combate enjoo, acalma o estômago e restaura paz interior",
            category="Poções de Cura e Bem-Estar",
            effect={"type": "health", "value": 10, "message": "Serenidade tomando conta do corpo"},
        ),
        _medicine(
            "pomada_sabio",
            "Pomada do Sábio Curador",
            50,
            "Dor Fantasma de Batalha",
            "Alivia dores musculares e articulares de guerreiros veteranos",
            category="Poções de Cura e Bem-Estar",
            effect={"type": "health", "value": 15, "message": "Músculos relaxando com sabedoria antiga"},
        ),
        _item(
            "fraldas_encantadas",
            "Fraldas Encantadas da Fada Madrinha",
            35,
            "Mantém o bebê seco e protegido contra assaduras mágicas",
            category="Itens para Bebês & Cuidados Básicos",
        ),
        _medicine(
            "nectar_sereias",
            "Néctar das Sereias",
            80,
            "Febre de Dragão",
            "Hidrata e deixa a pele macia como escamas de sereia ao luar",
            category="Hidratação & Revitalização",
            effect={"type": "mood", "value": 12, "duration": 15, "message": "Suavidade das sereias"},
        ),
        _medicine(
            "pomada_fenix",
            "Pomada da Fênix",
            70,
            "Pele de Pedra",
            "Restaura áreas ressecadas ou danificadas como se fosse renascimento",
            category="Cuidados Especiais",
            effect={"type": "health", "value": 12, "message": "Renascimento da fênix"},
        ),
        _item(
            "mascara_guardiao",
            "Máscara do Guardião Celestial",
            65,
            "Protege contra vírus, poeira mágica e respingos de poções perigosas",
            category="Máscaras de Proteção Sobrenatural",
        ),
        _medicine(
            "mascara_nevoa",
            "Máscara da Névoa Purificadora",
            68,
            "Irritação de Poeira Mágica",
            "Filtra o ar com essência de ervas sagradas",
            category="Máscaras de Proteção Sobrenatural",
        ),
        _medicine(
            "mascara_luz",
            "Máscara da Luz Divina",
            75,
            "Febre da Lua Cheia",
            "Purifica cada respiração com bênçãos de cura",
            category="Máscaras de Proteção Sobrenatural",
        ),
        _medicine(
            "gel_clerigo",
            "Gel Purificador do Clérigo",
            35,
            "Virose do Pó de Fada",
            "Remove germes, impurezas e pequenas maldições",
            category="Géis de Proteção Mágica para as Mãos",
        ),
        _medicine(
            "roulette_medicine1",
            'Protetor Solar "Luz de Sombra"',
            70,
            "Queimadura Solar Arcana",
            "Bloqueia até a mais maligna das queimaduras solares arcanas",
            category="Remédios da Roleta",
            icon="☀️",
        ),
    ),
)

_BAR = Store(
    key="bar",
    id="bar",
    name="Bar",
    manager_username="Bar1212",
    items=(
        _item(
            "refresco_pessego",
            "Refresco de Pêssego do Vale",
            50,
            effect={"type": "energy", "value": 25, "duration": 20, "message": "Nossa, que frescor doce! Parece que acordei de um sonho bom."},
        ),
        _item(
            "cha_gelado",
            "Chá Gélido da Montanha Azul",
            55,
            effect={"type": "energy", "value": 30, "duration": 15, "message": "É como beber o vento da montanha... minha mente ficou clara."},
        ),
        _item(
            "soju_brando",
            "Soju Brando da Vila",
            80,
            effect={"type": "alcoholism", "value": 5, "duration": 30, "message": "Hehe... vocês são meus melhores amigos, sabia?"},
        ),
        _item(
            "makgeolli_floresta",
            "Makgeolli da Floresta Densa",
            90,
            effect={"type": "alcoholism", "value": 10, "duration": 30, "message": "Hahaha! Até o copo parece engraçado agora."},
        ),
        _item(
            "cerveja_fogo",
            "Cerveja do Fogo Selvagem",
            130,
            effect={"type": "alcoholism", "value": 12, "duration": 20, "message": "Arde na garganta, mas me sinto invencível!"},
        ),
        _item(
            "espirito_dragao",
            "Espírito de Dragão",
            200,
            effect={"type": "alcoholism", "value": 30, "duration": 20, "message": "HAA! Eu posso enfrentar até um dragão agora!"},
        ),
    ),
)

_RESTAURANT = Store(
    key="restaurant",
    id="restaurante",
    name="Restaurante",
    manager_username="Restaurante1212",
    items=(
        _item(
            "bibimbap",
            "Bibimbap Encantado",
            100,
            "Prato coreano que ativa runas de concentração",
            category="Pratos Principais",
            effect={"type": "hunger", "value": 50, "duration": 15, "message": "Ao misturar os ingredientes, ativa uma runa que aumenta a concentração e foco."},
        ),
        _item(
            "tteokbokki",
            "Tteokbokki de Fogo Fátuo",
            160,
            "Massinha picante com resistência ao frio",
            category="Pratos Principais",
            effect={"type": "hunger", "value": 80, "duration": 20, "message": "Picância mágica que aquece o corpo e concede leve resistência ao frio."},
        ),
        _item(
            "galbi_dragao",
            "Galbi de Dragão Jovem",
            280,
            "Costela que reforça a energia vital",
            category="Pratos Principais",
            effect={"type": "hunger", "value": 100, "duration": 25, "message": "Reforça temporariamente a energia vital, deixando o corpo mais forte."},
        ),
        _item(
            "kimchi_despertar",
            "Kimchi do Despertar",
            100,
            "Kimchi que clareia a mente e afasta pesadelos",
            category="Pratos Principais",
            effect={"type": "hunger", "value": 50, "duration": 10, "message": "Clareia a mente, afasta pesadelos e fortalece a resistência mental."},
        ),
    ),
)

_PIZZERIA = Store(
    key="pizzeria",
    id="pizzaria",
    name="Pizzaria",
    manager_username="Pizzaria1212",
    items=(
        _item(
            "classica_aurora",
            "Clássica Aurora",
            45,
            "Simples, mas divina... o sabor da tradição.",
            category="Pizzas Salgadas Normais",
            effect={"type": "hunger", "value": 22, "duration": 20, "message": "Simples, mas divina... o sabor da tradição."},
        ),
        _item(
            "quatro_queijos_corte",
            "Quatro Queijos da Corte",
            52,
            "Cada mordida é uma realeza de sabores!",
            category="Pizzas Salgadas Normais",
        ),
        _item(
            "refrigerante",
            "Refrigerante (Cola, Guaraná, Limão)",
            8,
            "Refrescante, dá até gás pra continuar o dia.",
            category="Bebidas",
            item_type="drink",
            effect={"type": "energy", "value": 15, "duration": 10, "message": "Refrescante, dá até gás pra continuar o dia."},
        ),
    ),
)

_ICECREAM = Store(
    key="icecream",
    id="sorveteria",
    name="Sorveteria",
    manager_username="Sorveteria1212",
    happiness_store=True,
    items=(
        _item(
            "baunilha_sonhos",
            "Baunilha dos Sonhos",
            15,
            "Sorvete clássico que acalma a alma",
            category="Sorvetes Tradicionais",
            item_type="food",
            icon="🍦",
            effect={"type": "hunger", "value": 15, "duration": 15, "message": "É como um abraço doce na alma..."},
        ),
        _item(
            "chocolate_feiticeiro",
            "Chocolate Feiticeiro",
            18,
            "Chocolate com poderes mágicos",
            category="Sorvetes Tradicionais",
            item_type="food",
            icon="🍫",
            effect={"type": "mood", "value": 18, "duration": 20, "message": "Esse chocolate... parece ter magia própria!"},
        ),
        _item(
            "taca_arco_iris",
            "Taça Arco-Íris",
            40,
            "Três bolas com calda de frutas e granulado mágico",
            category="Taças Especiais",
            item_type="food",
            icon="🍨",
            effects=(
                {"type": "hunger", "value": 20},
                {"type": "happiness", "value": 10, "message": "Cores por todo lado!"},
            ),
        ),
    ),
)

_JEWELRY = Store(
    key="jewelry",
    id="joalheria",
    name="Joalheria",
    manager_username="Joalheria1212",
    items=(
        _item(
            "anel_alvorecer",
            "Doce Alvorecer",
            320,
            "Quero começar um novo amanhecer ao seu lado... aceita namorar comigo?",
            category="Anéis de Namoro",
            relationship_type="dating",
            icon="💍",
        ),
        _item(
            "anel_lua_amor",
            "Lua do Amor",
            450,
            "Assim como a lua ilumina a noite, você ilumina minha vida... aceita namorar comigo?",
            category="Anéis de Namoro",
            relationship_type="dating",
            icon="💍",
        ),
        _item(
            "anel_flor_paixao",
            "Flor da Paixão",
            1250,
            "Nosso amor floresceu... e quero que dure para sempre. Aceita noivar comigo?",
            category="Anéis de Noivado",
            relationship_type="engagement",
            icon="💍",
        ),
        _item(
            "anel_aurora_dourada",
            "Aurora Dourada",
            2400,
            "Quero compartilhar todas as auroras da minha vida com você. Aceita se casar comigo?",
            category="Anéis de Casamento",
            relationship_type="marriage",
            icon="💍",
        ),
        _item(
            "anel_dois_coracoes",
            "Dois Corações",
            3000,
            "Dois corações, uma só vida... aceita casar comigo?",
            category="Anéis de Casamento",
            relationship_type="marriage",
            icon="💍",
        ),
        _item(
            "pulseira_amizade",
            "Pulseira da Amizade Eterna",
            150,
            "Um laço simples para quem está sempre ao seu lado",
            category="Amizade",
            relationship_type="amizade",
            icon="📿",
        ),
    ),
)

_SEXSHOP = Store(
    key="sexshop",
    id="sexshop",
    name="Sex Shop",
    manager_username="Sexshop1212",
    happiness_store=True,
    items=(
        _item(
            "tabaco_pau_fogo",
            "Tabaco do Pau de Fogo",
            120,
            "Tabaco exótico estimulante",
            category="Fumos e Poções Exóticos",
            effect={"type": "mood", "value": 20, "duration": 15, "message": "Fumegando com paixão"},
        ),
        _item(
            "po_pinica",
            "Pó do Pinica-Pinica",
            65,
            "Pó mágico estimulante",
            category="Fumos e Poções Exóticos",
            effect={"type": "mood", "value": 15, "duration": 10, "message": "Formigando de prazer"},
        ),
    ),
)

_CAFETERIA = Store(
    key="cafeteria",
    id="cafeteria",
    name="Cafeteria",
    manager_username="Cafeteria1212",
    items=(
        _item(
            "latte_nuvens_doces",
            "Latte das Nuvens Doces",
            40,
            "Leveza das nuvens em cada gole",
            category="Bebidas Quentes Mágicas",
            effect={"type": "energy", "value": 20, "duration": 15, "message": "Um gole e você sente a leveza das nuvens adoçando sua alma."},
        ),
        _item(
            "cafe_expresso",
            "Café Expresso do Despertar",
            12,
            "Curto, forte e sem rodeios",
            category="Bebidas Quentes Mágicas",
            effect={"type": "energy", "value": 10, "duration": 10, "message": "Acordado de vez!"},
        ),
        _item(
            "croissant_estelar",
            "Croissant Estelar",
            25,
            "Massa folhada que brilha levemente no escuro",
            category="Doces e Salgados",
        ),
    ),
)


STORES: dict[str, Store] = {
    store.key: store
    for store in (_PHARMACY, _BAR, _RESTAURANT, _PIZZERIA, _ICECREAM, _JEWELRY, _SEXSHOP, _CAFETERIA)
}


def get_store(key_or_id: str) -> Optional[Store]:
    """Look a store up by catalog key ("restaurant") or persisted id ("restaurante")."""

    if key_or_id in STORES:
        return STORES[key_or_id]
    for store in STORES.values():
        if store.id == key_or_id:
            return store
    return None


def store_for_manager(username: str) -> Optional[Store]:
    for store in STORES.values():
        if store.manager_username == username:
            return store
    return None


def build_catalog_index(stores: Iterable[Store] | None = None) -> dict[str, tuple[Store, ItemDefinition]]:
    """Flatten every store into an item id -> (store, item) map.

    When two stores list the same id the first one wins.
    """

    index: dict[str, tuple[Store, ItemDefinition]] = {}
    for store in stores if stores is not None else STORES.values():
        for item in store.items:
            index.setdefault(item.id, (store, item))
    return index


def medicine_index(stores: Iterable[Store] | None = None) -> dict[str, str]:
    """Medicine item name -> disease name it cures."""

    cures: dict[str, str] = {}
    for store, item in build_catalog_index(stores).values():
        if item.cures:
            cures.setdefault(item.name, item.cures)
    return cures
