from __future__ import annotations


STAT_MIN = 0
STAT_MAX = 100

INVENTORY_ITEM_CAP = 10

CURE_HEALTH_BONUS = 15
CURE_DISEASE_STAT_REDUCTION = 15

DIVORCE_FEE = 5000
DIVORCE_DESCRIPTION = "Taxa de divórcio"

INITIAL_WALLET_BALANCE = 2000

TRANSIENT_EFFECT_MINUTES = 60
ALCOHOL_EFFECT_MINUTES = 30
ALCOHOL_EFFECT_MESSAGE = "Sentindo os efeitos do álcool..."

ALCOHOLISM_DECAY_STEP = 2
ALCOHOLISM_DECAY_INTERVAL_SECONDS = 60
HUNGER_DECAY_INTERVAL_SECONDS = 60
HAPPINESS_DECAY_INTERVAL_SECONDS = 60
DISEASE_RECONCILE_INTERVAL_SECONDS = 60
POLL_INTERVAL_SECONDS = 30
INVENTORY_FRESHNESS_SECONDS = 60
USER_ID_CACHE_SECONDS = 300

# Server-side gates for the decay functions.
SERVER_HUNGER_DECAY_STEP = 5
SERVER_HUNGER_DECAY_GATE_SECONDS = 10 * 60
SERVER_ALCOHOLISM_DECAY_GATE_SECONDS = 5 * 60
SERVER_HAPPINESS_DECAY_STEP = 5
SERVER_HAPPINESS_DECAY_GATE_SECONDS = 20 * 60

MALNUTRITION_HUNGER_THRESHOLD = 20

CUSTOM_ITEM_PRICES = {
    "food": 30,
    "drink": 8,
    "object": 300,
}
CUSTOM_CONSUMABLE_HUNGER = 3
CUSTOM_OBJECT_MOOD = 5

# Satiety by price for foods that carry no hunger effect, (max price, hunger).
PRICE_SATIETY_TIERS = (
    (50, 20),
    (150, 40),
    (250, 60),
)
PRICE_SATIETY_MAX = 100

SHARE_FRACTIONS = (25, 50, 75)
SHARE_MIN_VALUE = 10

CHECKUP_TREATMENT = "Check-up Básico"
SPECIALIST_TREATMENT = "Consulta Especializada"
SURGERY_TREATMENT = "Cirurgia"
CURE_TREATMENT_COST = 150
CURE_TREATMENT_HEALTH = 20

HOSPITAL_TREATMENTS = {
    CHECKUP_TREATMENT: (50, 10),
    SPECIALIST_TREATMENT: (100, 25),
    SURGERY_TREATMENT: (300, 50),
}


def price_satiety(price: int | None) -> int:
    if price is None or price <= 0:
        return CUSTOM_CONSUMABLE_HUNGER
    for ceiling, hunger in PRICE_SATIETY_TIERS:
        if price <= ceiling:
            return hunger
    return PRICE_SATIETY_MAX
