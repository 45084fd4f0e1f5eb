from __future__ import annotations

import random
import string
import time
from typing import Any, Iterable

from .economy import MAX_STACK_SIZE, midpoint_value
from .types import InventoryEntry, Item

# Checked in this order; the first category with a keyword contained in the
# lowercased item name wins.
CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "consumable",
        (
            "potion", "elixir", "food", "drink", "herb", "medicine", "bandage",
            "ration", "water", "ale", "wine", "bread", "meat", "fruit", "scroll",
            "antidote", "tonic", "salve", "pill", "injection", "stim", "medkit",
            "poção", "pocao", "comida", "bebida", "erva", "remédio", "remedio",
            "bandagem", "ração", "racao", "água", "agua", "cerveja", "vinho", "pão", "pao",
            "carne", "fruta", "pergaminho", "antídoto", "antidoto", "tônico", "tonico",
            "pomada", "pílula", "pilula", "injeção", "injecao", "kit médico",
            "poción", "hierba", "medicina", "vendaje",
            "ración", "pan", "pergamino", "ungüento", "pastilla",
        ),
    ),
    (
        "weapon",
        (
            "sword", "axe", "bow", "arrow", "dagger", "knife", "spear", "staff",
            "wand", "mace", "hammer", "gun", "pistol", "rifle", "laser", "blade",
            "crossbow", "bolt", "club", "whip", "flail", "halberd", "scythe",
            "grenade", "bomb", "explosive", "blaster", "lightsaber", "phaser",
            "espada", "machado", "arco", "flecha", "adaga", "faca", "lança", "lanca",
            "cajado", "varinha", "maça", "maca", "martelo", "arma", "pistola",
            "fuzil", "sabre", "besta", "virote", "clava", "chicote", "foice",
            "granada", "bomba", "explosivo", "sabre de luz",
            "hacha", "daga", "cuchillo", "lanza",
            "báculo", "varita", "maza", "martillo", "ballesta", "látigo",
        ),
    ),
    (
        "armor",
        (
            "armor", "armour", "shield", "helmet", "helm", "boots", "gloves",
            "gauntlets", "breastplate", "chainmail", "leather", "plate", "robe",
            "cloak", "cape", "vest", "jacket", "suit", "greaves", "pauldron",
            "bracer", "visor", "mask", "bodysuit",
            "armadura", "escudo", "elmo", "capacete", "botas", "luvas",
            "manoplas", "peitoral", "cota de malha", "couro", "placa", "manto",
            "capa", "colete", "jaqueta", "traje", "grevas", "ombreiras",
            "braçadeiras", "bracadeiras", "máscara", "mascara",
            "casco", "yelmo", "guantes",
            "coraza", "cota de malla", "cuero", "túnica", "chaleco",
        ),
    ),
    (
        "valuable",
        (
            "gold", "silver", "gem", "jewel", "diamond", "ruby", "emerald",
            "sapphire", "pearl", "coin", "treasure", "ring", "amulet", "necklace",
            "bracelet", "crown", "scepter", "goblet", "statue", "artifact",
            "relic", "crystal", "orb", "idol", "tiara",
            "ouro", "prata", "gema", "joia", "jóia", "diamante", "rubi",
            "esmeralda", "safira", "pérola", "perola", "moeda", "tesouro",
            "anel", "amuleto", "colar", "pulseira", "coroa", "cetro",
            "cálice", "calice", "estátua", "estatua", "artefato", "relíquia",
            "reliquia", "cristal", "orbe", "ídolo", "idolo",
            "oro", "plata", "joya", "rubí",
            "zafiro", "perla", "moneda", "tesoro", "anillo",
            "collar", "pulsera", "corona", "cáliz",
        ),
    ),
    (
        "material",
        (
            "wood", "stone", "iron", "steel", "ore", "ingot", "cloth",
            "bone", "scale", "feather", "fur", "hide", "thread", "rope", "chain",
            "glass", "oil", "powder", "dust", "essence", "component", "reagent",
            "madeira", "pedra", "ferro", "aço", "aco", "minério", "minerio",
            "lingote", "tecido", "osso", "escama", "pena", "pele",
            "pelo", "fio", "corda", "corrente", "vidro", "óleo", "oleo",
            "pó", "po", "poeira", "essência", "essencia", "componente", "reagente",
            "madera", "piedra", "hierro", "acero", "mineral",
            "tela", "hueso", "pluma", "piel", "hilo",
            "cuerda", "cadena", "vidrio", "aceite", "polvo", "esencia",
        ),
    ),
    (
        "quest",
        (
            "quest", "key", "letter", "note", "map", "document", "evidence",
            "token", "emblem", "seal", "pass", "ticket", "invitation", "contract",
            "deed", "warrant", "message", "journal", "diary", "book", "tome",
            "missão", "missao", "chave", "carta", "nota", "mapa", "documento",
            "evidência", "evidencia", "ficha", "emblema", "selo", "passe",
            "ingresso", "convite", "contrato", "escritura", "mandado",
            "mensagem", "diário", "diario", "livro", "tomo", "pergaminho antigo",
            "misión", "llave", "sello", "pase", "boleto",
            "invitación", "mensaje", "libro",
        ),
    ),
    (
        "currency",
        (
            "coin", "gold piece", "silver piece", "copper piece", "credit",
            "dollar", "euro", "yen", "peso", "pound", "crown", "ducat",
            "sovereign", "florin", "penny", "cent", "bitcoin", "crypto",
            "moeda", "peça de ouro", "peca de ouro", "peça de prata", "crédito",
            "credito", "dólar", "dolar", "real", "coroa", "ducado", "florim",
            "moneda", "pieza de oro", "pieza de plata",
            "corona", "florín",
        ),
    ),
    (
        "misc",
        (
            "torch", "lantern", "candle", "tool", "kit", "bag", "sack",
            "backpack", "container", "box", "chest", "bottle", "flask", "vial",
            "mirror", "compass", "spyglass", "telescope", "trinket", "toy",
            "tocha", "lanterna", "vela", "ferramenta", "bolsa",
            "saco", "mochila", "recipiente", "caixa", "baú", "bau", "garrafa",
            "frasco", "espelho", "bússola", "bussola", "luneta", "telescópio",
            "bugiganga", "brinquedo",
            "antorcha", "linterna", "herramienta",
            "caja", "cofre", "botella", "espejo", "brújula", "catalejo", "baratija", "juguete",
        ),
    ),
)

STACKABLE_CATEGORIES = frozenset({"consumable", "material"})


def detect_item_category(name: str) -> str:
    lowered = (name or "").lower()
    for category, keywords in CATEGORY_KEYWORDS:
        for keyword in keywords:
            if keyword in lowered:
                return category
    return "misc"


def generate_item_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"item_{int(time.time() * 1000)}_{suffix}"


def create_item(name: str, **options: Any) -> Item:
    category = options.get("category") or detect_item_category(name)
    base_value = options.get("base_value")
    return Item(
        id=generate_item_id(),
        name=name,
        category=category,
        description=options.get("description") or "",
        base_value=midpoint_value(category) if base_value is None else int(base_value),
        quantity=int(options.get("quantity") or 1),
        stackable=bool(options.get("stackable", category in STACKABLE_CATEGORIES)),
        consumable=bool(options.get("consumable", category == "consumable")),
        equipped=bool(options.get("equipped", False)),
    )


def is_legacy_inventory(inventory: Iterable[InventoryEntry]) -> bool:
    return any(isinstance(entry, str) for entry in inventory)


def normalize_inventory(raw: Any) -> list[Item]:
    """Coerce a persisted or generated inventory into a list of Items.

    Strings become new Items with a detected category; dicts are parsed;
    anything else becomes a placeholder.
    """
    if not isinstance(raw, list):
        return []
    items: list[Item] = []
    for entry in raw:
        if isinstance(entry, Item):
            items.append(entry)
        elif isinstance(entry, str):
            items.append(create_item(entry))
        elif isinstance(entry, dict) and entry.get("name"):
            item = Item.from_dict(entry)
            if not item.id:
                item.id = generate_item_id()
            if "category" not in entry:
                item.category = detect_item_category(item.name)
            items.append(item)
        else:
            items.append(create_item("Unknown Item"))
    return items


def add_item(inventory: list[Item], item: Item) -> list[Item]:
    if item.stackable:
        for idx, existing in enumerate(inventory):
            if existing.stackable and existing.name == item.name and existing.category == item.category:
                updated = list(inventory)
                updated[idx] = Item(
                    **{**existing.to_dict(), "quantity": min(existing.quantity + item.quantity, MAX_STACK_SIZE)}
                )
                return updated
    return [*inventory, item]


def remove_item(inventory: list[Item], item_id: str, quantity: int | None = None) -> list[Item]:
    for idx, existing in enumerate(inventory):
        if existing.id != item_id:
            continue
        if quantity is None or quantity >= existing.quantity:
            return inventory[:idx] + inventory[idx + 1 :]
        updated = list(inventory)
        updated[idx] = Item(**{**existing.to_dict(), "quantity": existing.quantity - quantity})
        return updated
    return inventory


def inventory_value(inventory: Iterable[Item]) -> int:
    return sum(item.quantity * item.base_value for item in inventory)
