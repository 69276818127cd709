"""
Item catalog seed data and equipment slot definitions.

The catalog is written to the item table once, on the first boot that finds
the table empty. After that the table is the source of truth.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class ItemCategory(str, Enum):
    """Categories for organizing items."""

    WEAPON = "weapon"
    SHIELD = "shield"
    HELMET = "helmet"
    BODY = "body"
    LEGS = "legs"
    TOOL = "tool"
    AMMUNITION = "ammunition"
    RESOURCE = "resource"
    FOOD = "food"
    CURRENCY = "currency"


class EquipmentSlot(str, Enum):
    """Named equipment slots. A player holds at most one item per slot."""

    WEAPON = "weapon"
    SHIELD = "shield"
    HELMET = "helmet"
    BODY = "body"
    LEGS = "legs"
    ARROWS = "arrows"

    @classmethod
    def names(cls) -> list[str]:
        return [slot.value for slot in cls]


@dataclass(frozen=True)
class ItemSeed:
    """One row of the starter item catalog."""

    id: int
    name: str
    type: ItemCategory
    tier: Optional[str] = None
    stackable: bool = False
    attack_level: Optional[int] = None
    strength_level: Optional[int] = None
    defense_level: Optional[int] = None
    ranged_level: Optional[int] = None
    attack_bonus: int = 0
    strength_bonus: int = 0
    defense_bonus: int = 0
    ranged_bonus: int = 0
    heals: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "tier": self.tier,
            "stackable": self.stackable,
            "attack_level": self.attack_level,
            "strength_level": self.strength_level,
            "defense_level": self.defense_level,
            "ranged_level": self.ranged_level,
            "attack_bonus": self.attack_bonus,
            "strength_bonus": self.strength_bonus,
            "defense_bonus": self.defense_bonus,
            "ranged_bonus": self.ranged_bonus,
            "heals": self.heals,
            "item_metadata": self.metadata or None,
        }


W, S, H, B, L = (
    ItemCategory.WEAPON,
    ItemCategory.SHIELD,
    ItemCategory.HELMET,
    ItemCategory.BODY,
    ItemCategory.LEGS,
)

ITEM_SEEDS: tuple[ItemSeed, ...] = (
    # Weapons - Melee
    ItemSeed(1, "Bronze Sword", W, "bronze", attack_level=1, attack_bonus=4, strength_bonus=2,
             metadata={"weapon_type": "melee"}),
    ItemSeed(2, "Steel Sword", W, "steel", attack_level=10, attack_bonus=8, strength_bonus=4,
             metadata={"weapon_type": "melee"}),
    ItemSeed(3, "Mithril Sword", W, "mithril", attack_level=20, attack_bonus=12, strength_bonus=6,
             metadata={"weapon_type": "melee"}),

    # Weapons - Ranged
    ItemSeed(11, "Wood Bow", W, "wood", ranged_level=1, ranged_bonus=4,
             metadata={"weapon_type": "ranged"}),
    ItemSeed(12, "Oak Bow", W, "oak", ranged_level=10, ranged_bonus=8,
             metadata={"weapon_type": "ranged"}),
    ItemSeed(13, "Willow Bow", W, "willow", ranged_level=20, ranged_bonus=12,
             metadata={"weapon_type": "ranged"}),

    # Shields
    ItemSeed(21, "Bronze Shield", S, "bronze", defense_level=1, defense_bonus=6),
    ItemSeed(22, "Steel Shield", S, "steel", defense_level=10, defense_bonus=12),
    ItemSeed(23, "Mithril Shield", S, "mithril", defense_level=20, defense_bonus=18),

    # Helmets
    ItemSeed(31, "Leather Helmet", H, "leather", defense_level=1, defense_bonus=2),
    ItemSeed(32, "Bronze Helmet", H, "bronze", defense_level=1, defense_bonus=4),
    ItemSeed(33, "Steel Helmet", H, "steel", defense_level=10, defense_bonus=8),
    ItemSeed(34, "Mithril Helmet", H, "mithril", defense_level=20, defense_bonus=12),

    # Body armor
    ItemSeed(41, "Leather Body", B, "leather", defense_level=1, defense_bonus=6),
    ItemSeed(42, "Bronze Body", B, "bronze", defense_level=1, defense_bonus=12),
    ItemSeed(43, "Steel Body", B, "steel", defense_level=10, defense_bonus=24),
    ItemSeed(44, "Mithril Body", B, "mithril", defense_level=20, defense_bonus=36),

    # Leg armor
    ItemSeed(51, "Leather Legs", L, "leather", defense_level=1, defense_bonus=4),
    ItemSeed(52, "Bronze Legs", L, "bronze", defense_level=1, defense_bonus=8),
    ItemSeed(53, "Steel Legs", L, "steel", defense_level=10, defense_bonus=16),
    ItemSeed(54, "Mithril Legs", L, "mithril", defense_level=20, defense_bonus=24),

    # Tools
    ItemSeed(61, "Bronze Hatchet", ItemCategory.TOOL, "bronze", metadata={"skill": "woodcutting"}),
    ItemSeed(62, "Fishing Rod", ItemCategory.TOOL, metadata={"skill": "fishing"}),
    ItemSeed(63, "Tinderbox", ItemCategory.TOOL, metadata={"skill": "firemaking"}),

    # Ammunition
    ItemSeed(71, "Arrows", ItemCategory.AMMUNITION, stackable=True, ranged_level=1),

    # Resources
    ItemSeed(81, "Logs", ItemCategory.RESOURCE, stackable=True),
    ItemSeed(82, "Raw Fish", ItemCategory.RESOURCE, stackable=True),
    ItemSeed(83, "Cooked Fish", ItemCategory.FOOD, stackable=True, heals=40),

    # Currency
    ItemSeed(91, "Coins", ItemCategory.CURRENCY, stackable=True),
)

del W, S, H, B, L

# Every new player starts with a bronze sword in the weapon slot
STARTING_WEAPON_ID: int = 1
STARTING_WEAPON_NAME: str = "Bronze Sword"

STARTING_ITEMS: tuple[Dict[str, Any], ...] = (
    {
        "id": STARTING_WEAPON_ID,
        "name": STARTING_WEAPON_NAME,
        "quantity": 1,
        "stackable": False,
        "equipped": True,
    },
)
