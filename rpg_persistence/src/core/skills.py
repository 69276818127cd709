"""
Skill definitions, experience table and hit point formulas.

The player record stores one (level, experience) pair per skill; the column
names are derived from the lowercase skill names defined here.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Dict, Mapping, Optional
from functools import lru_cache

from .config import settings


class SkillCategory(Enum):
    """Categories for organizing skills."""

    COMBAT = "combat"
    GATHERING = "gathering"
    ARTISAN = "artisan"


@dataclass(frozen=True)
class SkillDefinition:
    """Metadata for a skill definition."""

    name: str
    category: SkillCategory
    description: str
    start_level: int = 1


class SkillType(Enum):
    """
    All persisted skills.

    Constitution drives hit points and starts at level 10.
    """

    # Combat skills
    ATTACK = SkillDefinition("Attack", SkillCategory.COMBAT, "Melee accuracy")
    STRENGTH = SkillDefinition("Strength", SkillCategory.COMBAT, "Melee damage")
    DEFENSE = SkillDefinition("Defense", SkillCategory.COMBAT, "Damage reduction")
    RANGED = SkillDefinition("Ranged", SkillCategory.COMBAT, "Ranged combat")
    CONSTITUTION = SkillDefinition(
        "Constitution", SkillCategory.COMBAT, "Hit points", start_level=10
    )

    # Gathering skills
    WOODCUTTING = SkillDefinition(
        "Woodcutting", SkillCategory.GATHERING, "Chop down trees"
    )
    FISHING = SkillDefinition("Fishing", SkillCategory.GATHERING, "Catch fish from water")

    # Artisan skills
    FIREMAKING = SkillDefinition("Firemaking", SkillCategory.ARTISAN, "Light fires from logs")
    COOKING = SkillDefinition("Cooking", SkillCategory.ARTISAN, "Prepare food")

    @classmethod
    def from_name(cls, name: str) -> Optional["SkillType"]:
        """
        Get SkillType by name (case-insensitive).

        Returns:
            The matching SkillType or None if not found
        """
        name_lower = name.lower()
        for skill in cls:
            if skill.name.lower() == name_lower:
                return skill
        return None

    @classmethod
    def all_skill_names(cls) -> list[str]:
        """Get lowercase names of all skills."""
        return [skill.name.lower() for skill in cls]


SKILL_NAMES: tuple[str, ...] = tuple(SkillType.all_skill_names())

# Default max level constant
MAX_LEVEL: int = settings.SKILL_MAX_LEVEL

CONSTITUTION_START_LEVEL: int = SkillType.CONSTITUTION.value.start_level

HITPOINTS_PER_CONSTITUTION_LEVEL: int = 10


@lru_cache(maxsize=8)
def _xp_table(max_level: int = MAX_LEVEL) -> tuple[int, ...]:
    """
    Pre-compute the cumulative XP table.

    XP(L) = floor(sum(i=1 to L-1) of floor(i + 300 * 2^(i/7)) / 4)

    Returns:
        Tuple of XP values indexed by level (index 0 = level 1 = 0 XP)
    """
    xp_table = [0]
    points = 0

    for level in range(1, max_level):
        points += int(level + 300 * (2 ** (level / 7)))
        xp_table.append(points // 4)

    return tuple(xp_table)


def xp_for_level(level: int) -> int:
    """
    Total XP required to reach a level.

    Levels below 1 map to 0 XP, levels above the cap to the cap's XP.
    """
    if level < 1:
        return 0
    if level > MAX_LEVEL:
        level = MAX_LEVEL
    return _xp_table(MAX_LEVEL)[level - 1]


def level_for_xp(xp: int) -> int:
    """Current level for an XP amount (1..MAX_LEVEL)."""
    if xp <= 0:
        return 1

    xp_table = _xp_table(MAX_LEVEL)

    # Binary search for the level
    low, high = 1, MAX_LEVEL
    while low < high:
        mid = (low + high + 1) // 2
        if xp >= xp_table[mid - 1]:
            low = mid
        else:
            high = mid - 1

    return low


CONSTITUTION_START_XP: int = xp_for_level(CONSTITUTION_START_LEVEL)


def max_hitpoints_for(constitution_level: int) -> int:
    """Max hit points derived from the constitution level."""
    return max(1, constitution_level) * HITPOINTS_PER_CONSTITUTION_LEVEL


STARTING_HITPOINTS: int = max_hitpoints_for(CONSTITUTION_START_LEVEL)


def default_skill_levels() -> Dict[str, int]:
    """Starting level for every skill."""
    return {skill.name.lower(): skill.value.start_level for skill in SkillType}


def combat_level(levels: Mapping[str, int]) -> int:
    """
    Combat level from skill levels.

    floor((defense + constitution + floor(max(attack + strength, ranged) * 1.5)) / 4)
    """
    attack = levels.get("attack", 1)
    strength = levels.get("strength", 1)
    defense = levels.get("defense", 1)
    ranged = levels.get("ranged", 1)
    constitution = levels.get("constitution", CONSTITUTION_START_LEVEL)

    offence = int(max(attack + strength, ranged) * 1.5)
    return (defense + constitution + offence) // 4
