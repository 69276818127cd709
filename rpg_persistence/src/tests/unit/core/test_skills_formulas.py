"""
Unit tests for skill XP formulas and hit point derivation.

Pure unit tests - no database, no managers, just math.
"""

from rpg_persistence.src.core.skills import (
    CONSTITUTION_START_LEVEL,
    CONSTITUTION_START_XP,
    MAX_LEVEL,
    SKILL_NAMES,
    STARTING_HITPOINTS,
    SkillCategory,
    SkillType,
    _xp_table,
    combat_level,
    default_skill_levels,
    level_for_xp,
    max_hitpoints_for,
    xp_for_level,
)


class TestXPFormula:
    """Test the XP formula calculations."""

    def test_level_1_requires_zero_xp(self):
        assert xp_for_level(1) == 0
        assert xp_for_level(0) == 0

    def test_level_2_threshold(self):
        # floor((1 + 300 * 2^(1/7)) / 4)
        assert xp_for_level(2) == 83

    def test_level_10_threshold(self):
        """Constitution starts at level 10 with this much XP."""
        assert xp_for_level(10) == 1154
        assert CONSTITUTION_START_XP == 1154

    def test_level_99_threshold(self):
        assert xp_for_level(99) == 13_034_431

    def test_levels_above_cap_use_cap(self):
        assert xp_for_level(MAX_LEVEL + 20) == xp_for_level(MAX_LEVEL)

    def test_xp_table_is_monotonically_increasing(self):
        xp_table = _xp_table(MAX_LEVEL)
        for i in range(1, len(xp_table)):
            assert xp_table[i] > xp_table[i - 1], f"XP should increase at level {i + 1}"


class TestLevelForXP:
    def test_boundaries(self):
        assert level_for_xp(0) == 1
        assert level_for_xp(-5) == 1
        assert level_for_xp(1153) == 9
        assert level_for_xp(1154) == 10

    def test_caps_at_max_level(self):
        assert level_for_xp(500_000_000) == MAX_LEVEL

    def test_inverse_of_xp_for_level(self):
        for level in range(1, MAX_LEVEL + 1):
            assert level_for_xp(xp_for_level(level)) == level


class TestSkillDefinitions:
    def test_every_skill_persisted(self):
        assert set(SKILL_NAMES) == {
            "attack",
            "strength",
            "defense",
            "ranged",
            "constitution",
            "woodcutting",
            "fishing",
            "firemaking",
            "cooking",
        }

    def test_from_name_is_case_insensitive(self):
        assert SkillType.from_name("Woodcutting") is SkillType.WOODCUTTING
        assert SkillType.from_name("ATTACK") is SkillType.ATTACK
        assert SkillType.from_name("necromancy") is None

    def test_categories(self):
        assert SkillType.RANGED.value.category == SkillCategory.COMBAT
        assert SkillType.FISHING.value.category == SkillCategory.GATHERING
        assert SkillType.COOKING.value.category == SkillCategory.ARTISAN

    def test_default_levels(self):
        levels = default_skill_levels()

        assert levels["constitution"] == CONSTITUTION_START_LEVEL == 10
        assert all(level == 1 for name, level in levels.items() if name != "constitution")


class TestHitpointsAndCombat:
    def test_max_hitpoints(self):
        assert max_hitpoints_for(10) == 100
        assert max_hitpoints_for(11) == 110
        assert max_hitpoints_for(0) == 10
        assert STARTING_HITPOINTS == 100

    def test_starting_combat_level(self):
        assert combat_level(default_skill_levels()) == 3

    def test_ranged_can_dominate_offence(self):
        levels = default_skill_levels()
        levels["ranged"] = 40

        # (1 + 10 + floor(40 * 1.5)) // 4
        assert combat_level(levels) == 17
