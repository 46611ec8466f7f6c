"""
Auto-classification of model files into structured categories.

Sources, highest priority first:
    1. Folder structure: Creator/Collection/file.stl
    2. Filename keywords: role, fill, creature, race, class
    3. Size: scale markers in the filename ("28mm"), else model height
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence

from meshshelf.models import CategoryValues

CATEGORY_IDS: tuple[str, ...] = (
    "creator",
    "collection",
    "role",
    "size",
    "fill",
    "creature",
    "race",
    "class",
)

ROLE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "scatter": ("scatter", "debris", "rock", "barrel", "crate", "bush", "tree", "stump",
                "mushroom", "crystal", "candle", "torch"),
    "tile": ("tile", "floor", "wall", "corner", "straight", "corridor", "doorway",
             "entrance", "passage"),
    "terrain": ("terrain", "cliff", "hill", "mountain", "bridge", "ruin", "building",
                "tower", "castle", "house", "tavern"),
    "prop": ("prop", "chest", "table", "chair", "statue", "fountain", "altar", "throne",
             "bed", "bookshelf", "cart", "wagon"),
    "monster": ("monster", "creature", "beast", "dragon", "demon", "boss", "enemy"),
    "miniature": ("mini", "miniature", "character", "hero", "npc", "figure", "villager",
                  "guard"),
    "base": ("base", "pedestal", "platform", "stand"),
}

FILL_KEYWORDS: dict[str, tuple[str, ...]] = {
    "hollow": ("hollow", "hollowed"),
    "solid": ("solid", "filled", "full"),
}

CREATURE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "demon": ("demon", "devil", "fiend", "imp"),
    "dragon": ("dragon", "drake", "wyvern", "wyrm"),
    "undead": ("undead", "zombie", "skeleton", "lich", "vampire", "ghost", "wraith"),
    "beast": ("beast", "wolf", "bear", "spider", "rat", "boar", "serpent", "snake"),
    "elemental": ("elemental", "golem", "construct"),
    "goblinoid": ("goblin", "hobgoblin", "bugbear", "kobold"),
}

RACE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "human": ("human", "man", "woman", "peasant", "knight", "soldier"),
    "elf": ("elf", "elven", "elfish"),
    "dwarf": ("dwarf", "dwarven"),
    "orc": ("orc", "orcish", "half-orc"),
    "halfling": ("halfling", "hobbit"),
    "tiefling": ("tiefling",),
}

CLASS_KEYWORDS: dict[str, tuple[str, ...]] = {
    "fighter": ("fighter", "warrior", "barbarian", "paladin", "knight", "soldier"),
    "wizard": ("wizard", "mage", "sorcerer", "warlock", "witch"),
    "rogue": ("rogue", "thief", "assassin", "ranger"),
    "cleric": ("cleric", "priest", "monk", "healer"),
    "bard": ("bard", "minstrel"),
    "druid": ("druid", "shaman"),
}

# Matched against the raw filename, not tokens ("28mm" would not survive tokenizing)
SIZE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(rf"(?<![0-9]){mm}\s*mm(?![a-z])", re.IGNORECASE), f"{mm}mm")
    for mm in (25, 28, 32, 50, 54, 75)
)

# Inclusive height ranges (model units) for miniature scales
SCALE_BY_HEIGHT: tuple[tuple[float, float, str], ...] = (
    (20, 27, "25mm"),
    (28, 38, "32mm"),
    (45, 60, "50mm"),
    (65, 85, "75mm"),
)


def match_dictionary(tokens: Sequence[str], dictionary: Mapping[str, Sequence[str]]) -> str | None:
    """Return the value whose keywords overlap the tokens most, or None."""
    best_value: str | None = None
    best_count = 0
    for value, keywords in dictionary.items():
        count = sum(1 for t in tokens if t in keywords)
        if count > best_count:
            best_count = count
            best_value = value
    return best_value


def infer_scale(dimensions: Mapping[str, float] | None) -> str | None:
    """Guess miniature scale from height (Z up). Only for objects <= 100 units tall."""
    if not dimensions:
        return None
    height = dimensions.get("z", 0.0)
    if height <= 0 or height > 100:
        return None
    for low, high, value in SCALE_BY_HEIGHT:
        if low <= height <= high:
            return value
    return None


def extract_size(filename: str) -> str | None:
    for pattern, value in SIZE_PATTERNS:
        if pattern.search(filename):
            return value
    return None


def classify_file(
    relative_path: str,
    filename: str,
    tokens: Sequence[str],
    dimensions: Mapping[str, float] | None = None,
) -> CategoryValues:
    """
    Classify a file into structured categories.

    Returns:
        Mapping of category id to value, containing only categories that matched
    """
    categories: CategoryValues = {}

    folders = [part for part in relative_path.split("/") if part][:-1]
    if len(folders) >= 2:
        categories["creator"] = folders[0]
        categories["collection"] = folders[1]
    elif len(folders) == 1:
        categories["collection"] = folders[0]

    for category_id, dictionary in (
        ("role", ROLE_KEYWORDS),
        ("fill", FILL_KEYWORDS),
        ("creature", CREATURE_KEYWORDS),
        ("race", RACE_KEYWORDS),
        ("class", CLASS_KEYWORDS),
    ):
        value = match_dictionary(tokens, dictionary)
        if value:
            categories[category_id] = value

    size = extract_size(filename) or infer_scale(dimensions)
    if size:
        categories["size"] = size

    return categories
