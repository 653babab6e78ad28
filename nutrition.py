"""
Rough nutrition estimate from free-text ingredient lists.

This is a keyword heuristic standing in for a real estimation service: each
comma-separated ingredient is matched against the first keyword group that
fits and contributes that group's calories, protein and fat.
"""

from typing import Dict, Iterable, Optional, Tuple

# (keywords, calories, protein, fat), first match wins
_KEYWORD_TABLE: Tuple[Tuple[Tuple[str, ...], int, int, int], ...] = (
    (("rice",), 150, 3, 0),
    (("chicken", "meat"), 200, 30, 8),
    (("dal", "beans", "potato"), 100, 7, 0),
    (("vegetables", "veg", "spices"), 50, 3, 0),
    (("oil", "ghee", "yogurt"), 80, 0, 10),
)


def estimate_nutrition(ingredients_text: Optional[str]) -> Dict[str, int]:
    totals = {"calories": 0, "protein": 0, "fat": 0}
    if not ingredients_text:
        return totals

    for ingredient in ingredients_text.lower().split(","):
        ingredient = ingredient.strip()
        if not ingredient:
            continue
        for keywords, calories, protein, fat in _KEYWORD_TABLE:
            if any(word in ingredient for word in keywords):
                totals["calories"] += calories
                totals["protein"] += protein
                totals["fat"] += fat
                break
    return totals


def estimate_for_items(ingredient_texts: Iterable[Optional[str]]) -> Dict[str, int]:
    """Sum the estimate over several items."""
    totals = {"calories": 0, "protein": 0, "fat": 0}
    for text in ingredient_texts:
        for key, value in estimate_nutrition(text).items():
            totals[key] += value
    return totals
