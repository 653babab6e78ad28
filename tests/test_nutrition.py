import pytest

from nutrition import estimate_for_items, estimate_nutrition


@pytest.mark.parametrize("text", [None, "", " , ,"])
def test_nothing_to_estimate(text) -> None:
    assert estimate_nutrition(text) == {"calories": 0, "protein": 0, "fat": 0}


def test_keywords_are_case_insensitive() -> None:
    assert estimate_nutrition("Basmati RICE, Chicken") == {
        "calories": 350,
        "protein": 33,
        "fat": 8,
    }


def test_first_matching_group_wins() -> None:
    # "vegetable" hits the vegetables group, which is checked before oil
    assert estimate_nutrition("vegetable oil") == {"calories": 50, "protein": 3, "fat": 0}


def test_unknown_ingredients_add_nothing() -> None:
    assert estimate_nutrition("salt, water") == {"calories": 0, "protein": 0, "fat": 0}


def test_items_are_summed() -> None:
    assert estimate_for_items(["dal", "ghee", None]) == {
        "calories": 180,
        "protein": 7,
        "fat": 10,
    }
