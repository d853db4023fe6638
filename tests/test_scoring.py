import pytest

from keyword_engine.scoring import calculate_difficulty, calculate_popularity

from conftest import make_app


@pytest.mark.parametrize(
    "total, expected",
    [
        (0, 0),
        (4, 5),
        (20, 25),
        (52, 35),
        (100, 50),
        (500, 75),
        (900, 85),
        (1500, 100),
        (25000, 100),
    ],
)
def test_popularity_bands(total, expected):
    assert calculate_popularity(total) == expected


def test_popularity_is_monotonic():
    scores = [calculate_popularity(n) for n in range(0, 2001)]
    assert all(a <= b for a, b in zip(scores, scores[1:]))
    assert scores[0] == 0
    assert all(s == 100 for s in scores[1500:])


def test_difficulty_empty_is_zero():
    assert calculate_difficulty([]) == 0


def test_difficulty_single_weak_competitor():
    # count 1 -> 4 * 0.4, no rating, no reviews
    assert calculate_difficulty([make_app(1, rating=0.0, reviews="0")]) == 2


def test_difficulty_mid_field():
    apps = [make_app(i, rating=4.0, reviews="1k") for i in range(10)]
    # count 30 * 0.4 = 12, rating 25, reviews log10(1001) / 7 * 30 ~= 12.86
    assert calculate_difficulty(apps) == 50


def test_difficulty_saturates_at_100():
    apps = [make_app(i, rating=5.0, reviews="10m") for i in range(100)]
    assert calculate_difficulty(apps) == 100


def test_difficulty_grows_with_entrenchment():
    weak = [make_app(i, rating=2.0, reviews="12") for i in range(10)]
    strong = [make_app(i, rating=4.8, reviews="250k") for i in range(10)]
    assert calculate_difficulty(weak) < calculate_difficulty(strong)


@pytest.mark.parametrize("count", [1, 4, 5, 19, 20, 49, 50, 99, 120])
@pytest.mark.parametrize("rating", [0.0, 2.9, 3.0, 4.0, 5.0])
@pytest.mark.parametrize("reviews", ["0", "999", "5.5m", "99m", "garbage"])
def test_difficulty_bounds(count, rating, reviews):
    apps = [make_app(i, rating=rating, reviews=reviews) for i in range(count)]
    assert 0 <= calculate_difficulty(apps) <= 100
