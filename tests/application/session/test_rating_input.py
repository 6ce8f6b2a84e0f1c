import pytest

from retrieval_srs.application.session.rating_input import parse_spoken_rating, parse_typed_rating
from retrieval_srs.domain.models import Rating


@pytest.mark.parametrize(
    "transcript, expected",
    [
        ("Miss", Rating.MISS),
        ("that was a miss", Rating.MISS),
        ("REPEAT please", Rating.REPEAT),
        ("next", Rating.NEXT),
        ("  Easy ", Rating.EASY),
        ("hello", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_spoken_rating(transcript, expected):
    assert parse_spoken_rating(transcript) == expected


def test_first_keyword_in_check_order_wins():
    assert parse_spoken_rating("easy, no wait, miss") is Rating.MISS


@pytest.mark.parametrize(
    "key, expected",
    [
        ("m", Rating.MISS),
        ("1", Rating.MISS),
        ("R", Rating.REPEAT),
        ("3", Rating.NEXT),
        ("e", Rating.EASY),
        ("easy", Rating.EASY),
        ("x", None),
    ],
)
def test_parse_typed_rating(key, expected):
    assert parse_typed_rating(key) == expected
