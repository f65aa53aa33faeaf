import pytest

from xte.utils.math import next_pow2

NEXT_POW2_TESTS = [
    (1, 1, "1 is a power of 2"),
    (2, 2, "2 is a power of 2"),
    (3, 4, "3 rounds up to 4"),
    (5, 8, "5 rounds up to 8"),
    (16, 16, "16 is kept"),
    (33, 64, "33 rounds up to 64"),
]

@pytest.mark.parametrize(
    "value, expected, msg",
    NEXT_POW2_TESTS,
)
def test_next_pow2(value: int, expected: int, msg: str):
    assert next_pow2(value) == expected, f"unexpected: {msg}"
