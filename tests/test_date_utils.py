from __future__ import annotations

import pytest

from app.harvester.date_utils import normalize_date


@pytest.mark.parametrize(
    "value, expected",
    [
        ("05.03.22", "2022-03-05"),
        ("05.03.2022", "2022-03-05"),
        ("2022-03-05", "2022-03-05"),
        ("05/03/2022", "2022-03-05"),
        ("5 March 2022", "2022-03-05"),
        ("Mar 05, 2022", "2022-03-05"),
        ("2022:03:05 14:22:01", "2022-03-05"),
        ("2022-03-05T14:22:01.000Z", "2022-03-05"),
        ("  05.03.22  ", "2022-03-05"),
    ],
)
def test_normalize_date_formats(value: str, expected: str) -> None:
    assert normalize_date(value) == expected


@pytest.mark.parametrize("value", [None, "", "sometime in spring", "2022-13-45T00:00:00", "31.02.22"])
def test_unparseable_dates_return_none(value) -> None:
    assert normalize_date(value) is None
