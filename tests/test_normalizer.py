from __future__ import annotations

import pytest

from app.harvester import normalizer
from app.harvester.models import RawPageData, SideChannelMetadata

CAPTION = "Premiere of Film X\nLondon, UK - 05.03.22\nCredit: Jane Doe/AgencyX"


def test_caption_round_trip() -> None:
    result = normalizer.normalize(RawPageData(caption=CAPTION))

    assert result["photographer"] == "Jane Doe/AgencyX"
    assert result["authors"] == "Jane Doe/AgencyX"
    assert result["copyright"] == "Jane Doe/AgencyX"
    assert result["city"] == "London"
    assert result["country"] == "UK"
    assert result["date"] == "05.03.22"
    assert result["date_taken"] == "2022-03-05"
    assert result["title"] == "Premiere of Film X"
    assert result["raw_caption"] == CAPTION
    assert result["comments"] == CAPTION
    assert result["tags"] == []
    assert result["caption"] == (
        "Premiere of Film X\nLondon, UK - 2022-03-05\nCredit: Jane Doe/AgencyX"
    )


def test_labels_take_priority_over_caption_heuristics() -> None:
    raw = RawPageData(
        title="Red Carpet Arrivals",
        caption="Some event\nCredit: Caption Person",
        label_values=[
            ("Photographer:", "Label Person"),
            ("Date", "2021-07-14"),
            ("Keywords", "red, carpet; film"),
            ("City", "Cannes"),
            ("Image Size", "4000x3000"),
            ("Unknown", "ignored"),
        ],
    )

    result = normalizer.normalize(raw)

    assert result["photographer"] == "Label Person"
    assert result["copyright"] == "Caption Person"
    assert result["date_taken"] == "2021-07-14"
    assert result["tags"] == ["red", "carpet", "film"]
    assert result["city"] == "Cannes"
    assert result["image_size"] == "4000x3000"
    assert result["title"] == "Red Carpet Arrivals"
    assert "ignored" not in result.values()


def test_where_when_featuring_markers() -> None:
    caption = "Gala dinner\nFeaturing: Ann Example\nWhere: Paris, France\nWhen: 12 Jun 2019"

    result = normalizer.normalize(RawPageData(caption=caption))

    assert result["featuring"] == "Ann Example"
    assert result["city"] == "Paris"
    assert result["country"] == "France"
    assert result["date_taken"] == "2019-06-12"
    assert result["title"] == "Gala dinner"


def test_side_channel_fills_gaps_and_merges_tags() -> None:
    raw = RawPageData(
        title="Page Title",
        keywords=["red", "carpet"],
        embedded=SideChannelMetadata(
            photographer="Embedded Person",
            title="Embedded Title",
            city="Berlin",
            date="2020-01-02T10:00:00Z",
            tags=["carpet", "berlinale"],
        ),
    )

    result = normalizer.normalize(raw)

    assert result["title"] == "Page Title"
    assert result["photographer"] == "Embedded Person"
    assert result["authors"] == "Embedded Person"
    assert result["city"] == "Berlin"
    assert result["date_taken"] == "2020-01-02"
    assert result["tags"] == ["red", "carpet", "berlinale"]


def test_title_skips_agency_slugs_and_location_lines() -> None:
    lines = ["WENN", "London - 05.03.22", "Credit: Someone", "Actual headline"]
    assert normalizer.select_title(lines) == "Actual headline"
    assert normalizer.select_title(["GETTY IMAGES"]) is None


@pytest.mark.parametrize(
    "text, expected",
    [
        ("<b>Bold</b> text", "Bold text"),
        ("  padded  ", "padded"),
        ("Manuscript description", "Manuscript description"),
        ("<script>alert(1)</script>", None),
        ("click onload here", None),
        ("Add to Board", None),
        ("Powered by Google Tag Manager", None),
        ("x" * 201, None),
        ("one\ntwo\nthree\nfour", None),
        ("   ", None),
        (None, None),
    ],
)
def test_sanitize_text(text, expected) -> None:
    assert normalizer.sanitize_text(text) == expected


def test_sanitize_text_keeps_short_multiline_values() -> None:
    assert normalizer.sanitize_text("one\ntwo\nthree") == "one\ntwo\nthree"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("WENN", True),
        ("Reuters", True),
        ("GETTY IMAGES", True),
        ("Premiere Night", False),
        ("A VERY LONG UPPER CASE LINE", False),
        ("", False),
    ],
)
def test_is_agency_slug(text: str, expected: bool) -> None:
    assert normalizer.is_agency_slug(text) is expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("London, UK", True),
        ("Madison Square Garden", True),
        ("outside the main stadium", False),
        ("the crew arrives", False),
        ("walking slowly home", False),
    ],
)
def test_looks_like_location(text: str, expected: bool) -> None:
    assert normalizer.looks_like_location(text) is expected


def test_display_caption_uses_only_normalized_fields() -> None:
    caption = normalizer.build_display_caption(
        {
            "title": "Award night",
            "featuring": "Ann Example",
            "city": "Paris",
            "date_taken": "2019-06-12",
            "photographer": "Jane Doe",
            "copyright": "Agency Ltd",
        }
    )

    assert caption == (
        "Award night\nFeaturing: Ann Example\nParis - 2019-06-12\n"
        "Credit: Jane Doe\nCopyright: Agency Ltd"
    )
    assert normalizer.build_display_caption({}) is None


def test_empty_page_normalizes_to_nothing_but_tags() -> None:
    assert normalizer.normalize(RawPageData()) == {"tags": []}
