"""Pytest configuration and test helpers."""

from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``showsync``
# sits at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


MOVIE_PAYLOAD: dict[str, Any] = {
    "itemType": "show",
    "showType": "movie",
    "id": "66",
    "imdbId": "tt0133093",
    "tmdbId": "movie/603",
    "title": "The Matrix",
    "overview": "A hacker learns the truth &amp; joins the rebellion.",
    "releaseYear": 1999,
    "genres": [
        {"id": "action", "name": "Action"},
        {"id": "scifi", "name": "Science Fiction"},
    ],
    "directors": ["Lana Wachowski", "Lilly Wachowski"],
    "cast": ["Keanu Reeves", "Laurence Fishburne"],
    "rating": 87,
    "runtime": 136,
    "imageSet": {
        "verticalPoster": {
            "w240": "https://img.example.com/matrix-w240.jpg",
            "w480": "https://img.example.com/matrix-w480.jpg",
        }
    },
    "streamingOptions": {
        "us": [
            {
                "service": {"id": "netflix", "name": "Netflix"},
                "type": "subscription",
                "link": "https://www.netflix.com/title/20557937",
                "expiresOn": 1735689600,
            },
            {
                "service": {"id": "prime", "name": "Prime Video"},
                "type": "addon",
                "link": "https://www.amazon.com/gp/video/detail/starz",
                "addon": {"id": "tvs.sbd.starz", "name": "Starz"},
            },
            {
                "service": {"id": "prime", "name": "Prime Video"},
                "type": "addon",
                "link": "https://www.amazon.com/gp/video/detail/max",
                "addon": {"id": "hbomaxus", "name": "Max"},
            },
            {
                "service": {"id": "apple", "name": "Apple TV"},
                "type": "rent",
                "link": "https://tv.apple.com/movie/the-matrix",
            },
        ]
    },
}

SERIES_PAYLOAD: dict[str, Any] = {
    "itemType": "show",
    "showType": "series",
    "id": "1399",
    "imdbId": "tt0944947",
    "tmdbId": "tv/1399",
    "title": "Game of Thrones",
    "overview": "Nine noble families fight for control.",
    "firstAirYear": 2011,
    "lastAirYear": 2019,
    "genres": [{"id": "drama", "name": "Drama"}],
    "creators": ["David Benioff", "D. B. Weiss"],
    "cast": ["Emilia Clarke"],
    "rating": 84,
    "seasonCount": 8,
    "episodeCount": 73,
    "imageSet": {"verticalPoster": {"w480": "https://img.example.com/got-w480.jpg"}},
    "streamingOptions": {},
}

COUNTRIES_PAYLOAD: dict[str, Any] = {
    "us": {
        "countryCode": "us",
        "name": "United States",
        "services": [
            {
                "id": "netflix",
                "name": "Netflix",
                "homePage": "https://www.netflix.com/",
                "addons": [],
            },
            {
                "id": "prime",
                "name": "Prime Video",
                "homePage": "https://www.amazon.com/video",
                "addons": [{"id": "hbomaxus", "name": "Max"}],
            },
        ],
    },
    "gb": {"countryCode": "gb", "name": "United Kingdom", "services": []},
}


@pytest.fixture
def movie_payload() -> dict[str, Any]:
    return copy.deepcopy(MOVIE_PAYLOAD)


@pytest.fixture
def series_payload() -> dict[str, Any]:
    return copy.deepcopy(SERIES_PAYLOAD)


@pytest.fixture
def countries_payload() -> dict[str, Any]:
    return copy.deepcopy(COUNTRIES_PAYLOAD)
