"""
Tests for the persisted match-details payload.
"""

import pytest

from registry.entity_resolution.details import (
    MATCH_DETAILS_VERSION,
    MatchDetail,
    dump_match_details,
    load_match_details,
)


def test_versioned_payload():
    details = [
        MatchDetail("name", "LITTLE STARS CHILDCARE", "LITTLE STARS CHILDCARE", 1.0, 0.35),
        MatchDetail("zip", "03101", "03101", 1.0, 0.15),
    ]
    payload = dump_match_details(details, "weighted_average")

    assert payload["version"] == MATCH_DETAILS_VERSION
    assert payload["score_policy"] == "weighted_average"
    assert payload["criteria"][0]["source_value"] == "LITTLE STARS CHILDCARE"
    assert load_match_details(payload) == details


def test_legacy_camel_case_list():
    """Rows written before versioning are a bare list with camelCase keys."""
    legacy = [
        {"criterion": "name", "sourceValue": "ABC", "matchedValue": "ABC KIDS",
         "score": 0.91, "weight": 0.35},
    ]
    details = load_match_details(legacy)

    assert details == [MatchDetail("name", "ABC", "ABC KIDS", 0.91, 0.35)]


def test_missing_payload():
    assert load_match_details(None) == []


def test_unknown_version_rejected():
    with pytest.raises(ValueError):
        load_match_details({"version": 99, "criteria": []})
    with pytest.raises(ValueError):
        load_match_details("not a payload")
