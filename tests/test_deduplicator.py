"""Tests for candidate identifiers and deduplication."""

import re

from grant_discovery.models import Candidate
from grant_discovery.utils.deduplicator import (
    Deduplicator, generate_candidate_id, normalize_title, normalize_url
)


def _candidate(title, url="https://example.org/grant", source_id="src"):
    return Candidate(
        id=generate_candidate_id(source_id, title, url),
        title=title,
        url=url,
        source_id=source_id,
        source_name="Source",
        region="int",
        score=5,
    )


class TestGenerateCandidateId:
    def test_stable_across_calls(self):
        first = generate_candidate_id("creative-europe", "Culture Moves Europe", "https://x.eu/cme")
        second = generate_candidate_id("creative-europe", "Culture Moves Europe", "https://x.eu/cme")
        assert first == second
        assert re.fullmatch(r"discovered-creative-europe-[0-9a-f]{12}", first)

    def test_cosmetic_differences_are_ignored(self):
        base = generate_candidate_id("src", "Sacred Cacao Fund", "https://example.org/fund")
        assert generate_candidate_id("src", "  sacred cacao   fund! ", "https://EXAMPLE.org/fund/#apply") == base

    def test_inputs_distinguish_ids(self):
        base = generate_candidate_id("src", "Fund", "https://example.org/fund")
        assert generate_candidate_id("other", "Fund", "https://example.org/fund") != base
        assert generate_candidate_id("src", "Other fund", "https://example.org/fund") != base
        assert generate_candidate_id("src", "Fund", "https://example.org/other") != base

    def test_slug_from_odd_source_id(self):
        assert generate_candidate_id("NL / Mondriaan Fonds", "t", "u").startswith("discovered-nl-mondriaan-fonds-")
        assert generate_candidate_id("!!!", "t", "u").startswith("discovered-source-")


class TestNormalize:
    def test_title(self):
        assert normalize_title("Culture: Moves -- Europe!") == "culture moves europe"

    def test_url(self):
        assert normalize_url(" https://Example.org/Path/#frag ") == "https://example.org/path"


class TestDeduplicator:
    """Tests for the known-identifier filter."""

    def test_filters_known_ids(self):
        known = _candidate("Known grant")
        fresh = _candidate("Fresh grant")
        dedup = Deduplicator([known.id])

        assert dedup.filter_new([known, fresh]) == [fresh]
        assert dedup.duplicates_skipped == 1

    def test_duplicates_within_a_run_keep_first(self):
        first = _candidate("Same grant")
        again = first.model_copy(update={"score": 2})
        dedup = Deduplicator()

        assert dedup.filter_new([first, again]) == [first]
        assert dedup.is_known(first.id)
        assert len(dedup) == 1

    def test_second_pass_yields_nothing(self):
        candidates = [_candidate("A"), _candidate("B")]
        dedup = Deduplicator()
        dedup.filter_new(candidates)
        assert dedup.filter_new(candidates) == []
