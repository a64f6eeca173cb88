"""Tests for conflict resolution and sync payload validation."""

import json

import pytest

from linkboard.sync.merge import (
    ConflictStrategy,
    merge_categories,
    merge_data,
    merge_links,
    resolve_conflict,
    validate_sync_data,
)
from linkboard.sync.metadata import SyncMetadata, TierMetadata


def payload(links=None, categories=None):
    data = {}
    if links is not None:
        data["links"] = json.dumps(links)
    if categories is not None:
        data["categories"] = json.dumps(categories)
    return data


def link(url, name="Link", category="Default", last_modified=None):
    data = {"name": name, "url": url, "category": category}
    if last_modified is not None:
        data["last_modified"] = last_modified
    return data


@pytest.fixture
def metadata():
    return TierMetadata(
        local=SyncMetadata(version=2, last_modified=2000, device_id="device_a"),
        remote=SyncMetadata(version=3, last_modified=3000, device_id="device_b"),
    )


class TestMergeLinks:
    """Tests for link merging."""

    def test_newer_copy_wins_whole(self):
        """Test the same-URL scenario with remote newer."""
        local = [{"url": "a.com", "last_modified": 1000}]
        remote = [{"url": "a.com", "name": "B", "last_modified": 3000}]

        merged = merge_links(local, remote)

        assert merged == [{"url": "a.com", "name": "B", "last_modified": 3000}]

    def test_local_newer_wins(self):
        local = [link("https://a.com", name="Local", last_modified=5000)]
        remote = [link("https://a.com", name="Remote", last_modified=3000)]

        assert merge_links(local, remote)[0]["name"] == "Local"

    def test_union_by_normalised_url(self):
        """Test that case and trailing-slash variants dedupe."""
        local = [link("https://Example.com", last_modified=1), link("https://a.com")]
        remote = [link("https://example.com/", last_modified=2), link("https://b.com")]

        merged = merge_links(local, remote)

        assert [l["url"] for l in merged] == [
            "https://example.com/",
            "https://a.com",
            "https://b.com",
        ]

    def test_missing_timestamp_uses_side_fallback(self):
        local = [link("https://a.com", name="Local")]
        remote = [link("https://a.com", name="Remote")]

        assert merge_links(local, remote, 5000, 1000)[0]["name"] == "Local"
        assert merge_links(local, remote, 1000, 5000)[0]["name"] == "Remote"

    def test_commutative_on_ties(self):
        """Test that argument order does not change the winner."""
        a = [link("https://a.com", name="Alpha", last_modified=100)]
        b = [link("https://a.com", name="Beta", last_modified=100)]

        assert merge_links(a, b) == merge_links(b, a)

    def test_equal_link_timestamps_use_tier_timestamp(self):
        """Test that the side written more recently wins a timestamp tie."""
        local = [link("https://a.com", name="Renamed", last_modified=1000)]
        remote = [link("https://a.com", name="Original", last_modified=1000)]

        assert merge_links(local, remote, 9000, 5000)[0]["name"] == "Renamed"
        assert merge_links(remote, local, 5000, 9000)[0]["name"] == "Renamed"

    def test_commutative_link_set(self):
        a = [link("https://a.com", last_modified=1), link("https://c.com", last_modified=5)]
        b = [link("https://b.com", last_modified=2), link("https://c.com", name="C", last_modified=9)]

        def as_set(links):
            return {json.dumps(l, sort_keys=True) for l in links}

        assert as_set(merge_links(a, b)) == as_set(merge_links(b, a))

    def test_idempotent(self):
        links = [link("https://a.com", last_modified=1), link("https://b.com", last_modified=2)]

        assert merge_links(links, links) == links

    def test_skips_non_object_entries(self):
        merged = merge_links(["junk", link("https://a.com")], [None])

        assert merged == [link("https://a.com")]


class TestMergeCategories:
    """Tests for category merging."""

    def test_default_always_present(self):
        """Test that Default appears even when neither side lists it."""
        merged = merge_categories(["Work"], ["News"])

        assert merged == ["Default", "Work", "News"]

    def test_ordered_union(self):
        merged = merge_categories(["Default", "Work", "News"], ["News", "Games", "Work"])

        assert merged == ["Default", "Work", "News", "Games"]


class TestResolveConflict:
    """Tests for strategy-based resolution."""

    def test_local_wins_verbatim(self, metadata):
        local = payload([link("https://a.com")], ["Default"])
        remote = payload([link("https://b.com")], ["Default", "Other"])

        resolved = resolve_conflict(local, remote, metadata, ConflictStrategy.LOCAL)

        assert resolved == local

    def test_remote_wins_verbatim(self, metadata):
        local = payload([link("https://a.com")], ["Default"])
        remote = payload([link("https://b.com")], ["Default", "Other"])

        resolved = resolve_conflict(local, remote, metadata, "remote")

        assert resolved == remote

    def test_non_data_keys_dropped(self, metadata):
        local = {**payload([], ["Default"]), "sync_metadata": {"version": 9}}

        resolved = resolve_conflict(local, {}, metadata, "local")

        assert "sync_metadata" not in resolved

    def test_winner_missing_record_gets_default(self, metadata):
        """Test that a one-sided winner still overwrites both records."""
        local = payload(links=[link("https://a.com")])
        remote = payload([link("https://b.com")], ["Default", "News"])

        resolved = resolve_conflict(local, remote, metadata, "local")

        assert json.loads(resolved["links"]) == [link("https://a.com")]
        assert json.loads(resolved["categories"]) == ["Default"]

    def test_empty_winner(self, metadata):
        remote = payload([link("https://b.com")], ["Default"])

        assert resolve_conflict({}, remote, metadata, "local") == {}
        assert resolve_conflict(remote, {"links": None}, metadata, "remote") == {}

    def test_merge_strategy(self, metadata):
        local = payload([link("https://a.com", category="Work")], ["Default", "Work"])
        remote = payload([link("https://b.com", category="News")], ["News"])

        resolved = resolve_conflict(local, remote, metadata, "merge")

        links = json.loads(resolved["links"])
        assert [l["url"] for l in links] == ["https://a.com", "https://b.com"]
        assert json.loads(resolved["categories"]) == ["Default", "Work", "News"]

    def test_unknown_strategy(self, metadata):
        with pytest.raises(ValueError):
            resolve_conflict({}, {}, metadata, "newest")


class TestMergeData:
    """Tests for payload-level merging."""

    def test_corrupted_side_counts_as_empty(self, metadata):
        local = {"links": "{not json", "categories": "also not json"}
        remote = payload([link("https://b.com")], ["Default"])

        merged = merge_data(local, remote, metadata)

        assert json.loads(merged["links"]) == [link("https://b.com")]
        assert json.loads(merged["categories"]) == ["Default"]

    def test_referenced_categories_added(self, metadata):
        remote = payload([link("https://b.com", category="Orphan")], ["Default"])

        merged = merge_data({}, remote, metadata)

        assert json.loads(merged["categories"]) == ["Default", "Orphan"]

    def test_merge_with_itself(self, metadata):
        data = payload(
            [link("https://a.com", category="Work", last_modified=10)],
            ["Default", "Work"],
        )

        merged = merge_data(data, data, metadata)

        assert json.loads(merged["links"]) == json.loads(data["links"])
        assert json.loads(merged["categories"]) == ["Default", "Work"]

    def test_fallback_timestamps_from_metadata(self, metadata):
        """Test that links without timestamps use tier last_modified."""
        local = payload([link("https://a.com", name="Local")], ["Default"])
        remote = payload([link("https://a.com", name="Remote")], ["Default"])

        merged = merge_data(local, remote, metadata)

        # Remote tier was modified later
        assert json.loads(merged["links"])[0]["name"] == "Remote"


class TestValidateSyncData:
    """Tests for sync payload validation."""

    def test_not_json_links(self):
        result = validate_sync_data({"links": "not json", "categories": "[]"})

        assert not result.valid
        assert len(result.errors) >= 1
        assert result.errors[0].startswith("Links must be valid JSON")

    def test_none_means_no_data_yet(self):
        assert validate_sync_data({"links": None, "categories": None}).valid
        assert validate_sync_data({}).valid

    def test_non_object_payload(self):
        result = validate_sync_data(["links"])

        assert result.errors == ["Data must be an object"]

    def test_non_array_links(self):
        result = validate_sync_data({"links": '{"a": 1}'})

        assert result.errors == ["Links must be a valid JSON array"]

    def test_native_list_refused(self):
        result = validate_sync_data({"links": []})

        assert result.errors == ["Links must be a JSON string, got list"]

    def test_per_link_errors(self):
        data = payload([link("https://a.com"), {"name": "", "url": "https://b.com", "category": "Default"}])

        result = validate_sync_data(data)

        assert result.errors == ["Link at index 1: Name cannot be empty"]

    def test_per_category_errors(self):
        result = validate_sync_data(payload(categories=["Default", "", "c" * 51]))

        assert result.errors == [
            "Category at index 1: Category cannot be empty",
            "Category at index 2: Category cannot exceed 50 characters",
        ]

    def test_valid_payload(self):
        data = payload([link("https://a.com")], ["Default"])

        assert validate_sync_data(data).valid
