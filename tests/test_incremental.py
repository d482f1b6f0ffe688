"""Tests for incremental pattern maintenance."""

import pytest
from conftest import NOW

from bridge.models import NavigablePattern, PatternCache, PatternMetadata, QualityPattern
from bridge.patterns.discovery import DiscoveryConfig, PatternDiscovery
from bridge.patterns.incremental import (
    IncrementalConfig,
    IncrementalPatternUpdate,
    strip_members,
    strip_quality_members,
)


@pytest.fixture
def cache(grouped_records) -> PatternCache:
    result = PatternDiscovery(DiscoveryConfig(dimension=3)).discover(grouped_records, now=NOW)
    return PatternCache(
        patterns=result.patterns,
        quality_patterns=result.quality_patterns,
        last_updated=NOW,
    )


@pytest.fixture
def updater() -> IncrementalPatternUpdate:
    return IncrementalPatternUpdate(IncrementalConfig(dimension=3))


def _node(cache_or_patterns, pattern_id):
    patterns = (
        cache_or_patterns.patterns
        if isinstance(cache_or_patterns, PatternCache)
        else cache_or_patterns
    )
    for root in patterns:
        for node in root.walk():
            if node.id == pattern_id:
                return node
    raise KeyError(pattern_id)


class TestStripMembers:
    """Tests for removing records from patterns."""

    def test_strip_from_tree(self):
        """Records leave every level; empty nodes are dropped."""
        tree = [
            NavigablePattern(
                id="L1-1",
                name="root",
                level=1,
                experience_ids=["a", "b", "c"],
                children=[
                    NavigablePattern(id="L1-1.1", name="left", level=2, experience_ids=["a"]),
                    NavigablePattern(id="L1-1.2", name="right", level=2, experience_ids=["b", "c"]),
                ],
            )
        ]
        kept, touched = strip_members(tree, {"a"})
        assert touched == {"L1-1", "L1-1.1"}
        assert kept[0].experience_ids == ["b", "c"]
        assert [c.id for c in kept[0].children] == ["L1-1.2"]

    def test_strip_quality(self):
        """Quality clusters shrink and vanish when empty."""
        clusters = [
            QualityPattern(dimension="mood", cluster_name="mood_1", experience_ids=["a"], size=1),
            QualityPattern(dimension="mood", cluster_name="mood_2", experience_ids=["b", "c"], size=2),
        ]
        kept, touched = strip_quality_members(clusters, {"a", "b"})
        assert touched == {"mood-mood_1", "mood-mood_2"}
        assert [(q.cluster_name, q.size) for q in kept] == [("mood_2", 1)]


class TestUpdate:
    """Tests for IncrementalPatternUpdate.update."""

    def test_places_along_the_path(self, updater, cache, grouped_records, make_record):
        """A new record joins the matching root and its matching descendants."""
        record = make_record(
            "Quiet morning walk by the river again",
            id="exp_new",
            embedding=[1.0, 0.03, 0.03],
            experience=["mood.open"],
        )
        result = updater.update([record], cache, [*grouped_records, record], now=NOW)

        for pattern_id in ("L1-1", "L1-1.1", "L1-1.1.1"):
            assert "exp_new" in _node(result.patterns, pattern_id).experience_ids
        assert "exp_new" not in _node(result.patterns, "L1-2").experience_ids
        added = {c.pattern_id for c in result.changes if c.type == "add"}
        assert {"L1-1", "L1-1.1", "L1-1.1.1", "mood-mood_1"} <= added
        assert not result.is_structural
        assert result.stats.experiences_processed == 1

    def test_quality_placement(self, updater, cache, grouped_records, make_record):
        """Records join the closest cluster of each dimension they mark."""
        record = make_record("Late night again", id="exp_new", embedding=[0.0, 1.0, 0.0], experience=["mood"])
        result = updater.update([record], cache, [*grouped_records, record], now=NOW)
        clusters = {q.cluster_name: q for q in result.quality_patterns}
        assert "exp_new" in clusters["mood_2"].experience_ids
        assert clusters["mood_2"].size == 7
        assert "exp_new" not in clusters["mood_1"].experience_ids
        assert "exp_new" not in clusters["focus_1"].experience_ids

    def test_cache_untouched(self, updater, cache, grouped_records, make_record):
        """The given cache is never modified."""
        before = cache.model_dump()
        record = make_record(id="exp_new", embedding=[1.0, 0.0, 0.0])
        updater.update([record], cache, [*grouped_records, record], now=NOW)
        assert cache.model_dump() == before

    def test_no_match(self, updater, cache, grouped_records, make_record):
        """A record far from every pattern changes nothing."""
        record = make_record(id="exp_new", embedding=[0.0, 0.0, 1.0])
        result = updater.update([record], cache, [*grouped_records, record], now=NOW)
        assert result.changes == []
        assert all("exp_new" not in node.experience_ids for root in result.patterns for node in root.walk())

    def test_updated_record_moves(self, updater, cache, grouped_records):
        """An updated record leaves its old patterns before being placed again."""
        moved = grouped_records[0].model_copy(update={"embedding": [0.0, 1.0, 0.0]})
        records = [moved, *grouped_records[1:]]
        result = updater.update([moved], cache, records, now=NOW)
        assert "exp_a0" not in _node(result.patterns, "L1-1").experience_ids
        assert "exp_a0" in _node(result.patterns, "L1-2").experience_ids

    def test_unembedded_record_only_removed(self, updater, cache, grouped_records):
        """A record that lost its embedding is only removed."""
        bare = grouped_records[0].model_copy(update={"embedding": None})
        result = updater.update([bare], cache, [bare, *grouped_records[1:]], now=NOW)
        assert all("exp_a0" not in node.experience_ids for root in result.patterns for node in root.walk())
        assert all(c.type != "add" for c in result.changes)

    def test_metadata_refreshed(self, updater, cache, grouped_records, make_record):
        """Affected patterns get fresh themes, centroid and recency."""
        record = make_record(
            "Quiet morning walk by the river again",
            id="exp_new",
            embedding=[1.0, 0.0, 0.0],
        )
        result = updater.update([record], cache, [*grouped_records, record], now=NOW)
        root = _node(result.patterns, "L1-1")
        assert root.metadata.recency == "active"
        assert "morning" in root.metadata.themes
        assert root.metadata.semantic_meaning == _node(cache, "L1-1").metadata.semantic_meaning


class TestStructuralChanges:
    """Tests for split and merge detection."""

    def test_split_detected(self, grouped_records, make_record):
        """A root that has lost cohesion is reported for splitting."""
        mixed = [*grouped_records[:3], *grouped_records[6:8]]
        cache = PatternCache(
            patterns=[
                NavigablePattern(
                    id="L1-1",
                    name="mixed",
                    level=1,
                    experience_ids=[r.id for r in mixed],
                    metadata=PatternMetadata(centroid=[0.7, 0.7, 0.0]),
                )
            ],
            last_updated=NOW,
        )
        record = make_record(id="exp_new", embedding=[0.7, 0.7, 0.0])
        updater = IncrementalPatternUpdate(IncrementalConfig(dimension=3, split_cohesion=0.9))
        result = updater.update([record], cache, [*mixed, record], now=NOW)
        splits = [c for c in result.changes if c.type == "split"]
        assert [c.pattern_id for c in splits] == ["L1-1"]
        assert len(splits[0].affected_experiences) == 6
        assert result.is_structural

    def test_merge_detected(self, grouped_records, make_record):
        """Converged siblings are reported for merging."""
        group_a = grouped_records[:6]
        cache = PatternCache(
            patterns=[
                NavigablePattern(
                    id="L1-1",
                    name="first",
                    level=1,
                    experience_ids=[r.id for r in group_a[:3]],
                    metadata=PatternMetadata(centroid=[1.0, 0.0, 0.0]),
                ),
                NavigablePattern(
                    id="L1-2",
                    name="second",
                    level=1,
                    experience_ids=[r.id for r in group_a[3:]],
                    metadata=PatternMetadata(centroid=[1.0, 0.0, 0.0]),
                ),
            ],
            last_updated=NOW,
        )
        record = make_record(id="exp_new", embedding=[1.0, 0.0, 0.0])
        updater = IncrementalPatternUpdate(IncrementalConfig(dimension=3))
        result = updater.update([record], cache, [*group_a, record], now=NOW)
        merges = [c for c in result.changes if c.type == "merge"]
        assert [c.pattern_id for c in merges] == ["L1-1+L1-2"]
        assert set(merges[0].affected_experiences) == {r.id for r in group_a} | {"exp_new"}
        assert result.is_structural

    def test_unaffected_siblings_not_checked(self, grouped_records, make_record):
        """Structural checks only look at patterns the update touched."""
        group_a = grouped_records[:6]
        cache = PatternCache(
            patterns=[
                NavigablePattern(
                    id=f"L1-{i}",
                    name=f"p{i}",
                    level=1,
                    experience_ids=[r.id for r in group_a[(i - 1) * 3 : i * 3]],
                    metadata=PatternMetadata(centroid=[1.0, 0.0, 0.0]),
                )
                for i in (1, 2)
            ],
            last_updated=NOW,
        )
        record = make_record(id="exp_new", embedding=[0.0, 0.0, 1.0])
        result = IncrementalPatternUpdate(IncrementalConfig(dimension=3)).update(
            [record], cache, [*group_a, record], now=NOW
        )
        assert result.changes == []
