#!/usr/bin/env python3
"""
Tests for turning capture-index rows into a download plan.
"""

import random
import sys
from pathlib import Path

# Add the src directory to the path
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from waymirror.core.cdx_client import Snapshot
from waymirror.core.curator import SnapshotCurator, strip_host
from waymirror.utils.filters import compile_filter


def _random_snapshots(rng, count=60):
    paths = ["", "a.html", "b/", "b/c.css", "d?x=1", "d?x=2", "img/e.png"]
    hosts = ["http://x.com/", "https://www.x.com/"]
    snapshots = []
    for _ in range(count):
        ts = f"20{rng.randint(10, 23)}0{rng.randint(1, 9)}01000000"
        snapshots.append(Snapshot(ts, rng.choice(hosts) + rng.choice(paths)))
    return snapshots


def test_latest_capture_wins():
    rows = [
        Snapshot("20200101000000", "http://x.com/a.html"),
        Snapshot("20210101000000", "http://x.com/a.html"),
    ]
    plan = SnapshotCurator().curate(rows)
    assert len(plan) == 1
    assert plan[0].resource_id == "a.html"
    assert plan[0].timestamp == "20210101000000"
    assert plan[0].file_id == "a.html"
    assert plan[0].file_url == "http://x.com/a.html"


def test_curated_plan_properties():
    rng = random.Random(7)
    for _ in range(20):
        snapshots = _random_snapshots(rng)
        curator = SnapshotCurator()
        plan = curator.curate(snapshots)

        ids = [entry.resource_id for entry in plan]
        assert len(ids) == len(set(ids))

        for entry in plan:
            same = [int(s.timestamp) for s in snapshots if curator.resource_id(s.original_url) == entry.resource_id]
            assert int(entry.timestamp) == max(same)

        timestamps = [int(entry.timestamp) for entry in plan]
        assert timestamps == sorted(timestamps, reverse=True)


def test_all_timestamps_one_entry_per_pair():
    rng = random.Random(11)
    snapshots = _random_snapshots(rng, 80)
    snapshots += snapshots[:10]
    curator = SnapshotCurator()
    plan = curator.curate(snapshots, all_timestamps=True)

    pairs = [(entry.timestamp, entry.resource_id) for entry in plan]
    assert len(pairs) == len(set(pairs))
    expected = {(s.timestamp, curator.resource_id(s.original_url)) for s in snapshots}
    assert set(pairs) == expected
    for entry in plan:
        assert entry.file_id == f"{entry.timestamp}/{entry.resource_id}"


def test_filters_exclude_takes_precedence():
    rows = [
        Snapshot("20200101000000", "http://x.com/blog/post.html"),
        Snapshot("20200101000000", "http://x.com/blog/draft.html"),
        Snapshot("20200101000000", "http://x.com/about.html"),
    ]
    curator = SnapshotCurator(include=compile_filter("blog"), exclude=compile_filter("/draft/"))
    plan = curator.curate(rows)
    assert [entry.resource_id for entry in plan] == ["blog/post.html"]


def test_ignore_params_merges_resources():
    rows = [
        Snapshot("20200101000000", "http://x.com/d?x=1"),
        Snapshot("20220101000000", "http://x.com/d?x=2"),
    ]
    assert len(SnapshotCurator().curate(rows)) == 2
    plan = SnapshotCurator(ignore_params=True).curate(rows)
    assert len(plan) == 1
    assert plan[0].resource_id == "d"
    assert plan[0].file_url == "http://x.com/d?x=2"


def test_malformed_rows_are_skipped():
    rows = [
        Snapshot("20200101000000", "http://x.com"),
        Snapshot("not-a-timestamp", "http://x.com/a.html"),
        Snapshot("20200101000000", "http://x.com/b.html"),
    ]
    plan = SnapshotCurator().curate(rows)
    assert [entry.resource_id for entry in plan] == ["b.html"]


def test_strip_host():
    assert strip_host("http://x.com/a/b.html") == "a/b.html"
    assert strip_host("http://x.com/") == ""
    assert strip_host("http://x.com") is None


if __name__ == "__main__":
    test_latest_capture_wins()
    test_curated_plan_properties()
    test_all_timestamps_one_entry_per_pair()
    test_filters_exclude_takes_precedence()
    test_ignore_params_merges_resources()
    test_malformed_rows_are_skipped()
    test_strip_host()
    print("✓ curation tests passed")
