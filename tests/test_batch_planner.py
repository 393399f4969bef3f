"""Tests for the batch planner -- size-aware packing of changed files."""

import pytest

from diffguard.services.scan.models import BatchMode, ChangedFile, ScanMode
from diffguard.services.scan.planner import batch_caps, plan_batches
from tests.conftest import make_file


def _paths(batches):
    return [b.paths for b in batches]


def test_packing_example_full_mode():
    """[2000, 2000, 2000, 9000, 1000] with 8000 bytes / 3 files."""
    files = [
        make_file("f1.py", 2000),
        make_file("f2.py", 2000),
        make_file("f3.py", 2000),
        make_file("f4.py", 9000),
        make_file("f5.py", 1000),
    ]
    batches = plan_batches(files, ScanMode.BRANCH, max_files=3, max_bytes=8000)

    assert _paths(batches) == [["f1.py", "f2.py", "f3.py"], ["f4.py"], ["f5.py"]]
    assert all(b.mode is BatchMode.FULL for b in batches)


def test_oversized_file_flushes_and_is_isolated():
    files = [
        make_file("a.py", 100),
        make_file("b.py", 100),
        make_file("huge.py", 5000),
        make_file("c.py", 100),
        make_file("d.py", 100),
    ]
    batches = plan_batches(files, ScanMode.BRANCH, max_files=10, max_bytes=1000)

    assert _paths(batches) == [["a.py", "b.py"], ["huge.py"], ["c.py", "d.py"]]


def test_byte_cap_closes_batch():
    files = [make_file(f"f{i}.py", 400) for i in range(5)]
    batches = plan_batches(files, ScanMode.BRANCH, max_files=10, max_bytes=1000)

    assert [len(b) for b in batches] == [2, 2, 1]
    assert all(b.total_bytes <= 1000 for b in batches)


def test_exact_fit_stays_in_one_batch():
    files = [make_file("a.py", 500), make_file("b.py", 500)]
    batches = plan_batches(files, ScanMode.BRANCH, max_files=2, max_bytes=1000)
    assert _paths(batches) == [["a.py", "b.py"]]


def test_count_cap_closes_batch():
    files = [make_file(f"f{i}.py", 1) for i in range(7)]
    batches = plan_batches(files, ScanMode.BRANCH, max_files=3, max_bytes=10_000)
    assert [len(b) for b in batches] == [3, 3, 1]


def test_empty_input_yields_no_batches():
    assert plan_batches([], ScanMode.BRANCH) == []


@pytest.mark.parametrize(
    "sizes,max_files,max_bytes",
    [
        ([10, 20, 30, 40, 50, 60], 2, 70),
        ([1000, 1, 1, 1, 999, 5000, 2], 3, 1000),
        ([7] * 25, 4, 20),
        ([300, 9000, 9000, 300, 300], 5, 600),
    ],
)
def test_completeness_and_cap_respect(sizes, max_files, max_bytes):
    files = [make_file(f"f{i}.py", s) for i, s in enumerate(sizes)]
    batches = plan_batches(files, ScanMode.BRANCH, max_files=max_files, max_bytes=max_bytes)

    # every file exactly once, order preserved
    flat = [f for b in batches for f in b.files]
    assert [f.path for f in flat] == [f.path for f in files]
    assert all(len(b) >= 1 for b in batches)

    for b in batches:
        if len(b) == 1 and b.total_bytes > max_bytes:
            continue  # forced oversized batch
        assert len(b) <= max_files
        assert b.total_bytes <= max_bytes


def test_diff_mode_weighs_patch_not_content():
    """In PR mode a big file with a tiny patch packs by its patch size."""
    files = [
        make_file("a.py", 50_000, patch_size=100),
        make_file("b.py", 50_000, patch_size=100),
    ]
    batches = plan_batches(files, ScanMode.PULL_REQUEST, max_files=10, max_bytes=1000)

    assert _paths(batches) == [["a.py", "b.py"]]
    assert batches[0].mode is BatchMode.DIFF_ONLY
    assert batches[0].total_bytes == 200


def test_diff_mode_falls_back_to_content_without_patch():
    files = [make_file("a.py", 800), make_file("b.py", 800, patch_size=10)]
    batches = plan_batches(files, ScanMode.PULL_REQUEST, max_files=10, max_bytes=1000)
    assert _paths(batches) == [["a.py", "b.py"]]
    assert batches[0].total_bytes == 810


def test_weight_counts_utf8_bytes():
    f = ChangedFile(path="u.txt", content="é" * 10)
    assert f.weight(False) == 20


def test_is_deterministic():
    files = [make_file(f"f{i}.py", (i * 37) % 500 + 1) for i in range(40)]
    first = plan_batches(files, ScanMode.BRANCH, max_files=4, max_bytes=900)
    second = plan_batches(files, ScanMode.BRANCH, max_files=4, max_bytes=900)
    assert _paths(first) == _paths(second)


def test_default_caps_follow_mode():
    assert batch_caps(ScanMode.BRANCH) == (5, 60_000)
    assert batch_caps(ScanMode.PULL_REQUEST) == (10, 60_000)


def test_settings_caps_used_by_default(monkeypatch):
    monkeypatch.setattr("diffguard.config.settings.SCAN_MAX_FILES_PER_BATCH", 2)
    files = [make_file(f"f{i}.py", 10) for i in range(5)]
    assert [len(b) for b in plan_batches(files, ScanMode.BRANCH)] == [2, 2, 1]


def test_rejects_non_positive_caps():
    with pytest.raises(ValueError):
        plan_batches([make_file("a.py", 1)], ScanMode.BRANCH, max_files=0)
