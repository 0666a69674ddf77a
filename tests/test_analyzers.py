"""Tests for the edge analyzers."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import numpy as np
import pytest

from filesense.config import GraphConfig
from filesense.graph import analyzers
from filesense.graph.analyzers import (
    AnalysisContext,
    AnalyzerKind,
    EdgeCandidate,
    FileSnapshot,
    analyze_comodified,
    analyze_duplicates,
    analyze_references,
    analyze_siblings,
    analyze_similarity,
    run_analyzer,
)
from filesense.graph.analyzers import comodified
from filesense.graph.analyzers.comodified import commit_file_sets, parse_git_log
from filesense.graph.analyzers.sibling import sibling_strength
from filesense.models.edges import EdgeKind

_WHEN = datetime(2024, 1, 1, tzinfo=UTC)


def _snap(file_id: int, path: str, *, drive: str = "drive-a", size: int = 10) -> FileSnapshot:
    p = Path(path)
    return FileSnapshot(
        file_id=file_id,
        path=str(p),
        name=p.name,
        extension=p.suffix or None,
        size_bytes=size,
        modified_at=_WHEN,
        parent_path=str(p.parent),
        drive_id=drive,
    )


def _pairs(edges: list[EdgeCandidate]) -> set[tuple[int, int, str]]:
    return {(e.source_id, e.target_id, str(e.kind)) for e in edges}


# ==================================================================
# EdgeCandidate
# ==================================================================


class TestEdgeCandidate:
    def test_symmetric_kinds_ordered(self):
        edge = EdgeCandidate(5, 2, EdgeKind.SIBLING, 0.9).normalized()
        assert (edge.source_id, edge.target_id) == (2, 5)

    def test_references_keep_direction(self):
        edge = EdgeCandidate(5, 2, EdgeKind.REFERENCES, 0.6).normalized()
        assert (edge.source_id, edge.target_id) == (5, 2)


# ==================================================================
# Sibling
# ==================================================================


class TestSiblingStrength:
    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("report.py", "report.md", 0.9),
            ("Report.PDF", "report.docx", 0.9),
            ("parser.py", "parser_test.py", 0.85),
            ("test_parser.py", "parser.py", 0.85),
            ("app.js", "app.test.js", 0.85),
            ("config.json", "config.example.json", 0.5),
            ("sample-settings.ini", "settings.ini", 0.5),
            ("README.md", "main.py", 0.3),
        ],
    )
    def test_rules(self, a, b, expected):
        assert sibling_strength(a, b) == expected

    def test_unrelated(self):
        assert sibling_strength("invoice.pdf", "holiday.jpg") is None


class TestAnalyzeSiblings:
    def test_same_directory_only(self):
        context = AnalysisContext(
            files=[
                _snap(1, "/r/a/report.py"),
                _snap(2, "/r/a/report.md"),
                _snap(3, "/r/b/report.txt"),
            ]
        )
        edges = analyze_siblings(context)
        assert _pairs(edges) == {(1, 2, "sibling")}
        assert edges[0].strength == 0.9

    def test_large_directory_skipped(self):
        files = [_snap(i, f"/r/big/file{i}.txt") for i in range(1, 6)]
        files.append(_snap(99, "/r/big/file1.md"))
        context = AnalysisContext(files=files, config=GraphConfig(max_directory_size=5))
        assert analyze_siblings(context) == []


# ==================================================================
# Duplicates
# ==================================================================


class TestAnalyzeDuplicates:
    def test_every_pair_in_group(self):
        context = AnalysisContext(
            files=[_snap(1, "/r/a/x.bin"), _snap(2, "/r/b/y.bin"), _snap(3, "/r/c/z.bin")],
            fingerprints={1: "f1", 2: "f1", 3: "f1"},
        )
        edges = analyze_duplicates(context)
        assert _pairs(edges) == {(1, 2, "duplicate"), (1, 3, "duplicate"), (2, 3, "duplicate")}
        assert all(e.strength == 1.0 for e in edges)
        assert edges[0].metadata == {"fingerprint": "f1"}

    def test_other_drive_not_linked(self):
        context = AnalysisContext(
            files=[_snap(1, "/r/a/x.bin"), _snap(2, "/s/a/x.bin", drive="drive-b")],
            fingerprints={1: "f1", 2: "f1"},
        )
        assert analyze_duplicates(context) == []

    def test_distinct_fingerprints(self):
        context = AnalysisContext(
            files=[_snap(1, "/r/a/x.bin"), _snap(2, "/r/a/y.bin")],
            fingerprints={1: "f1", 2: "f2"},
        )
        assert analyze_duplicates(context) == []


# ==================================================================
# References
# ==================================================================


class TestAnalyzeReferences:
    def test_text_file_mentions_stem(self, tmp_path: Path):
        notes = tmp_path / "notes.md"
        notes.write_text("See budget_2024 for the numbers.")
        budget = tmp_path / "budget_2024.xlsx"
        budget.write_bytes(b"\x00")
        context = AnalysisContext(
            files=[_snap(1, str(notes), size=40), _snap(2, str(budget), size=1)]
        )

        edges = analyze_references(context)

        assert _pairs(edges) == {(1, 2, "references")}
        assert edges[0].strength == 0.6
        assert edges[0].metadata == {"stem": "budget_2024"}

    def test_short_stems_ignored(self, tmp_path: Path):
        notes = tmp_path / "notes.md"
        notes.write_text("ab ab ab")
        (tmp_path / "ab.txt").write_text("")
        context = AnalysisContext(
            files=[_snap(1, str(notes)), _snap(2, str(tmp_path / "ab.txt"))]
        )
        assert analyze_references(context) == []

    def test_large_files_not_scanned(self, tmp_path: Path):
        notes = tmp_path / "notes.md"
        notes.write_text("budget " * 100)
        (tmp_path / "budget.xlsx").write_bytes(b"\x00")
        context = AnalysisContext(
            files=[_snap(1, str(notes), size=700), _snap(2, str(tmp_path / "budget.xlsx"))],
            config=GraphConfig(reference_ceiling_bytes=100),
        )
        assert analyze_references(context) == []

    def test_binary_scanner_ignored(self, tmp_path: Path):
        image = tmp_path / "photo.jpg"
        image.write_bytes(b"budget")
        (tmp_path / "budget.xlsx").write_bytes(b"\x00")
        context = AnalysisContext(
            files=[_snap(1, str(image)), _snap(2, str(tmp_path / "budget.xlsx"))]
        )
        assert analyze_references(context) == []

    def test_missing_file_tolerated(self, tmp_path: Path):
        context = AnalysisContext(
            files=[_snap(1, str(tmp_path / "gone.md")), _snap(2, str(tmp_path / "gone2.md"))]
        )
        assert analyze_references(context) == []


# ==================================================================
# Co-modified
# ==================================================================

_SHA_A = "a" * 40
_SHA_B = "b" * 40


class TestParseGitLog:
    def test_groups_files_by_commit(self):
        text = f"{_SHA_A}\n\nsrc/a.py\nsrc/b.py\n{_SHA_B}\n\nsrc/a.py\n"
        assert parse_git_log(text) == [["src/a.py", "src/b.py"], ["src/a.py"]]

    def test_empty_commits_dropped(self):
        assert parse_git_log(f"{_SHA_A}\n\n{_SHA_B}\n\nx.txt\n") == [["x.txt"]]

    def test_not_a_repository(self, tmp_path: Path):
        assert commit_file_sets(tmp_path, 30) == []


class TestAnalyzeComodified:
    def test_normalised_by_busiest_pair(self, monkeypatch, tmp_path: Path):
        repo = tmp_path / "repo"
        a, b, c = (str(repo / n) for n in ("a.py", "b.py", "c.py"))
        history = [[a, b], [a, b], [a, b], [a, c]]
        monkeypatch.setattr(comodified, "commit_file_sets", lambda r, d: history)
        context = AnalysisContext(
            files=[_snap(1, a), _snap(2, b), _snap(3, c)],
            config=GraphConfig(repositories=[repo], min_comod_strength=0.4),
        )

        edges = {(e.source_id, e.target_id): e for e in analyze_comodified(context)}

        assert set(edges) == {(1, 2)}
        assert edges[(1, 2)].strength == 1.0
        assert edges[(1, 2)].metadata == {"commits": 3}

    def test_weak_pairs_kept_above_threshold(self, monkeypatch, tmp_path: Path):
        repo = tmp_path / "repo"
        a, b, c = (str(repo / n) for n in ("a.py", "b.py", "c.py"))
        monkeypatch.setattr(comodified, "commit_file_sets", lambda r, d: [[a, b], [a, b], [a, c]])
        context = AnalysisContext(
            files=[_snap(1, a), _snap(2, b), _snap(3, c)],
            config=GraphConfig(repositories=[repo], min_comod_strength=0.5),
        )
        strengths = {(e.source_id, e.target_id): e.strength for e in analyze_comodified(context)}
        assert strengths == {(1, 2): 1.0, (1, 3): 0.5}

    def test_no_repositories(self):
        context = AnalysisContext(files=[_snap(1, "/r/a.py")])
        assert analyze_comodified(context) == []


# ==================================================================
# Similarity
# ==================================================================


class TestAnalyzeSimilarity:
    def _context(self, **config) -> AnalysisContext:
        return AnalysisContext(
            files=[
                _snap(1, "/r/a/one.txt"),
                _snap(2, "/r/a/two.txt"),
                _snap(3, "/r/a/three.txt"),
                _snap(4, "/r/b/four.txt"),
            ],
            embeddings={
                1: np.array([1.0, 0.0, 0.0]),
                2: np.array([0.8, 0.3, 0.0]),
                3: np.array([0.0, 1.0, 0.0]),
                4: np.array([1.0, 0.0, 0.0]),
            },
            config=GraphConfig(**config),
        )

    def test_same_directory_pairs(self):
        edges = analyze_similarity(self._context())
        assert _pairs(edges) == {(1, 2, "similar")}
        assert edges[0].strength == pytest.approx(0.9363, abs=1e-3)

    def test_near_identical_promoted_to_duplicate(self):
        edges = analyze_similarity(self._context(duplicate_similarity=0.99))
        assert _pairs(edges) == {(1, 2, "similar")}
        edges = analyze_similarity(self._context(duplicate_similarity=0.9))
        assert _pairs(edges) == {(1, 2, "duplicate")}

    def test_cross_directory_opt_in(self):
        edges = analyze_similarity(self._context(cross_directory_similarity=True))
        assert (1, 4, "duplicate") in _pairs(edges)
        assert not any(p[:2] == (2, 4) for p in _pairs(edges))

    def test_promoted_pair_with_equal_content_records_fingerprint(self):
        files = [_snap(1, "/r/a/x.txt"), _snap(2, "/r/a/y.txt"), _snap(3, "/r/a/z.txt")]
        vector = np.array([1.0, 0.0])
        context = AnalysisContext(
            files=files,
            embeddings={1: vector, 2: vector, 3: vector},
            fingerprints={1: "f1", 2: "f1", 3: "f3"},
        )
        edges = {(e.source_id, e.target_id): e for e in analyze_similarity(context)}
        assert edges[(1, 2)].metadata == {"cosine": 1.0, "fingerprint": "f1"}
        assert edges[(1, 3)].metadata == {"cosine": 1.0}

    def test_no_embeddings(self):
        context = AnalysisContext(files=[_snap(1, "/r/a/x.txt"), _snap(2, "/r/a/y.txt")])
        assert analyze_similarity(context) == []

    def test_mixed_widths_not_compared(self):
        context = AnalysisContext(
            files=[_snap(1, "/r/a/x.txt"), _snap(2, "/r/a/y.txt")],
            embeddings={1: np.array([1.0, 0.0]), 2: np.array([1.0, 0.0, 0.0])},
        )
        assert analyze_similarity(context) == []


# ==================================================================
# run_analyzer
# ==================================================================


class TestRunAnalyzer:
    def test_drops_cross_drive_and_unknown(self, monkeypatch):
        context = AnalysisContext(
            files=[_snap(1, "/r/a.txt"), _snap(2, "/s/b.txt", drive="drive-b")]
        )
        bad = [
            EdgeCandidate(1, 2, EdgeKind.SIBLING, 0.9),
            EdgeCandidate(1, 1, EdgeKind.SIBLING, 0.9),
            EdgeCandidate(1, 42, EdgeKind.SIBLING, 0.9),
        ]
        monkeypatch.setitem(analyzers.ANALYZERS, AnalyzerKind.SIBLING, lambda ctx: bad)
        assert run_analyzer(AnalyzerKind.SIBLING, context) == []

    def test_needs_embeddings(self):
        assert AnalyzerKind.SIMILAR.needs_embeddings
        assert not AnalyzerKind.DUPLICATE.needs_embeddings
