import numpy as np
import pytest
from conftest import (
    AcceptAllMatcher,
    FailingEmbedder,
    FakeEmbedder,
    FlakyEmbedder,
    StubLexicalScorer,
    StubQualityScorer,
    make_candidate,
)

from literature_funnel.cancellation import CancellationToken, SearchCancelled
from literature_funnel.config import FunnelConfigError
from literature_funnel.funnel import composite_relevance, passes_quality, run_funnel
from literature_funnel.models import ScoredCandidate
from literature_funnel.neural import NeuralScorer

QUERY = "mindfulness anxiety outcomes"
ABSTRACT = "Mindfulness reduced anxiety and depression symptoms; outcomes improved in adults."
SOURCES = ("semantic_scholar", "openalex", "crossref")


def _neural():
    return NeuralScorer(FakeEmbedder())


def _sources(per_source=50, shared_dois=10):
    """
    Three sources of `per_source` candidates. The first `shared_dois` DOIs of
    openalex repeat DOIs from semantic_scholar (5) and crossref (5).
    """
    lists = []
    for s, source in enumerate(SOURCES):
        items = []
        for i in range(per_source):
            doi = f"10.{s}/{i:03d}"
            if source == "openalex" and i < shared_dois:
                doi = f"10.{0 if i < shared_dois // 2 else 2}/{i:03d}".upper()
            items.append(
                make_candidate(
                    title=f"Study{s}x{i:03d} of mindfulness for anxiety",
                    source=source,
                    external_id=doi,
                    abstract=ABSTRACT,
                    authors=(f"Author{s}{i}",),
                )
            )
        lists.append(items)
    return lists


def _deterministic_scores(lists):
    quality, bm25 = {}, {}
    for items in lists:
        for c in items:
            n = int(c.external_id.split("/")[1])
            quality[c.external_id] = float(20 + (n * 7) % 60)  # 20..79
            bm25[c.external_id] = 1.0 + (n % 10)  # 1..10
    return quality, bm25


def _assert_monotonic(counts):
    values = [v for _, v in counts.as_list()]
    assert values == sorted(values, reverse=True), counts.as_list()


class TestEndToEnd:
    def test_three_sources_with_doi_duplicates(self):
        lists = _sources()
        quality, bm25 = _deterministic_scores(lists)
        result = run_funnel(
            QUERY,
            lists,
            {"min_acceptable_count": 10},
            quality_scorer=StubQualityScorer(quality),
            lexical_scorer=StubLexicalScorer(bm25),
            neural_scorer=_neural(),
        )
        counts = result.stage_counts
        assert counts.collected == 150
        assert counts.deduplicated == 140

        dois = [s.candidate.external_id.lower() for s in result.candidates]
        assert len(dois) == len(set(dois))
        assert result.candidates

        if not result.relaxed:
            assert all(s.effective_quality >= 40 for s in result.candidates)
        _assert_monotonic(counts)
        assert sum(result.source_distribution.values()) == counts.final

    def test_default_minimum_triggers_reported_relaxation(self):
        lists = _sources()
        quality, bm25 = _deterministic_scores(lists)
        result = run_funnel(
            QUERY,
            lists,
            quality_scorer=StubQualityScorer(quality),
            lexical_scorer=StubLexicalScorer(bm25),
            neural_scorer=_neural(),
        )
        assert result.relaxed
        assert result.relaxation.count_after >= result.relaxation.count_before
        assert result.relaxation.quality_threshold_after == 20
        assert all(s.effective_quality >= 20 for s in result.candidates)
        assert any("relaxed" in w for w in result.warnings)
        _assert_monotonic(result.stage_counts)

    def test_real_scorers_keep_counts_monotonic(self):
        lists = _sources(per_source=20, shared_dois=4)
        lists[1].append(make_candidate(title="", source="openalex"))
        lists[2].append(make_candidate(title="No abstract here", source="crossref", abstract=None))
        result = run_funnel(QUERY, lists, {"min_acceptable_count": 0}, neural_scorer=_neural())
        counts = result.stage_counts
        assert counts.collected == 62
        assert counts.structurally_valid == counts.deduplicated - 2
        _assert_monotonic(counts)


class TestThresholds:
    def _run(self, quality, bm25, candidates, **config):
        config.setdefault("min_acceptable_count", 0)
        return run_funnel(
            QUERY,
            [candidates],
            config,
            quality_scorer=StubQualityScorer(quality, default=None),
            lexical_scorer=StubLexicalScorer(bm25),
            neural_scorer=_neural(),
            domain_matcher=AcceptAllMatcher(),
        )

    def test_quality_filter(self):
        candidates = [
            make_candidate(title="Low quality paper", external_id="10.1/low"),
            make_candidate(title="Good quality paper", external_id="10.1/good"),
            make_candidate(title="Unscored quality paper", external_id="10.1/none"),
        ]
        result = self._run({"10.1/low": 30.0, "10.1/good": 45.0}, {}, candidates)
        assert [s.candidate.external_id for s in result.candidates] == ["10.1/good"]
        assert result.stage_counts.quality_passed == 1

    def test_missing_quality_behaves_as_zero(self):
        missing = ScoredCandidate(candidate=make_candidate(), quality_score=None)
        zero = ScoredCandidate(candidate=make_candidate(), quality_score=0.0)
        for threshold in (0.0, 0.5, 40.0):
            assert passes_quality(missing, threshold) == passes_quality(zero, threshold)

    def test_bm25_boundary_is_inclusive(self):
        # SPECIFIC query with explicit minimum 2.0 -> threshold 2.0 * 1.25 = 2.5
        candidates = [
            make_candidate(title="Exactly at threshold", external_id="10.1/at"),
            make_candidate(title="Just below threshold", external_id="10.1/below"),
        ]
        bm25 = {"10.1/at": 2.5, "10.1/below": float(np.nextafter(2.5, 0.0))}
        result = self._run({"10.1/at": 90.0, "10.1/below": 90.0}, bm25, candidates, min_relevance_score=2.0)
        assert result.profile.thresholds.bm25_threshold == 2.5
        assert [s.candidate.external_id for s in result.candidates] == ["10.1/at"]
        assert result.stage_counts.bm25_passed == 1

    def test_top_k_bounds_neural_stage(self):
        candidates = [make_candidate(title=f"Paper{i} on anxiety", external_id=f"10.1/{i}") for i in range(20)]
        bm25 = {f"10.1/{i}": 3.0 + i for i in range(20)}
        result = self._run({}, bm25, candidates, top_k_for_neural_scoring=5, quality_threshold=0,
                           relaxed_quality_threshold=0)
        assert result.stage_counts.top_k == 5
        assert result.stage_counts.neural_scored == 5
        assert {s.candidate.external_id for s in result.candidates} == {f"10.1/{i}" for i in range(15, 20)}

    def test_sorted_by_composite_relevance(self):
        candidates = [make_candidate(title=f"Paper{i} on anxiety", external_id=f"10.1/{i}") for i in range(10)]
        bm25 = {f"10.1/{i}": 3.0 + i for i in range(10)}
        result = self._run({f"10.1/{i}": 80.0 for i in range(10)}, bm25, candidates)
        relevance = [s.composite_relevance for s in result.candidates]
        assert relevance == sorted(relevance, reverse=True)
        assert all(s.neural_score is not None for s in result.candidates)


class TestRelaxation:
    def test_relaxation_raises_count_toward_minimum(self):
        # 150 of 300 candidates pass quality 40; all pass the relaxed 20
        lists = []
        quality = {}
        for s, source in enumerate(("semantic_scholar", "openalex")):
            items = []
            for i in range(150):
                doi = f"10.{s}/{i:03d}"
                quality[doi] = 50.0 if i % 2 == 0 else 30.0
                items.append(make_candidate(title=f"Work{s}n{i:03d} on anxiety", source=source, external_id=doi))
            lists.append(items)

        result = run_funnel(
            QUERY,
            lists,
            {"min_acceptable_count": 300, "target_final_count": 300},
            quality_scorer=StubQualityScorer(quality),
            lexical_scorer=StubLexicalScorer({}),
            neural_scorer=_neural(),
            domain_matcher=AcceptAllMatcher(),
        )
        report = result.relaxation
        assert report is not None
        assert report.count_before == 150
        assert report.count_after == 300
        assert report.met_minimum
        assert report.bm25_multiplier_after == 1.0
        assert report.quality_threshold_after == 20
        assert len(result.candidates) == 300
        assert result.to_dict()["relaxation"]["countBefore"] == 150

    def test_relaxation_can_be_disabled(self):
        candidates = [make_candidate(external_id="10.1/a")]
        result = run_funnel(
            QUERY,
            [candidates],
            {"max_relaxation_passes": 0},
            quality_scorer=StubQualityScorer({"10.1/a": 10.0}),
            lexical_scorer=StubLexicalScorer({}),
            neural_scorer=_neural(),
        )
        assert not result.relaxed
        assert result.candidates == []
        assert any("below minimum" in w for w in result.warnings)

    def test_neural_scores_reused_by_relaxation(self):
        embedder = FakeEmbedder()
        candidates = [make_candidate(title=f"Paper{i} on anxiety", external_id=f"10.1/{i}") for i in range(5)]
        run_funnel(
            QUERY,
            [candidates],
            {"neural_batch_size": 100},
            quality_scorer=StubQualityScorer({}, default=30.0),
            lexical_scorer=StubLexicalScorer({}),
            neural_scorer=NeuralScorer(embedder, batch_size=100),
            domain_matcher=AcceptAllMatcher(),
        )
        # query + one batch in the first pass; nothing new to embed when relaxed
        assert embedder.calls == [1, 5]


    def test_neural_recovery_in_relaxed_pass_is_not_reported_as_failure(self):
        candidates = [make_candidate(title=f"Paper{i} on anxiety", external_id=f"10.1/{i}") for i in range(5)]
        result = run_funnel(
            QUERY,
            [candidates],
            {"min_acceptable_count": 5},
            quality_scorer=StubQualityScorer({}, default=30.0),
            lexical_scorer=StubLexicalScorer({}),
            neural_scorer=NeuralScorer(FlakyEmbedder(failures=1)),
            domain_matcher=AcceptAllMatcher(),
        )
        assert result.relaxed
        assert len(result.candidates) == 5
        assert all(s.neural_score is not None for s in result.candidates)
        assert not any("BM25 only" in w for w in result.warnings)


class TestDiagnostics:
    def test_every_stage_is_timed(self):
        candidates = [make_candidate(title=f"Paper{i} on anxiety", external_id=f"10.1/{i}") for i in range(5)]
        result = run_funnel(
            QUERY,
            [candidates],
            {"min_acceptable_count": 5},
            quality_scorer=StubQualityScorer({}, default=30.0),
            lexical_scorer=StubLexicalScorer({}),
            neural_scorer=_neural(),
            domain_matcher=AcceptAllMatcher(),
        )
        stages = [
            "bm25_filter", "top_k", "neural_scoring", "domain_aspect", "sort", "quality_filter", "diversity",
        ]
        expected = {"dedup", "quality_scoring", "structural_filter", "bm25_scoring", "total"}
        expected |= set(stages) | {f"relaxed_{name}" for name in stages}
        assert result.relaxed
        assert set(result.stage_timings) == expected
        assert all(seconds >= 0.0 for seconds in result.stage_timings.values())
        assert result.stage_timings["total"] >= result.stage_timings["dedup"]
        assert result.to_dict()["stageTimings"]["relaxedNeuralScoring"] >= 0.0

    def test_distributions_describe_final_set(self):
        candidates = [make_candidate(title=f"Paper{i} on anxiety", external_id=f"10.1/{i}") for i in range(4)]
        quality = {"10.1/0": 45.0, "10.1/1": 65.0, "10.1/2": 85.0, "10.1/3": 10.0}
        bm25 = {"10.1/0": 4.0, "10.1/1": 8.0, "10.1/2": 12.0, "10.1/3": 25.0}
        result = run_funnel(
            QUERY,
            [candidates],
            {"min_acceptable_count": 0},
            quality_scorer=StubQualityScorer(quality),
            lexical_scorer=StubLexicalScorer(bm25),
            neural_scorer=_neural(),
            domain_matcher=AcceptAllMatcher(),
        )
        distributions = result.score_distributions
        assert distributions["bm25"].count == 4
        assert distributions["bm25"].bins == {"very_low": 0, "low": 1, "medium": 1, "high": 1, "excellent": 1}

        assert distributions["quality"].count == len(result.candidates) == 3
        assert distributions["quality"].bins == {"very_low": 0, "low": 0, "medium": 1, "high": 1, "excellent": 1}
        assert distributions["quality"].minimum == 45.0

        relevance = distributions["composite_relevance"]
        assert relevance.count == 3
        assert relevance.maximum == max(s.composite_relevance for s in result.candidates)
        assert sum(relevance.bins.values()) == 3
        assert "compositeRelevance" in result.to_dict()["scoreDistributions"]

    def test_all_zero_bm25_is_warned(self):
        candidates = [make_candidate(title=f"Paper{i}", external_id=f"10.1/{i}") for i in range(3)]
        result = run_funnel(
            QUERY,
            [candidates],
            {"min_acceptable_count": 0},
            quality_scorer=StubQualityScorer({}, default=90.0),
            lexical_scorer=StubLexicalScorer({}, default=0.0),
            neural_scorer=_neural(),
            domain_matcher=AcceptAllMatcher(),
        )
        assert result.score_distributions["bm25"].bins["very_low"] == 3
        assert any("all BM25 scores are 0" in w for w in result.warnings)

class TestEdgeCases:
    def test_empty_input(self):
        result = run_funnel(QUERY, [[], [], []])
        assert result.candidates == []
        assert all(v == 0 for _, v in result.stage_counts.as_list())
        assert result.relaxation is None
        assert result.source_distribution == {}

    def test_invalid_config_raises(self):
        with pytest.raises(FunnelConfigError):
            run_funnel(QUERY, [[make_candidate()]], {"quality_threshold": -5})

    def test_neural_failure_falls_back_to_bm25(self):
        candidates = [make_candidate(title=f"Paper{i} on anxiety", external_id=f"10.1/{i}") for i in range(3)]
        bm25 = {"10.1/0": 4.0, "10.1/1": 8.0, "10.1/2": 6.0}
        result = run_funnel(
            QUERY,
            [candidates],
            {"min_acceptable_count": 0},
            quality_scorer=StubQualityScorer({}, default=90.0),
            lexical_scorer=StubLexicalScorer(bm25),
            neural_scorer=NeuralScorer(FailingEmbedder()),
            domain_matcher=AcceptAllMatcher(),
        )
        assert [s.candidate.external_id for s in result.candidates] == ["10.1/1", "10.1/2", "10.1/0"]
        assert result.candidates[0].composite_relevance == 1.0
        assert all(s.neural_score is None for s in result.candidates)
        assert any("BM25 only" in w for w in result.warnings)

    def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(SearchCancelled):
            run_funnel(QUERY, [[make_candidate()]], cancel_token=token)

    def test_cancelled_between_stages(self):
        token = CancellationToken()

        class CancellingQuality:
            def score(self, candidate):
                token.cancel()
                return 50.0

        lexical = StubLexicalScorer({})
        with pytest.raises(SearchCancelled):
            run_funnel(QUERY, [[make_candidate()]], quality_scorer=CancellingQuality(), lexical_scorer=lexical,
                       neural_scorer=_neural(), cancel_token=token)


def test_composite_relevance():
    assert composite_relevance(5.0, 10.0, 1.0) == pytest.approx(0.3 * 0.5 + 0.7 * 1.0)
    assert composite_relevance(5.0, 10.0, -1.0) == pytest.approx(0.15)
    assert composite_relevance(5.0, 10.0, None) == pytest.approx(0.5)
    assert composite_relevance(0.0, 0.0, None) == 0.0
