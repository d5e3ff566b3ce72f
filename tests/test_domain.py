from conftest import make_candidate

from literature_funnel.config import FunnelConfig
from literature_funnel.domain import (
    DomainAspectMatcher,
    extract_aspects,
    infer_domain,
    infer_query_aspect,
    match_domain_aspect,
)
from literature_funnel.models import Aspect, ScoredCandidate
from literature_funnel.query import build_query_profile


def test_infer_domain():
    assert infer_domain("anxiety and depression in adolescents", min_hits=1) == "psychology"
    assert infer_domain("polymer composites microstructure") == "materials_science"
    assert infer_domain("the of and") is None


def test_infer_query_aspect():
    assert infer_query_aspect("effects of exercise on sleep") == Aspect.OUTCOME
    assert infer_query_aspect("questionnaire validation methods") == Aspect.METHOD
    assert infer_query_aspect("sleep") is None


def test_extract_aspects():
    aspects = extract_aspects("A survey of older adults shows improved outcomes")
    assert Aspect.METHOD in aspects
    assert Aspect.POPULATION in aspects
    assert Aspect.OUTCOME in aspects


def test_domain_match_from_abstract():
    paper = make_candidate(
        title="Mindfulness for worry",
        abstract="Cognitive and emotional changes in anxiety and depression.",
    )
    m = match_domain_aspect("anxiety interventions", paper)
    assert m.domain_match
    assert m.domain == "psychology"
    assert m.passes


def test_aspect_match_alone_passes():
    paper = make_candidate(
        title="Laser cooling of atoms",
        abstract="Quantum optical effects improve photon yield.",
    )
    m = match_domain_aspect("effects of mindfulness on anxiety", paper)
    assert not m.domain_match
    assert m.aspect_match
    assert m.passes


def test_neither_domain_nor_aspect_fails():
    paper = make_candidate(title="Alloy grain growth", abstract="Microstructure of titanium alloys and ceramic coating.")
    m = match_domain_aspect("effects of mindfulness on anxiety", paper)
    assert not m.passes


def test_query_with_no_domain_or_aspect_matches_everything():
    paper = make_candidate(title="Alloy grain growth", abstract="Microstructure of titanium alloys.")
    m = match_domain_aspect("zzz qqq", paper)
    assert m.domain_match and m.aspect_match


def test_matcher_filter_annotates_and_keeps_order():
    profile = build_query_profile("effects of mindfulness on anxiety", FunnelConfig())
    keep = ScoredCandidate(candidate=make_candidate(abstract="Mindfulness reduced anxiety and depression symptoms."))
    drop = ScoredCandidate(candidate=make_candidate(title="Alloy grain growth", abstract="Titanium alloy microstructure."))
    kept = DomainAspectMatcher().filter(profile, [keep, drop])
    assert [s.title for s in kept] == [keep.title]
    assert kept[0].domain_match
    assert kept[0] is not keep


def test_known_domain_without_aspect_rejects_other_domains():
    query = "deep learning algorithms"
    alloy = make_candidate(title="Alloy grain growth", abstract="Microstructure of titanium alloys.")
    m = match_domain_aspect(query, alloy)
    assert not m.aspect_match
    assert not m.domain_match
    assert not m.passes

    cs = make_candidate(title="Deep learning for image classification", abstract="A transformer model on benchmark datasets.")
    assert match_domain_aspect(query, cs).passes
