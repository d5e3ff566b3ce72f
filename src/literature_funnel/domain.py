"""
Domain and aspect matching.

Domain: the subject area of a query or paper (psychology, materials science, ...),
inferred from a keyword lexicon over venue, keywords, title and abstract.

Aspect: the facet the query asks about (method, outcome, population, theory),
detected from cue words.

Both classifications are noisy, so the filter keeps a paper that matches on
domain OR aspect.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Union

from literature_funnel.models import Aspect, Candidate, QueryProfile, ScoredCandidate
from literature_funnel.text import tokenize

logger = logging.getLogger(__name__)

DOMAIN_LEXICON: Dict[str, FrozenSet[str]] = {
    "psychology": frozenset(
        "psychology psychological cognitive cognition emotion emotional behavior behaviour behavioral "
        "behavioural personality anxiety depression wellbeing attitudes perception motivation "
        "psychiatric psychotherapy mental".split()
    ),
    "medicine": frozenset(
        "clinical patients patient disease diagnosis treatment therapy medical hospital surgery "
        "surgical cancer tumor diabetes cardiovascular trial placebo drug dose mortality "
        "symptoms chronic".split()
    ),
    "public_health": frozenset(
        "epidemiology epidemiological prevalence public health vaccination vaccine pandemic "
        "covid incidence screening policy intervention community".split()
    ),
    "biology": frozenset(
        "gene genes genetic genome protein proteins cell cells cellular species organism "
        "evolution evolutionary molecular enzyme dna rna bacteria microbial ecology ecological".split()
    ),
    "neuroscience": frozenset(
        "neural neuron neurons brain cortex cortical fmri eeg synaptic neuroimaging "
        "hippocampus neurological".split()
    ),
    "education": frozenset(
        "education educational students student teaching teacher teachers learning classroom "
        "curriculum school schools pedagogy pedagogical university".split()
    ),
    "sociology": frozenset(
        "social society societal sociology sociological inequality gender race ethnicity "
        "community communities identity culture cultural migration".split()
    ),
    "economics": frozenset(
        "economic economics economy market markets price prices labor labour income "
        "financial finance monetary fiscal gdp trade firms".split()
    ),
    "computer_science": frozenset(
        "algorithm algorithms computing computational software neural network networks "
        "machine learning deep dataset datasets classification transformer model models "
        "optimization programming".split()
    ),
    "environmental_science": frozenset(
        "climate environmental environment emissions carbon pollution biodiversity "
        "sustainability sustainable ecosystem water soil".split()
    ),
    "materials_science": frozenset(
        "materials material alloy alloys polymer polymers composite composites ceramic "
        "crystalline microstructure nanoparticles thin films coating".split()
    ),
    "physics": frozenset(
        "quantum physics physical particle particles magnetic optical photon laser plasma "
        "thermodynamic relativity".split()
    ),
    "chemistry": frozenset(
        "chemical chemistry synthesis catalyst catalysis reaction reactions molecule "
        "molecules compound compounds organic inorganic spectroscopy".split()
    ),
    "engineering": frozenset(
        "engineering design mechanical electrical control sensor sensors robotics "
        "manufacturing structural device devices".split()
    ),
}

ASPECT_CUES: Dict[Aspect, FrozenSet[str]] = {
    Aspect.METHOD: frozenset(
        "method methods methodology methodological approach approaches technique techniques "
        "measure measurement measuring instrument scale protocol procedure design analysis "
        "qualitative quantitative survey interview interviews questionnaire validation".split()
    ),
    Aspect.OUTCOME: frozenset(
        "effect effects outcome outcomes impact impacts efficacy effectiveness result results "
        "improvement improve improves reduce reduction increase consequences influence".split()
    ),
    Aspect.POPULATION: frozenset(
        "children adolescents adults adult elderly older women men patients students workers "
        "population populations participants sample cohort infants youth veterans nurses".split()
    ),
    Aspect.THEORY: frozenset(
        "theory theories theoretical framework frameworks concept concepts conceptual "
        "paradigm model perspective perspectives hypothesis".split()
    ),
}

# A domain needs at least this many lexicon hits to be assigned
MIN_DOMAIN_HITS = 2
# Query text is short, one hit is enough there
MIN_QUERY_DOMAIN_HITS = 1


@dataclass(frozen=True)
class DomainAspectMatch:
    domain_match: bool
    aspect_match: bool
    domain: Optional[str]
    aspects: FrozenSet[Aspect]

    @property
    def passes(self) -> bool:
        return domain_or_aspect(self.domain_match, self.aspect_match)


def domain_or_aspect(domain_match: bool, aspect_match: bool) -> bool:
    """Survival policy for the filter: either signal is enough."""
    return domain_match or aspect_match


def domain_scores(tokens: Iterable[str]) -> Dict[str, int]:
    """Lexicon hit count per domain."""
    counts: Dict[str, int] = {}
    for token in tokens:
        for domain, lexicon in DOMAIN_LEXICON.items():
            if token in lexicon:
                counts[domain] = counts.get(domain, 0) + 1
    return counts


def infer_domain(text: str, min_hits: int = MIN_DOMAIN_HITS) -> Optional[str]:
    """Best-scoring domain for a piece of text, or None without enough signal."""
    counts = domain_scores(tokenize(text))
    if not counts:
        return None
    best = max(counts.items(), key=lambda kv: (kv[1], -_domain_rank(kv[0])))
    return best[0] if best[1] >= min_hits else None


def infer_query_aspect(query: str) -> Optional[Aspect]:
    """The first aspect (in enum order) with the most cue words in the query."""
    tokens = tokenize(query, keep_stopwords=True)
    best: Optional[Aspect] = None
    best_hits = 0
    for aspect, cues in ASPECT_CUES.items():
        hits = sum(1 for t in tokens if t in cues)
        if hits > best_hits:
            best, best_hits = aspect, hits
    return best


def extract_aspects(text: str) -> FrozenSet[Aspect]:
    """Every aspect with at least one cue word in the text."""
    tokens = set(tokenize(text, keep_stopwords=True))
    return frozenset(aspect for aspect, cues in ASPECT_CUES.items() if tokens & cues)


def candidate_domains(candidate: Candidate) -> Dict[str, int]:
    parts = [candidate.venue or "", " ".join(sorted(candidate.keywords)), candidate.title, candidate.abstract or ""]
    return domain_scores(tokenize(" ".join(parts)))


def _domain_rank(domain: str) -> int:
    return list(DOMAIN_LEXICON).index(domain)


def match_domain_aspect(
    query: Union[QueryProfile, str],
    candidate: Candidate,
) -> DomainAspectMatch:
    """Compare the query's inferred domain and aspect against one candidate."""
    if isinstance(query, QueryProfile):
        query_domain, query_aspect = query.domain, query.aspect
    else:
        query_domain = infer_domain(query, min_hits=MIN_QUERY_DOMAIN_HITS)
        query_aspect = infer_query_aspect(query)

    counts = candidate_domains(candidate)
    strong = {d for d, n in counts.items() if n >= MIN_DOMAIN_HITS}
    primary = None
    if strong:
        primary = max(strong, key=lambda d: (counts[d], -_domain_rank(d)))

    aspects = extract_aspects(f"{candidate.title} {candidate.abstract or ''}")

    if query_domain is None and query_aspect is None:
        # Nothing inferred from the query: nothing to discriminate on
        domain_match = aspect_match = True
    else:
        # An unknown signal never matches, so the known one decides
        domain_match = query_domain is not None and query_domain in strong
        aspect_match = query_aspect is not None and query_aspect in aspects

    return DomainAspectMatch(
        domain_match=domain_match,
        aspect_match=aspect_match,
        domain=primary,
        aspects=aspects,
    )


class DomainAspectMatcher:
    """Annotates scored candidates and keeps those passing domain OR aspect."""

    def match(self, profile: QueryProfile, candidate: Candidate) -> DomainAspectMatch:
        return match_domain_aspect(profile, candidate)

    def filter(self, profile: QueryProfile, scored: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
        kept = []
        for s in scored:
            m = self.match(profile, s.candidate)
            annotated = _annotate(s, m)
            if m.passes:
                kept.append(annotated)
            else:
                logger.debug(f"Dropped by domain/aspect (domain={m.domain}): {s.title[:60]!r}")
        logger.info(
            f"Domain/aspect filter ({profile.domain or 'any'}/{profile.aspect.value if profile.aspect else 'any'}): "
            f"{len(scored)} -> {len(kept)} candidates"
        )
        return kept


def _annotate(s: ScoredCandidate, m: DomainAspectMatch) -> ScoredCandidate:
    return replace(
        s,
        domain_match=m.domain_match,
        aspect_match=m.aspect_match,
        domain=m.domain,
        aspects=m.aspects,
    )
