"""Weighted-scoring matcher over a clinician-supplied protocol CSV.

Protocol columns:
    Disease, Symptom_Keywords, Base_Probability, Match_Weight, Suggested_Tests, Treatment_Plan

A rule scores its base probability plus its match weight for every keyword
found (as a plain substring) in the lower-cased clinical signs. Scores are
capped at 99. AI commentary may be attached afterwards but never changes a
score.
"""

import csv
import io
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from mozarela.config import settings
from mozarela.schemas.scoring import CaseInput, Diagnosis, DiagnosisResponse
from mozarela.services.ai import AIClient, parse_json_text

logger = logging.getLogger(__name__)

MAX_LOCAL_SCORE = 99
PROTOCOL_COLUMNS = 6

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


@dataclass
class ScoringRule:
    name: str
    keywords: list[str]
    base_probability: int
    match_weight: int
    suggested_tests: str
    treatment_plan: str


@dataclass
class Candidate:
    """A rule that survived matching, with its computed score."""

    rule: ScoringRule
    score: int
    matched_keywords: list[str] = field(default_factory=list)


def _parse_int(value: str) -> int:
    """Leading integer of the field, 0 if there is none ("10%" -> 10, "n/a" -> 0)."""
    match = _LEADING_INT.match(value or "")
    return int(match.group(1)) if match else 0


def parse_protocol(text: str) -> list[ScoringRule]:
    """
    Parse protocol CSV text. The first line is a header and is skipped, as
    are blank lines and rows with fewer than six fields. Double-quoted fields
    may contain commas.
    """
    rules = []
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")), skipinitialspace=True)
    for line_no, cols in enumerate(reader):
        if line_no == 0:
            continue
        cols = [c.strip() for c in cols]
        if not any(cols):
            continue
        if len(cols) < PROTOCOL_COLUMNS:
            logger.debug("Protocol row %d skipped: %d field(s)", line_no + 1, len(cols))
            continue

        keywords = [k.strip() for k in cols[1].lower().split(",")]
        rules.append(ScoringRule(
            name=cols[0],
            keywords=[k for k in keywords if k],
            base_probability=_parse_int(cols[2]),
            match_weight=_parse_int(cols[3]),
            suggested_tests=cols[4],
            treatment_plan=cols[5],
        ))
    return rules


def score_case(rules: list[ScoringRule], clinical_signs: str) -> list[Candidate]:
    """Score every rule against the signs; keep hits or positive base rates, best first."""
    signs = (clinical_signs or "").lower()
    candidates = []

    for rule in rules:
        score = rule.base_probability
        matched = []
        for keyword in rule.keywords:
            keyword = keyword.strip().lower()
            if keyword and keyword in signs:
                score += rule.match_weight
                matched.append(keyword)

        if not matched and rule.base_probability <= 0:
            continue
        candidates.append(Candidate(rule=rule, score=min(score, MAX_LOCAL_SCORE), matched_keywords=matched))

    # sorted() is stable: equal scores keep file order
    return sorted(candidates, key=lambda c: c.score, reverse=True)


def split_tests(tests: str) -> list[str]:
    return [t.strip() for t in tests.split(",") if t.strip()]


def to_diagnosis(candidate: Candidate) -> Diagnosis:
    if candidate.matched_keywords:
        reasoning = f"Protocol Match: {', '.join(candidate.matched_keywords)}."
    else:
        reasoning = "Protocol Match: no keywords matched; retained on base probability."
    return Diagnosis(
        name=candidate.rule.name,
        probability=candidate.score,
        reasoning=reasoning,
        suggested_tests=split_tests(candidate.rule.suggested_tests),
        treatment_plan=candidate.rule.treatment_plan,
    )


def build_response(candidates: list[Candidate], source_name: str) -> DiagnosisResponse:
    if not candidates:
        return DiagnosisResponse(
            diagnoses=[],
            summary=(
                f'Analysis performed using Weighted Scoring System based on "{source_name}". '
                "No conditions in the protocol matched the clinical signs provided."
            ),
        )
    return DiagnosisResponse(
        diagnoses=[to_diagnosis(c) for c in candidates],
        summary=(
            f'Analysis performed using Weighted Scoring System based on "{source_name}". '
            f"{len(candidates)} condition(s) retained; top match: {candidates[0].rule.name} "
            f"({candidates[0].score})."
        ),
    )


def commentary_prompt(candidates: list[Candidate], case: CaseInput) -> str:
    matches = [
        {"name": c.rule.name, "score": c.score, "matched_keywords": c.matched_keywords}
        for c in candidates
    ]
    return (
        "You are a veterinary clinical assistant reviewing a weighted scoring analysis.\n\n"
        "PATIENT DATA:\n"
        f"- Species: {case.species}\n"
        f"- Breed: {case.breed or 'Unknown'}\n"
        f"- Age: {case.age or 'Unknown'}\n"
        f"- Weight: {case.weight or 'Unknown'}\n"
        f"- Clinical Signs: {case.clinical_signs}\n"
        f"- Lab Findings: {case.lab_findings or 'None'}\n\n"
        f"PROTOCOL MATCHES (ranked, scores are final):\n{json.dumps(matches, indent=2)}\n\n"
        "INSTRUCTIONS: In at most three sentences, comment on how the signalment and lab "
        "findings bear on these candidates. Do not propose new scores. "
        'Return strict JSON: {"commentary": "..."}'
    )


async def fetch_commentary(
    ai: AIClient, candidates: list[Candidate], case: CaseInput
) -> Optional[str]:
    """Narrative for the ranked candidates, or None on any provider or parsing problem."""
    try:
        text = await ai.generate(
            commentary_prompt(candidates, case),
            json_mode=True,
            timeout=settings.scoring_commentary_timeout_seconds,
        )
    except Exception as e:
        logger.warning("Scoring commentary unavailable: %s", e)
        return None

    parsed = parse_json_text(text)
    commentary = parsed.get("commentary") if isinstance(parsed, dict) else None
    if not isinstance(commentary, str) or not commentary.strip():
        logger.warning("Scoring commentary unusable, omitting it")
        return None
    return commentary.strip()


async def analyze_with_scoring(
    protocol_text: str,
    case: CaseInput,
    source_name: str = "protocol.csv",
    ai: Optional[AIClient] = None,
) -> DiagnosisResponse:
    """Score a case against a protocol and, when possible, add AI commentary."""
    candidates = score_case(parse_protocol(protocol_text), case.clinical_signs)
    response = build_response(candidates, source_name)

    if candidates and ai is not None and ai.configured:
        response.commentary = await fetch_commentary(ai, candidates, case)
    return response


def template_csv() -> str:
    """Example protocol the client offers as a download."""
    return "\n".join([
        "Disease,Symptom_Keywords,Base_Probability,Match_Weight,Suggested_Tests,Treatment_Plan",
        'Pneumonia,"cough,fever,dyspnea,lethargy",10,20,"Chest X-ray, CBC","Antibiotics, Nebulization"',
        'Kennel Cough,"cough,dry,hacking,history of boarding",20,15,"PCR Panel","Cough suppressants, Isolation"',
        'CHF,"cough,murmur,exercise intolerance,dyspnea",5,25,"Echocardiogram, ProBNP","Diuretics, Pimobendan, ACE inhibitors"',
    ])
