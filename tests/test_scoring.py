"""
test_scoring.py
~~~~~~~~~~~~~~~
Deduction rules, recommendation order, and Hypothesis properties for the
trust score (bounded, non-increasing in every adverse count).
"""
from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from trustforge.services.outcomes import Failed, ScanResultBundle, Skipped, Success
from trustforge.services.scoring import (
    REC_AV,
    REC_HIGH,
    REC_LOW,
    REC_MEDIUM,
    REC_REPUTATION,
    REC_SANDBOX_MALICIOUS,
    REC_SANDBOX_SUSPICIOUS,
    score_bundle,
)

from tests.factories import (
    all_skipped_bundle,
    av_report,
    full_bundle,
    reputation_report,
    sandbox_report,
    static_report,
)


# ─── Fixed Scenarios ─────────────────────────────────────────────────────────

def test_clean_bundle_scores_100():
    score, recommendations = score_bundle(full_bundle())
    assert score == 100
    assert recommendations == []


def test_all_skipped_scores_100_without_recommendations():
    assert score_bundle(all_skipped_bundle()) == (100, [])


def test_end_to_end_example():
    bundle = ScanResultBundle({
        "mobsf": Success(static_report(high=2, medium=1)),
        "virustotal": Success(av_report(malicious=1, total=10)),
        "metadefender": Skipped("File too large for metadefender scan"),
        "hybrid_analysis": Success(sandbox_report("no specific threat")),
    })

    score, recommendations = score_bundle(bundle)

    assert score == 70
    assert REC_HIGH in recommendations
    assert REC_AV in recommendations
    assert REC_SANDBOX_MALICIOUS not in recommendations
    assert REC_SANDBOX_SUSPICIOUS not in recommendations


def test_failed_outcomes_deduct_nothing():
    bundle = full_bundle(virustotal=Failed("timed out"), hybrid_analysis=Failed("ERROR"))
    assert score_bundle(bundle) == (100, [])


def test_score_clamped_at_zero():
    bundle = full_bundle(mobsf=Success(static_report(high=30)))
    score, _ = score_bundle(bundle)
    assert score == 0


def test_sandbox_deductions():
    malicious = full_bundle(hybrid_analysis=Success(sandbox_report("malicious", threats=2)))
    suspicious = full_bundle(hybrid_analysis=Success(sandbox_report("suspicious")))

    assert score_bundle(malicious) == (100 - 20 - 6, [REC_SANDBOX_MALICIOUS])
    assert score_bundle(suspicious) == (90, [REC_SANDBOX_SUSPICIOUS])


def test_threats_without_verdict_still_recommend_review():
    bundle = full_bundle(hybrid_analysis=Success(sandbox_report("no specific threat", threats=1)))
    assert score_bundle(bundle) == (97, [REC_SANDBOX_SUSPICIOUS])


def test_recommendation_order():
    bundle = full_bundle(
        mobsf=Success(static_report(high=1, medium=1, low=1)),
        virustotal=Success(av_report(malicious=2)),
        metadefender=Success(reputation_report(detections=1)),
        hybrid_analysis=Success(sandbox_report("malicious")),
    )

    _, recommendations = score_bundle(bundle)

    assert recommendations == [
        REC_HIGH, REC_MEDIUM, REC_LOW, REC_AV, REC_REPUTATION, REC_SANDBOX_MALICIOUS,
    ]


# ─── Properties ──────────────────────────────────────────────────────────────

counts = st.integers(min_value=0, max_value=15)
verdicts = st.sampled_from(["malicious", "suspicious", "no specific threat", "whitelisted"])

ADVERSE_FIELDS = ("high", "medium", "low", "av", "reputation", "threats")


def bundle_from(c: dict, verdict: str) -> ScanResultBundle:
    return full_bundle(
        mobsf=Success(static_report(c["high"], c["medium"], c["low"])),
        virustotal=Success(av_report(malicious=c["av"], total=max(c["av"], 10))),
        metadefender=Success(reputation_report(detections=c["reputation"])),
        hybrid_analysis=Success(sandbox_report(verdict, threats=c["threats"])),
    )


@settings(max_examples=200, deadline=None)
@given(st.fixed_dictionaries({name: counts for name in ADVERSE_FIELDS}), verdicts)
def test_score_always_within_bounds(c, verdict):
    score, _ = score_bundle(bundle_from(c, verdict))
    assert 0 <= score <= 100


@settings(max_examples=200, deadline=None)
@given(
    st.fixed_dictionaries({name: counts for name in ADVERSE_FIELDS}),
    verdicts,
    st.sampled_from(ADVERSE_FIELDS),
)
def test_score_non_increasing_in_each_adverse_count(c, verdict, field):
    worse = dict(c)
    worse[field] += 1

    base_score, _ = score_bundle(bundle_from(c, verdict))
    worse_score, _ = score_bundle(bundle_from(worse, verdict))

    assert worse_score <= base_score
