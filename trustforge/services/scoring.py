"""
scoring.py
~~~~~~~~~~
Pure trust-score computation over a ScanResultBundle.

Start from 100 and deduct per adverse finding; Failed and Skipped outcomes
contribute nothing. The result is clamped to [0, 100].
"""
from __future__ import annotations

from trustforge.services.outcomes import (
    AVAggregateReport,
    ReputationReport,
    SandboxReport,
    ScanResultBundle,
    StaticAnalysisReport,
)

MAX_SCORE = 100
MIN_SCORE = 0

# ─── Deductions ──────────────────────────────────────────────────────────────
HIGH_FINDING_PENALTY = 10
MEDIUM_FINDING_PENALTY = 5
LOW_FINDING_PENALTY = 2
AV_DETECTION_PENALTY = 5
REPUTATION_DETECTION_PENALTY = 5
SANDBOX_MALICIOUS_PENALTY = 20
SANDBOX_SUSPICIOUS_PENALTY = 10
SANDBOX_THREAT_PENALTY = 3

# ─── Recommendations ─────────────────────────────────────────────────────────
REC_HIGH = "Fix high-severity vulnerabilities immediately."
REC_MEDIUM = "Review and address medium-severity vulnerabilities."
REC_LOW = "Follow best practices to address low-severity issues."
REC_AV = "Investigate files flagged as malicious by VirusTotal."
REC_REPUTATION = "Review threats identified by MetaDefender."
REC_SANDBOX_MALICIOUS = "Take immediate action on malicious findings from Hybrid Analysis."
REC_SANDBOX_SUSPICIOUS = "Review suspicious behaviour reported by Hybrid Analysis."


def _static_deduction(report: StaticAnalysisReport) -> int:
    return (
        len(report.high) * HIGH_FINDING_PENALTY
        + len(report.medium) * MEDIUM_FINDING_PENALTY
        + len(report.low) * LOW_FINDING_PENALTY
    )


def _sandbox_deduction(report: SandboxReport) -> int:
    deduction = len(report.threats) * SANDBOX_THREAT_PENALTY
    if report.is_malicious:
        deduction += SANDBOX_MALICIOUS_PENALTY
    elif report.is_suspicious:
        deduction += SANDBOX_SUSPICIOUS_PENALTY
    return deduction


def calculate_score(bundle: ScanResultBundle) -> int:
    score = MAX_SCORE
    for payload in bundle.payloads():
        if isinstance(payload, StaticAnalysisReport):
            score -= _static_deduction(payload)
        elif isinstance(payload, AVAggregateReport):
            score -= payload.malicious_count * AV_DETECTION_PENALTY
        elif isinstance(payload, ReputationReport):
            score -= payload.detection_count * REPUTATION_DETECTION_PENALTY
        elif isinstance(payload, SandboxReport):
            score -= _sandbox_deduction(payload)
    return max(MIN_SCORE, min(MAX_SCORE, score))


def build_recommendations(bundle: ScanResultBundle) -> list[str]:
    """One recommendation per category with adverse findings, in a fixed order."""
    recommendations: list[str] = []

    static = bundle.payload_of(StaticAnalysisReport)
    if static is not None:
        if static.high:
            recommendations.append(REC_HIGH)
        if static.medium:
            recommendations.append(REC_MEDIUM)
        if static.low:
            recommendations.append(REC_LOW)

    av = bundle.payload_of(AVAggregateReport)
    if av is not None and av.malicious_count > 0:
        recommendations.append(REC_AV)

    reputation = bundle.payload_of(ReputationReport)
    if reputation is not None and reputation.detection_count > 0:
        recommendations.append(REC_REPUTATION)

    sandbox = bundle.payload_of(SandboxReport)
    if sandbox is not None:
        if sandbox.is_malicious:
            recommendations.append(REC_SANDBOX_MALICIOUS)
        elif sandbox.is_suspicious or sandbox.threats:
            recommendations.append(REC_SANDBOX_SUSPICIOUS)

    return recommendations


def score_bundle(bundle: ScanResultBundle) -> tuple[int, list[str]]:
    """Return ``(trust_score, recommendations)`` for a settled bundle."""
    return calculate_score(bundle), build_recommendations(bundle)
