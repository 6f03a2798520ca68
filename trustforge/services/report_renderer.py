import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from trustforge.services.outcomes import (
    AVAggregateReport,
    Failed,
    Finding,
    ProviderOutcome,
    ReputationReport,
    SandboxReport,
    ScanResultBundle,
    Skipped,
    StaticAnalysisReport,
)
from trustforge.services.report_styles import (
    SEVERITY_COLORS,
    build_styled_table,
    divider,
    get_styles,
    page_callback,
    score_color,
)

logger = logging.getLogger(__name__)

PROVIDER_LABELS = {
    "mobsf": "MobSF (static analysis)",
    "virustotal": "VirusTotal (antivirus)",
    "metadefender": "MetaDefender (reputation)",
    "hybrid_analysis": "Hybrid Analysis (sandbox)",
}


@dataclass(frozen=True)
class ReportMetadata:
    filename: str
    job_id: str
    generated_at: datetime


def _p(text: Any, style: ParagraphStyle) -> Paragraph:
    """Paragraph from untrusted text (provider output is escaped, never parsed as markup)."""
    return Paragraph(escape(str(text)), style)


def _payload_summary(payload: Any) -> str:
    if isinstance(payload, StaticAnalysisReport):
        return f"{len(payload.high)} high, {len(payload.medium)} medium, {len(payload.low)} low findings"
    if isinstance(payload, AVAggregateReport):
        return f"{payload.malicious_count}/{payload.engine_count} engines flagged as malicious"
    if isinstance(payload, ReputationReport):
        summary = f"{payload.detection_count} detection(s)"
        if payload.overall_result:
            summary += f", overall: {payload.overall_result}"
        return summary
    if isinstance(payload, SandboxReport):
        summary = f"Verdict: {payload.verdict or 'unknown'}, {len(payload.threats)} threat(s)"
        if payload.threat_score is not None:
            summary += f", threat score {payload.threat_score}"
        return summary
    return ""


def _outcome_row(name: str, outcome: ProviderOutcome, styles) -> list:
    if isinstance(outcome, (Failed, Skipped)):
        detail = outcome.reason
    else:
        detail = _payload_summary(outcome.payload)
    return [
        _p(PROVIDER_LABELS.get(name, name), styles["Body"]),
        _p(outcome.status.value.capitalize(), styles["Body"]),
        _p(detail, styles["Small"]),
    ]


def _findings_section(static: StaticAnalysisReport, styles) -> List[Any]:
    story: List[Any] = [Paragraph("Static Analysis Findings", styles["SectionHeading"])]
    buckets = (
        ("high", static.high),
        ("medium", static.medium),
        ("low", static.low),
        ("info", static.info),
    )
    if not any(findings for _, findings in buckets):
        story.append(Paragraph("No findings were reported.", styles["Body"]))
        return story

    for severity, findings in buckets:
        if not findings:
            continue
        heading = ParagraphStyle(
            f"Severity{severity}", parent=styles["SubHeading"], textColor=SEVERITY_COLORS[severity]
        )
        label = "Informational" if severity == "info" else f"{severity.capitalize()} severity"
        story.append(Paragraph(f"{label} ({len(findings)})", heading))
        rows: List[list] = [["Finding", "Description"]]
        for finding in findings:
            rows.append(_finding_row(finding, styles))
        story.append(build_styled_table(rows, col_widths=[60 * mm, 110 * mm]))
        story.append(Spacer(1, 4 * mm))
    return story


def _finding_row(finding: Finding, styles) -> list:
    title = finding.title
    if finding.section:
        title = f"{title} [{finding.section}]"
    details = [_p(finding.description or "-", styles["Small"])]
    if finding.recommendation:
        details.append(Paragraph(f"<b>Recommendation:</b> {escape(finding.recommendation)}", styles["Small"]))
    return [_p(title, styles["Body"]), details]


def _permissions_section(permissions, styles) -> List[Any]:
    story: List[Any] = [Paragraph("App Permissions", styles["SectionHeading"])]
    rows: List[list] = [["Permission", "Status", "Description"]]
    for permission in permissions:
        description = permission.description or permission.info or "-"
        rows.append([
            _p(permission.name, styles["Small"]),
            _p(permission.status or "-", styles["Small"]),
            _p(description, styles["Small"]),
        ])
    story.append(build_styled_table(rows, col_widths=[65 * mm, 25 * mm, 80 * mm]))
    return story


def _engines_section(av: AVAggregateReport, styles) -> List[Any]:
    """Every engine's verdict, flagged engines first."""
    story: List[Any] = [Paragraph("VirusTotal Engine Results", styles["SectionHeading"])]
    ordered = sorted(av.engines.items(), key=lambda item: (item[1].category != "malicious", item[0].lower()))
    rows: List[list] = [["Engine", "Category", "Result"]]
    for engine, verdict in ordered:
        rows.append([
            _p(engine, styles["Small"]),
            _p(verdict.category or "-", styles["Small"]),
            _p(verdict.result or "-", styles["Small"]),
        ])
    story.append(build_styled_table(rows, col_widths=[55 * mm, 35 * mm, 80 * mm]))
    return story


def render_report(
    bundle: ScanResultBundle,
    trust_score: int,
    recommendations: List[str],
    metadata: ReportMetadata,
) -> bytes:
    """
    Render the scan report as PDF bytes.

    Sections: metadata block, colour-coded trust score, static findings by
    severity (with recommendations), app permissions, per-engine AV results,
    per-provider summary, recommendations. Empty optional sections are omitted.
    """
    styles = get_styles()
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=20 * mm,
        leftMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title=f"Security Scan Report - {metadata.filename}",
    )

    story: List[Any] = []
    static = bundle.payload_of(StaticAnalysisReport)

    # ─── 1. Header & Metadata ───────────────────────────────────────────────
    story.append(Paragraph("Security Scan Report", styles["ReportTitle"]))
    meta_rows = [
        ["Field", "Value"],
        ["File", _p(metadata.filename, styles["Body"])],
        ["Scan ID", metadata.job_id],
        ["Generated", metadata.generated_at.strftime("%Y-%m-%d %H:%M UTC")],
    ]
    if static is not None:
        if static.app_name:
            meta_rows.append(["App name", _p(static.app_name, styles["Body"])])
        for label, value in (("MD5", static.md5), ("SHA1", static.sha1), ("SHA256", static.sha256), ("Size", static.size)):
            if value:
                meta_rows.append([label, _p(value, styles["Small"])])
    story.append(build_styled_table(meta_rows, col_widths=[35 * mm, 135 * mm]))
    story.extend(divider())

    # ─── 2. Trust Score ─────────────────────────────────────────────────────
    story.append(Paragraph("Trust Score", styles["SectionHeading"]))
    score_style = ParagraphStyle("ScoreValue", parent=styles["Score"], textColor=score_color(trust_score))
    story.append(Paragraph(f"{trust_score} / 100", score_style))
    story.extend(divider())

    # ─── 3. Static Findings ─────────────────────────────────────────────────
    if static is not None:
        story.extend(_findings_section(static, styles))
        story.extend(divider())
        if static.permissions:
            story.extend(_permissions_section(static.permissions, styles))
            story.extend(divider())

    # ─── 4. AV Engine Results ───────────────────────────────────────────────
    av = bundle.payload_of(AVAggregateReport)
    if av is not None and av.engines:
        story.extend(_engines_section(av, styles))
        story.extend(divider())

    # ─── 5. Provider Summary ────────────────────────────────────────────────
    story.append(Paragraph("Provider Summary", styles["SectionHeading"]))
    provider_rows: List[list] = [["Provider", "Status", "Details"]]
    for name, outcome in bundle.items():
        provider_rows.append(_outcome_row(name, outcome, styles))
    story.append(build_styled_table(provider_rows, col_widths=[50 * mm, 25 * mm, 95 * mm]))
    story.extend(divider())

    # ─── 6. Recommendations ─────────────────────────────────────────────────
    story.append(Paragraph("Recommendations", styles["SectionHeading"]))
    if recommendations:
        for rec in recommendations:
            story.append(_p(f"• {rec}", styles["Body"]))
    else:
        story.append(Paragraph("No issues requiring action were identified.", styles["Body"]))

    # ─── Build ──────────────────────────────────────────────────────────────
    try:
        doc.build(story, onFirstPage=page_callback, onLaterPages=page_callback)
    except Exception as e:
        logger.error(f"Platypus build failed for {metadata.job_id}: {e}")
        raise
    pdf_bytes = buffer.getvalue()
    logger.info(f"Report rendered for {metadata.job_id} ({len(pdf_bytes)} bytes)")
    return pdf_bytes
