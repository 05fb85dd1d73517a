"""
Report template - the single HTML rendering of a health report.

Used by the rendering service and by the offline fallback, so both produce
the same document for the same insights.
"""

from collections import OrderedDict
from datetime import datetime
from html import escape
from typing import Any, Iterable, List, Optional

from ..models.document import ParsedDocument
from ..models.insights import InsightsPayload

REPORT_MEDIA_TYPE = "text/html"

DISCLAIMER = (
    "This report is for informational purposes only and does not constitute "
    "medical advice, diagnosis, or treatment. Always consult qualified "
    "healthcare professionals for medical decisions."
)

_STYLE = """
body { font-family: Arial, sans-serif; max-width: 860px; margin: 0 auto; padding: 32px; color: #1f2937; }
h1 { color: #065f46; } h2 { border-bottom: 2px solid #10b981; padding-bottom: 4px; }
table { width: 100%; border-collapse: collapse; } td, th { border: 1px solid #e5e7eb; padding: 6px; text-align: left; }
.urgency { background: #fef2f2; border-left: 4px solid #dc2626; padding: 12px; }
.disclaimer { background: #fffbeb; border: 1px solid #fde047; padding: 12px; font-size: 13px; margin-top: 32px; }
"""


def _e(value: Any) -> str:
    return escape("" if value is None else str(value))


def _section(title: str, body: str) -> str:
    return f'<div class="section">\n<h2>{_e(title)}</h2>\n{body}\n</div>'


def _list(items: Iterable[str], ordered: bool = False) -> str:
    tag = "ol" if ordered else "ul"
    inner = "".join(f"<li>{item}</li>" for item in items)
    return f"<{tag}>{inner}</{tag}>"


def _patient_name(parsed_documents: List[ParsedDocument]) -> str:
    for doc in parsed_documents:
        name = doc.structured_data.patient_info.get("name")
        if name:
            return str(name)
    return "N/A"


def render_report_html(
    insights: InsightsPayload,
    parsed_documents: Optional[List[ParsedDocument]] = None,
    generated_at: Optional[datetime] = None,
    report_id: str = "",
    include_questions: bool = True,
    report_type: str = "comprehensive",
) -> str:
    """
    Render a complete, self-contained HTML report.

    Args:
        insights: Insights to render (a HealthInsights row or a bare payload)
        parsed_documents: Documents the insights were derived from
        generated_at: Timestamp printed in the header
        report_id: Identifier printed in the header and footer
        include_questions: Whether to include the doctor-question list
        report_type: Report type label

    Returns:
        str: The HTML document; every interpolated value is escaped
    """
    parsed_documents = parsed_documents or []
    generated_at = generated_at or datetime.now()
    short_id = report_id[:8]
    sections: List[str] = []

    sections.append(_section("Executive Summary", f"<p>{_e(insights.summary)}</p>"))

    if insights.urgency_flag not in ("none", "routine"):
        sections.append(
            f'<div class="urgency"><strong>Urgency: {_e(insights.urgency_flag.upper())}</strong>'
            "<p>Some findings require timely medical attention. Please consult your "
            "healthcare provider promptly.</p></div>"
        )

    if insights.key_findings:
        grouped: "OrderedDict[str, List[str]]" = OrderedDict()
        for finding in insights.key_findings:
            text = f"<strong>{_e(finding.finding)}</strong>"
            if finding.significance:
                text += f" - {_e(finding.significance)}"
            if finding.action_needed:
                text += f" <em>{_e(finding.action_needed)}</em>"
            grouped.setdefault(finding.category or "General", []).append(text)
        body = "".join(f"<h3>{_e(category)}</h3>{_list(items)}" for category, items in grouped.items())
        sections.append(_section("Key Findings", body))

    if insights.abnormal_values:
        rows = "".join(
            f"<tr><td>{_e(v.test_name)}</td><td>{_e(v.value)}</td><td>{_e(v.normal_range)}</td>"
            f"<td>{_e(v.status)}</td><td>{_e(v.explanation)}</td></tr>"
            for v in insights.abnormal_values
        )
        table = (
            "<table><tr><th>Test</th><th>Value</th><th>Normal range</th>"
            f"<th>Status</th><th>What it means</th></tr>{rows}</table>"
        )
        sections.append(_section("Abnormal Values", table))

    if insights.recommendations:
        items = [
            f"<strong>{_e(r.category or 'General')}</strong> ({_e(r.priority)}): {_e(r.recommendation)}"
            for r in insights.recommendations
        ]
        sections.append(_section("Recommendations", _list(items)))

    if insights.family_screening:
        items = [
            f"<strong>{_e(s.condition)}</strong>: {_e(s.reason)} <em>{_e(s.who_should_screen)}</em>"
            for s in insights.family_screening
        ]
        sections.append(_section("Family Screening", _list(items)))

    if include_questions and insights.doctor_questions:
        sections.append(_section(
            "Questions for Your Doctor",
            _list((_e(q) for q in insights.doctor_questions), ordered=True),
        ))

    if insights.follow_up_timeline:
        sections.append(_section("Follow-up Timeline", f"<p>{_e(insights.follow_up_timeline)}</p>"))

    sources = [_e(doc.file_name or doc.file_id) for doc in parsed_documents]
    if sources:
        sections.append(_section("Source Documents", _list(sources)))

    generated = generated_at.strftime("%B %d, %Y")
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n<head>\n<meta charset="utf-8">\n'
        f"<title>Althea Health Report {_e(short_id)}</title>\n"
        f"<style>{_STYLE}</style>\n</head>\n<body>\n"
        f"<h1>{_e(report_type.title())} Health Report</h1>\n"
        f"<p><strong>Patient:</strong> {_e(_patient_name(parsed_documents))} | "
        f"<strong>Report ID:</strong> {_e(short_id)} | "
        f"<strong>Generated:</strong> {_e(generated)}</p>\n"
        + "\n".join(sections)
        + f'\n<div class="disclaimer"><strong>Important Disclaimer:</strong> {_e(DISCLAIMER)}</div>\n'
        "</body>\n</html>\n"
    )
