"""Services module - AI extraction, insight generation and report rendering."""

from .extraction import ExtractionService, ExtractionResult, LLMExtractionService
from .insights import InsightService, LLMInsightService, map_preferences
from .reports import ReportRenderingService, RenderResult, LocalReportRenderingService
from .report_template import render_report_html

__all__ = [
    'ExtractionService',
    'ExtractionResult',
    'LLMExtractionService',
    'InsightService',
    'LLMInsightService',
    'map_preferences',
    'ReportRenderingService',
    'RenderResult',
    'LocalReportRenderingService',
    'render_report_html',
]
