"""
Tests for report resolution: cache hits, dangling paths, the offline
fallback and session completion.
"""

import pytest
from unittest.mock import AsyncMock

from althea.core.exceptions import NotFoundError, ReportGenerationError, ReportServiceUnavailable
from althea.core.report_cache import ReportCache, report_filename
from althea.core.report_history import ReportHistory
from althea.models import SessionStage, SessionStatus
from althea.models.insights import InsightsPayload
from althea.services.report_template import render_report_html

from conftest import make_upload

USER = "user-1"


async def session_with_insights(pipeline):
    outcome = await pipeline.start_session(USER, [make_upload()])
    session_id = outcome.session.id
    await pipeline.confirm_review(USER, session_id)
    await pipeline.customize(USER, session_id, "friendly", "simple")
    insights = await pipeline.approve_preview(USER, session_id)
    return session_id, insights


class TestReportCache:
    """Tests for ReportCache.resolve through the pipeline."""

    @pytest.mark.asyncio
    async def test_first_request_renders_and_records_path(self, pipeline, renderer, record_store):
        session_id, insights = await session_with_insights(pipeline)

        report = await pipeline.generate_report(USER, session_id)

        assert renderer.calls == 1
        assert report.cached is False
        assert report.filename == f"althea-health-report-{session_id[:8]}.html"
        assert report.storage_path.startswith(f"reports/{USER}/")
        assert b"Executive Summary" in report.content
        row = await record_store.get("health_insights", insights.id, USER)
        assert row["report_storage_path"] == report.storage_path

        session = await pipeline.get_session(USER, session_id)
        assert session.stage == SessionStage.COMPLETED
        assert session.status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stored_path_with_existing_blob_skips_rendering(
        self, pipeline, renderer, record_store, blob_store
    ):
        session_id, _ = await session_with_insights(pipeline)
        first = await pipeline.generate_report(USER, session_id)

        # A fresh cache has nothing in memory and must trust the stored path
        fresh = ReportCache(record_store, blob_store, renderer)
        session = await pipeline.get_session(USER, session_id)
        report = await fresh.resolve(USER, session)

        assert renderer.calls == 1
        assert report.cached is True
        assert report.storage_path == first.storage_path

    @pytest.mark.asyncio
    async def test_memory_hit_skips_remote_checks(self, pipeline, renderer, report_cache, record_store):
        session_id, _ = await session_with_insights(pipeline)
        await pipeline.generate_report(USER, session_id)
        session = await pipeline.get_session(USER, session_id)
        record_store.get = AsyncMock(side_effect=AssertionError("store must not be read"))
        record_store.select = AsyncMock(side_effect=AssertionError("store must not be read"))

        report = await report_cache.resolve(USER, session)

        assert report.cached is True
        assert renderer.calls == 1

    @pytest.mark.asyncio
    async def test_dangling_path_forces_one_render(self, pipeline, renderer, record_store, blob_store):
        session_id, insights = await session_with_insights(pipeline)
        await record_store.update("health_insights", insights.id, USER,
                                  {"report_storage_path": "reports/abc.html"})
        fresh = ReportCache(record_store, blob_store, renderer)

        report = await fresh.resolve(USER, await pipeline.get_session(USER, session_id))

        assert renderer.calls == 1
        assert report.storage_path != "reports/abc.html"
        row = await record_store.get("health_insights", insights.id, USER)
        assert row["report_storage_path"] == report.storage_path

    @pytest.mark.asyncio
    async def test_deleted_blob_forces_rerender(self, pipeline, renderer, record_store, blob_store):
        session_id, _ = await session_with_insights(pipeline)
        first = await pipeline.generate_report(USER, session_id)
        await blob_store.delete(first.storage_path)
        fresh = ReportCache(record_store, blob_store, renderer)

        report = await fresh.resolve(USER, await pipeline.get_session(USER, session_id))

        assert renderer.calls == 2
        assert report.storage_path != first.storage_path

    @pytest.mark.asyncio
    async def test_offline_fallback_on_unreachable_service(self, pipeline, renderer, record_store):
        session_id, insights = await session_with_insights(pipeline)
        renderer.unavailable = True

        report = await pipeline.generate_report(USER, session_id)

        assert report.fallback is True
        assert report.storage_path is None
        assert b"Executive Summary" in report.content
        row = await record_store.get("health_insights", insights.id, USER)
        assert row["report_storage_path"] is None

    @pytest.mark.asyncio
    async def test_unreachable_service_without_fallback_fails_session(
        self, pipeline, renderer, report_cache
    ):
        session_id, _ = await session_with_insights(pipeline)
        renderer.unavailable = True
        report_cache.offline_fallback = False

        with pytest.raises(ReportServiceUnavailable):
            await pipeline.generate_report(USER, session_id)

        session = await pipeline.get_session(USER, session_id)
        assert session.status == SessionStatus.FAILED
        assert session.stage == SessionStage.GENERATING_REPORT

    @pytest.mark.asyncio
    async def test_render_error_propagates(self, pipeline, renderer):
        session_id, _ = await session_with_insights(pipeline)
        renderer.render = AsyncMock(side_effect=ReportGenerationError("template exploded"))

        with pytest.raises(ReportGenerationError):
            await pipeline.generate_report(USER, session_id)

    @pytest.mark.asyncio
    async def test_report_for_ungenerated_preferences_is_not_found(self, pipeline):
        session_id, _ = await session_with_insights(pipeline)

        with pytest.raises(NotFoundError):
            await pipeline.generate_report(USER, session_id, tone="professional")

    @pytest.mark.asyncio
    async def test_each_download_is_logged(self, pipeline, record_store):
        session_id, _ = await session_with_insights(pipeline)
        await pipeline.generate_report(USER, session_id)
        await pipeline.generate_report(USER, session_id)

        log = await record_store.select("report_access_log", USER, order_by="created_at")
        assert [row["action"] for row in log] == ["generated", "downloaded", "downloaded"]

    @pytest.mark.asyncio
    async def test_service_reuses_its_own_rendering(self, pipeline, renderer, record_store, blob_store):
        session_id, insights = await session_with_insights(pipeline)
        first = await renderer.inner.render(USER, session_id, insights.id)
        second = await renderer.inner.render(USER, session_id, insights.id)

        assert first.cached is False
        assert second.cached is True
        assert second.storage_path == first.storage_path

    @pytest.mark.asyncio
    async def test_regenerated_insights_get_their_own_report(self, pipeline, renderer, record_store):
        session_id, _ = await session_with_insights(pipeline)
        first = await pipeline.generate_report(USER, session_id)

        regenerated = await pipeline.generate_insights(USER, session_id, "friendly", "simple")
        report = await pipeline.generate_report(USER, session_id)

        assert renderer.calls == 2
        assert report.cached is False
        assert report.insight_id == regenerated.id
        assert report.storage_path != first.storage_path
        row = await record_store.get("health_insights", regenerated.id, USER)
        assert row["report_storage_path"] == report.storage_path

    @pytest.mark.asyncio
    async def test_memory_entry_for_replaced_insight_is_ignored(
        self, pipeline, renderer, report_cache, record_store
    ):
        session_id, _ = await session_with_insights(pipeline)
        first = await pipeline.generate_report(USER, session_id)
        session = await pipeline.get_session(USER, session_id)
        # Replace the current insight without going through the pipeline
        replacement = await record_store.insert("health_insights", {
            "session_id": session_id, "user_id": USER, "summary": "newer",
            "tone": "friendly", "language_level": "simple",
        })
        await record_store.update("sessions", session_id, USER, {
            "current_insights": {**session.current_insights, "friendly:simple": replacement["id"]},
        })

        report = await report_cache.resolve(USER, await pipeline.get_session(USER, session_id))

        assert renderer.calls == 2
        assert report.insight_id == replacement["id"]
        assert report.storage_path != first.storage_path

    def test_forget_is_scoped_to_preferences(self, report_cache):
        report_cache._verified = {
            ("s1", "friendly", "simple"): ("i1", "reports/u/a.html"),
            ("s1", "professional", "simple"): ("i2", "reports/u/b.html"),
            ("s2", "friendly", "simple"): ("i3", "reports/u/c.html"),
        }

        report_cache.forget("s1", "friendly", "simple")
        assert set(report_cache._verified) == {("s1", "professional", "simple"), ("s2", "friendly", "simple")}

        report_cache.forget("s1")
        assert set(report_cache._verified) == {("s2", "friendly", "simple")}


class TestReportHistory:
    """Tests for listing and re-downloading past reports."""

    @pytest.mark.asyncio
    async def test_reports_are_listed_newest_first_with_questions(self, pipeline, record_store, blob_store):
        session_id, _ = await session_with_insights(pipeline)
        first = await pipeline.generate_report(USER, session_id)
        await pipeline.generate_insights(USER, session_id, "professional", "simple")
        second = await pipeline.generate_report(USER, session_id, tone="professional")
        history = ReportHistory(record_store, blob_store)

        reports = await history.list_reports(USER, session_id)

        assert [r.storage_path for r in reports] == [second.storage_path, first.storage_path]
        assert [q.question_text for q in reports[0].questions] == ["Should I retest in three months?"]

    @pytest.mark.asyncio
    async def test_view_and_download_are_logged(self, pipeline, record_store, blob_store):
        session_id, _ = await session_with_insights(pipeline)
        await pipeline.generate_report(USER, session_id)
        history = ReportHistory(record_store, blob_store, signed_url_expire_seconds=60)
        report = (await history.list_reports(USER, session_id))[0]

        viewed = await history.get_report(USER, session_id, report.id)
        link = await history.download_url(USER, session_id, report.id)

        assert viewed.id == report.id
        assert link["url"].startswith("/storage/signed/")
        assert link["expires_in"] == 60
        log = await record_store.select("report_access_log", USER, filters={"report_id": report.id})
        assert [row["action"] for row in log] == ["generated", "viewed", "downloaded"]

    @pytest.mark.asyncio
    async def test_report_of_other_session_is_not_found(self, pipeline, record_store, blob_store):
        session_id, _ = await session_with_insights(pipeline)
        await pipeline.generate_report(USER, session_id)
        history = ReportHistory(record_store, blob_store)
        report = (await history.list_reports(USER, session_id))[0]

        with pytest.raises(NotFoundError):
            await history.get_report(USER, "another-session", report.id)

    @pytest.mark.asyncio
    async def test_deleted_file_cannot_be_downloaded(self, pipeline, record_store, blob_store):
        session_id, _ = await session_with_insights(pipeline)
        generated = await pipeline.generate_report(USER, session_id)
        await blob_store.delete(generated.storage_path)
        history = ReportHistory(record_store, blob_store)
        report = (await history.list_reports(USER, session_id))[0]

        with pytest.raises(NotFoundError):
            await history.download_url(USER, session_id, report.id)


class TestReportTemplate:
    """Tests for the canonical HTML rendering."""

    def test_values_are_escaped(self):
        payload = InsightsPayload(summary="<script>alert(1)</script>")

        html = render_report_html(payload, report_id="abcdef123456")

        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "abcdef12" in html

    def test_questions_are_optional(self):
        payload = InsightsPayload(summary="ok", doctor_questions=["Is this serious?"])

        assert "Is this serious?" in render_report_html(payload)
        assert "Is this serious?" not in render_report_html(payload, include_questions=False)

    def test_urgency_banner_only_for_urgent(self):
        assert "Urgency: URGENT" in render_report_html(InsightsPayload(urgency_flag="urgent"))
        assert "Urgency:" not in render_report_html(InsightsPayload(urgency_flag="routine"))

    def test_unknown_urgency_becomes_none(self):
        assert InsightsPayload(urgency_flag="CRITICAL!!").urgency_flag == "none"

    def test_filename(self):
        assert report_filename("0123456789abcdef") == "althea-health-report-01234567.html"
