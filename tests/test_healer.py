"""Tests for targeted healing and the data auto-healer."""

import sqlite3
from datetime import timedelta

import pytest

from pressline.errors import ValidationError
from pressline.pipeline import Defect, HealStatus
from pressline.providers.base import JobKind
from pressline.stages import topology
from pressline.storage.models import (
    ApprovalType,
    ContentStatus,
    PipelineKind,
    RunStatus,
    TopicStatus,
    utcnow,
)

CONTENT_STAGES = list(topology.stages_for(PipelineKind.CONTENT))


async def heal_marker(db, content_id):
    async with db.connection.execute(
        "SELECT heal_marker FROM content_pieces WHERE id = ?", (content_id,)
    ) as cursor:
        return (await cursor.fetchone())[0]


# ---------------------------------------------------------------------------
# Targeted heal
# ---------------------------------------------------------------------------

class TestHeal:

    async def test_healthy_record_is_already_ok(self, app, make_piece):
        piece = await make_piece()

        outcome = await app.orchestrator.heal(piece.id)

        assert outcome.status is HealStatus.ALREADY_OK
        assert await app.store.list_pipeline_runs() == []

    async def test_defect_not_present_is_already_ok(self, app, make_piece):
        piece = await make_piece(seo_score=62)

        outcome = await app.orchestrator.heal(piece.id, Defect.MISSING_TRANSLATION)

        assert outcome.status is HealStatus.ALREADY_OK
        assert await app.store.list_pipeline_runs() == []

    async def test_low_seo_reruns_only_enhancement(self, app, make_piece, publisher, text_provider):
        piece = await make_piece(body_he="<p>fbar short text</p>", seo_score=62)

        outcome = await app.orchestrator.heal(piece.id, "low_seo")

        assert outcome.status is HealStatus.HEALED
        assert outcome.defect is Defect.LOW_SEO
        run = await app.store.get_pipeline_run(outcome.run_id)
        assert run.kind is PipelineKind.SEO
        assert run.status is RunStatus.COMPLETED
        assert run.stages_completed == [topology.SEO_AUDIT, topology.SEO_ENHANCE]
        assert run.content_id == piece.id
        assert (await app.store.get_content_piece(piece.id)).seo_score == 90
        assert [post_id for post_id, _ in publisher.updates] == [piece.wp_post_id]

    async def test_second_heal_is_already_ok(self, app, make_piece):
        piece = await make_piece(body_he="<p>fbar short text</p>", seo_score=62)
        await app.orchestrator.heal(piece.id, Defect.LOW_SEO)

        outcome = await app.orchestrator.heal(piece.id, Defect.LOW_SEO)

        assert outcome.status is HealStatus.ALREADY_OK
        assert len(await app.store.list_pipeline_runs()) == 1

    async def test_missing_translation_publishes_english(self, app, make_piece, publisher, text_provider):
        piece = await make_piece(body_en="")

        outcome = await app.orchestrator.heal(piece.id)

        assert outcome.status is HealStatus.HEALED
        assert outcome.defect is Defect.MISSING_TRANSLATION
        run = await app.store.get_pipeline_run(outcome.run_id)
        assert run.status is RunStatus.COMPLETED
        assert run.stages_completed == CONTENT_STAGES

        healed = await app.store.get_content_piece(piece.id)
        assert healed.body_en
        assert healed.wp_post_id_en == 100
        assert publisher.drafts[0].translation_of == piece.wp_post_id
        # Nothing upstream of the English stage ran again
        assert "article" not in [kind.value for kind in text_provider.kinds()]

    async def test_stuck_draft_resumes_from_wordpress_draft(self, app, make_piece, backdate):
        piece = await make_piece(status=ContentStatus.DRAFT, body_en="", wp_post_id=None)
        await backdate(piece.id, hours=30)

        outcome = await app.orchestrator.heal(piece.id)

        assert outcome.status is HealStatus.HEALED
        assert outcome.defect is Defect.STUCK_DRAFT
        run = await app.store.get_pipeline_run(outcome.run_id)
        assert run.status is RunStatus.RUNNING
        assert run.current_stage == topology.APPROVAL_GATE
        assert run.stages_completed == CONTENT_STAGES[:3]

        healed = await app.store.get_content_piece(piece.id)
        assert healed.status is ContentStatus.READY
        assert healed.wp_post_id is not None
        pending = await app.store.list_pending_approvals()
        assert [(a.type, a.run_id) for a in pending] == [(ApprovalType.CONTENT_REVIEW, run.id)]

    async def test_stuck_draft_without_body_regenerates(self, app, make_piece, backdate, text_provider):
        piece = await make_piece(status=ContentStatus.DRAFT, body_he="", body_en="", wp_post_id=None)
        await backdate(piece.id, hours=30)

        outcome = await app.orchestrator.heal(piece.id, Defect.STUCK_DRAFT)

        assert outcome.status is HealStatus.HEALED
        run = await app.store.get_pipeline_run(outcome.run_id)
        assert run.stages_completed == CONTENT_STAGES[:3]
        assert text_provider.kinds().count(JobKind.ARTICLE) == 1
        assert (await app.store.get_content_piece(piece.id)).body_he

    async def test_stuck_draft_advances_active_run(self, app, make_topic, make_piece, backdate):
        topic = await make_topic()
        piece = await make_piece(topic=topic, status=ContentStatus.DRAFT, body_en="", wp_post_id=None)
        active = await app.orchestrator.ledger.open(
            PipelineKind.CONTENT,
            topic_id=topic.id,
            content_id=piece.id,
            start_stage=topology.WP_DRAFT_VIDEO,
            stages_completed=CONTENT_STAGES[:2],
        )
        await backdate(piece.id, hours=30)

        outcome = await app.orchestrator.heal(piece.id)

        assert outcome.status is HealStatus.HEALED
        assert outcome.run_id == active.id
        assert len(await app.store.list_pipeline_runs()) == 1

    async def test_other_defects_conflict_with_active_run(self, app, make_topic, make_piece):
        topic = await make_topic()
        piece = await make_piece(topic=topic, body_en="")
        active = await app.orchestrator.ledger.open(PipelineKind.CONTENT, topic_id=topic.id)

        outcome = await app.orchestrator.heal(piece.id)

        assert outcome.status is HealStatus.FAILED
        assert outcome.run_id == active.id
        assert (await app.store.get_content_piece(piece.id)).body_en == ""

    async def test_failed_heal_is_reported(self, app, make_piece):
        piece = await make_piece(body_he="", seo_score=10)

        outcome = await app.orchestrator.heal(piece.id, Defect.LOW_SEO)

        assert outcome.status is HealStatus.FAILED
        run = await app.store.get_pipeline_run(outcome.run_id)
        assert run.stages_failed == [topology.SEO_ENHANCE]

    async def test_unknown_record(self, app):
        with pytest.raises(ValidationError):
            await app.orchestrator.heal("content_missing")

    async def test_unknown_defect(self, app, make_piece):
        piece = await make_piece()
        with pytest.raises(ValidationError):
            await app.orchestrator.heal(piece.id, "broken_links")

    async def test_heal_leaves_topic_status_alone(self, app, make_topic, make_piece):
        topic = await make_topic(status=TopicStatus.APPROVED)
        piece = await make_piece(topic=topic, body_en="")

        await app.orchestrator.heal(piece.id)

        assert (await app.store.get_topic(topic.id)).status is TopicStatus.APPROVED


# ---------------------------------------------------------------------------
# Data auto-healer
# ---------------------------------------------------------------------------

@pytest.fixture
async def ten_pieces(make_piece):
    """Eight healthy published pieces, one at SEO 62 and one missing English."""
    healthy = [await make_piece() for _ in range(8)]
    low_seo = await make_piece(body_he="<p>fbar short text</p>", seo_score=62)
    no_english = await make_piece(body_en="")
    return healthy, low_seo, no_english


class TestDataAutoHealer:

    async def test_scan_finds_exactly_the_defective_records(self, app, ten_pieces):
        _, low_seo, no_english = ten_pieces

        report = await app.healer.scan()

        assert report.scanned == 10
        found = {f.content_id: f.defects for f in report.findings}
        assert found == {
            low_seo.id: [Defect.LOW_SEO],
            no_english.id: [Defect.MISSING_TRANSLATION],
        }
        assert report.outcomes == []
        assert await app.store.list_pipeline_runs() == []

    async def test_heal_all_touches_only_matching_records(self, app, db, ten_pieces, publisher):
        _, low_seo, no_english = ten_pieces

        report = await app.healer.heal_all(Defect.LOW_SEO)

        assert [(o.content_id, o.status) for o in report.outcomes] == [(low_seo.id, HealStatus.HEALED)]
        assert report.count(HealStatus.HEALED) == 1
        assert "1 healed" in report.summary
        assert (await app.store.get_content_piece(low_seo.id)).seo_score == 90
        assert (await app.store.get_content_piece(no_english.id)).body_en == ""
        assert publisher.drafts == []
        assert await heal_marker(db, low_seo.id) is None

    async def test_heal_all_is_idempotent(self, app, ten_pieces):
        await app.healer.heal_all(Defect.LOW_SEO)
        runs_before = len(await app.store.list_pipeline_runs())

        report = await app.healer.heal_all(Defect.LOW_SEO)

        assert report.outcomes == []
        assert len(await app.store.list_pipeline_runs()) == runs_before

    async def test_heal_all_any_defect(self, app, ten_pieces):
        _, low_seo, no_english = ten_pieces

        report = await app.healer.heal_all()

        statuses = {o.content_id: o.status for o in report.outcomes}
        assert statuses == {low_seo.id: HealStatus.HEALED, no_english.id: HealStatus.HEALED}
        assert (await app.healer.scan()).findings == []

    async def test_busy_record_is_skipped(self, app, store, ten_pieces):
        _, low_seo, _ = ten_pieces
        await store.acquire_heal_marker(low_seo.id, "healer_other", utcnow() - timedelta(minutes=30))

        report = await app.healer.heal_all(Defect.LOW_SEO)

        assert [(o.content_id, o.status) for o in report.outcomes] == [(low_seo.id, HealStatus.SKIPPED)]
        assert (await app.store.get_content_piece(low_seo.id)).seo_score == 62
        assert await app.store.list_pipeline_runs() == []

    async def test_stale_marker_is_taken_over(self, app, db, ten_pieces):
        _, low_seo, _ = ten_pieces
        await db.connection.execute(
            "UPDATE content_pieces SET heal_marker = ?, heal_marker_at = ? WHERE id = ?",
            ("healer_crashed", (utcnow() - timedelta(hours=2)).isoformat(), low_seo.id),
        )
        await db.connection.commit()

        report = await app.healer.heal_all(Defect.LOW_SEO)

        assert report.outcomes[0].status is HealStatus.HEALED
        assert await heal_marker(db, low_seo.id) is None

    async def test_one_failure_does_not_stop_the_rest(self, app, make_piece):
        broken = await make_piece(body_he="", seo_score=10)
        fixable = await make_piece(body_he="<p>fbar short text</p>", seo_score=62)

        report = await app.healer.heal_all(Defect.LOW_SEO)

        statuses = {o.content_id: o.status for o in report.outcomes}
        assert statuses == {broken.id: HealStatus.FAILED, fixable.id: HealStatus.HEALED}

    async def test_all_healthy_logs_no_action(self, app, make_piece):
        await make_piece()

        report = await app.healer.heal_all()

        assert report.outcomes == []
        entries = await app.log.query(limit=1)
        assert "no action needed" in entries[0].message

    async def test_unexpected_error_does_not_stop_the_rest(self, app, db, make_piece, monkeypatch):
        first = await make_piece(body_he="<p>fbar short text</p>", seo_score=62)
        second = await make_piece(body_he="<p>fbar short text</p>", seo_score=60)
        real_heal = app.orchestrator.heal
        attempted = []

        async def flaky_heal(content_id, defect=None):
            attempted.append(content_id)
            if len(attempted) == 1:
                raise sqlite3.OperationalError("database is locked")
            return await real_heal(content_id, defect)

        monkeypatch.setattr(app.orchestrator, "heal", flaky_heal)

        report = await app.healer.heal_all(Defect.LOW_SEO)

        assert sorted(attempted) == sorted([first.id, second.id])
        statuses = sorted(o.status.value for o in report.outcomes)
        assert statuses == [HealStatus.FAILED.value, HealStatus.HEALED.value]
        failed = next(o for o in report.outcomes if o.status is HealStatus.FAILED)
        assert failed.message == "database is locked"

    async def test_marker_released_when_heal_raises(self, app, db, make_piece, monkeypatch):
        piece = await make_piece(body_he="<p>fbar short text</p>", seo_score=62)

        held = []

        async def broken_heal(content_id, defect=None):
            held.append(await heal_marker(db, content_id))
            raise RuntimeError("boom")

        monkeypatch.setattr(app.orchestrator, "heal", broken_heal)

        report = await app.healer.heal_all(Defect.LOW_SEO)

        assert held == [app.healer.holder]
        assert [(o.content_id, o.status) for o in report.outcomes] == [(piece.id, HealStatus.FAILED)]
        assert await heal_marker(db, piece.id) is None

    async def test_unknown_defect_is_a_validation_error(self, app):
        with pytest.raises(ValidationError):
            await app.healer.heal_all("broken_links")
