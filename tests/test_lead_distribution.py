"""Tests for lead distribution."""

import pytest
from datetime import datetime, timedelta

from leadflow.core.config import DistributionConfig
from leadflow.distribution import (
    DistributionError,
    DuplicateCandidatureError,
    LeadAlreadyAcceptedError,
    LeadDistributionService,
    LeadEventService,
    LeadNotAvailableError,
    LeadNotFoundError,
    LeadReservedError,
    NotLeadHolderError,
    PermissionDeniedError,
    QueueService,
    RealtorNotInQueueError,
    TeamSettingsService,
)
from leadflow.notifications import notifier
from leadflow.storage.models import (
    CandidatureStatus,
    DistributionMode,
    LeadEventType,
    LeadStatus,
    LostReason,
    PipelineStage,
    QueueStatus,
    TeamMemberRole,
)

from conftest import positions

T0 = datetime(2026, 3, 2, 10, 0)


def minutes(n):
    return T0 + timedelta(minutes=n)


def stats_row(db, realtor_id):
    with db._get_connection() as conn:
        return conn.execute("SELECT * FROM realtor_stats WHERE realtor_id = ?", (realtor_id,)).fetchone()


def reserved_lead(leads, now=T0, **kwargs):
    lead = leads.create_lead(now=now, **kwargs)
    return leads.distribute_new_lead(lead.id, now=now)


def mural_lead(leads, queue, realtors):
    """A lead that nobody could take, back on the mural."""
    for realtor_id in realtors:
        queue.set_status(realtor_id, QueueStatus.PAUSED)
    lead = reserved_lead(leads)
    for realtor_id in realtors:
        queue.set_status(realtor_id, QueueStatus.ACTIVE)
    return lead


class TestCreateAndDistribute:
    """Intake and first reservation."""

    def test_create_lead_pending(self, db, leads):
        lead = leads.create_lead(contact_name="Paula", contact_email="paula@example.com", now=T0)

        assert lead.status == LeadStatus.PENDING
        assert lead.realtor_id is None
        events = LeadEventService(db).list_events(lead.id)
        assert [e.type for e in events] == [LeadEventType.LEAD_CREATED]

    def test_create_lead_inherits_property_team(self, db, leads, realtors):
        team = db.add_team("Centro", owner_id="ana")
        prop = db.add_property("Apto Centro", owner_id="ana", team_id=team.id)

        lead = leads.create_lead(property_id=prop.id, now=T0)

        assert lead.team_id == team.id

    def test_create_lead_unknown_property(self, leads):
        with pytest.raises(DistributionError):
            leads.create_lead(property_id="nope")

    def test_distribute_reserves_first_realtor(self, leads, realtors):
        lead = reserved_lead(leads)

        assert lead.status == LeadStatus.RESERVED
        assert lead.realtor_id == "ana"
        assert lead.reserved_until == minutes(10)
        assert lead.redistribution_attempts == 0

    def test_distribute_uses_configured_window(self, db, realtors):
        service = LeadDistributionService(db, DistributionConfig(reservation_minutes=3))
        lead = reserved_lead(service)
        assert lead.reserved_until == minutes(3)

    def test_second_lead_goes_to_next_realtor(self, leads, realtors):
        first = reserved_lead(leads)
        second = reserved_lead(leads, now=minutes(1))

        assert first.realtor_id == "ana"
        assert second.realtor_id == "bruno"

    def test_distribute_without_realtors_goes_to_mural(self, leads):
        lead = reserved_lead(leads)

        assert lead.status == LeadStatus.AVAILABLE
        assert lead.realtor_id is None
        assert lead.reserved_until is None

    def test_redistributing_mural_lead_announces_once(self, leads, monkeypatch):
        released = []
        monkeypatch.setattr(
            notifier, "notify_lead_released",
            lambda lead_id, previous, reason: released.append((lead_id, reason)),
        )
        lead = reserved_lead(leads)

        again = leads.distribute_new_lead(lead.id, now=minutes(1))

        assert again.status == LeadStatus.AVAILABLE
        assert released == [(lead.id, "no_realtor_available")]

    def test_distribute_unknown_lead(self, leads):
        with pytest.raises(LeadNotFoundError):
            leads.distribute_new_lead("nope")

    def test_distribute_reserved_lead_rejected(self, leads, realtors):
        lead = reserved_lead(leads)
        with pytest.raises(LeadNotAvailableError):
            leads.distribute_new_lead(lead.id, now=minutes(1))

    def test_distribute_records_event(self, db, leads, realtors):
        lead = reserved_lead(leads)
        events = LeadEventService(db).list_events(lead.id)
        assert events[0].type == LeadEventType.LEAD_DISTRIBUTED
        assert events[0].actor_id == "ana"


class TestAccept:
    """Accepting leads."""

    def test_fast_accept_earns_bonus(self, db, leads, queue, realtors):
        lead = reserved_lead(leads)

        result = leads.accept_lead(lead.id, "ana", now=minutes(2))

        assert result.response_time == 2
        assert result.points_earned == 5
        assert result.lead.status == LeadStatus.ACCEPTED
        assert result.lead.pipeline_stage == PipelineStage.CONTACT
        assert result.lead.responded_at == minutes(2)

        entry = queue.get_entry("ana")
        assert entry.score == 5
        assert entry.active_leads == 1
        assert entry.total_accepted == 1
        assert entry.avg_response_time == 2
        assert positions(queue) == {"bruno": 1, "carla": 2, "ana": 3}

        stats = stats_row(db, "ana")
        assert stats["leads_accepted"] == 1
        assert stats["total_response_time"] == 2

    def test_slow_accept_no_bonus(self, queue, leads, realtors):
        lead = reserved_lead(leads)

        result = leads.accept_lead(lead.id, "ana", now=minutes(7))

        assert result.response_time == 7
        assert result.points_earned == 0
        assert queue.get_entry("ana").score == 0

    def test_average_response_time(self, db, leads, realtors):
        first = reserved_lead(leads)
        leads.accept_lead(first.id, "ana", now=minutes(2))
        leads.complete_lead(first.id, "ana", now=minutes(3))

        second = reserved_lead(leads, now=minutes(30))
        assert second.realtor_id == "bruno"
        third = reserved_lead(leads, now=minutes(31))
        assert third.realtor_id == "carla"
        fourth = reserved_lead(leads, now=minutes(32))
        assert fourth.realtor_id == "ana"
        leads.accept_lead(fourth.id, "ana", now=minutes(38))

        stats = stats_row(db, "ana")
        assert stats["leads_accepted"] == 2
        assert stats["total_response_time"] == 8
        assert stats["avg_response_time"] == 4

    def test_other_realtor_blocked_during_window(self, leads, realtors):
        lead = reserved_lead(leads)
        with pytest.raises(LeadReservedError):
            leads.accept_lead(lead.id, "bruno", now=minutes(5))

    def test_other_realtor_can_accept_after_window(self, leads, realtors):
        lead = reserved_lead(leads)

        result = leads.accept_lead(lead.id, "bruno", now=minutes(11))

        assert result.lead.realtor_id == "bruno"
        assert result.response_time == 11

    def test_second_accept_conflicts(self, leads, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(1))

        with pytest.raises(LeadAlreadyAcceptedError):
            leads.accept_lead(lead.id, "ana", now=minutes(2))
        with pytest.raises(LeadAlreadyAcceptedError):
            leads.accept_lead(lead.id, "bruno", now=minutes(2))

    def test_accept_unknown_lead(self, leads, realtors):
        with pytest.raises(LeadNotFoundError):
            leads.accept_lead("nope", "ana")

    def test_accept_closed_lead(self, leads, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(1))
        leads.complete_lead(lead.id, "ana", now=minutes(2))

        with pytest.raises(LeadNotAvailableError):
            leads.accept_lead(lead.id, "bruno", now=minutes(3))

    def test_accept_from_mural_settles_candidatures(self, db, leads, queue, realtors):
        lead = mural_lead(leads, queue, realtors)
        leads.candidate_to_lead(lead.id, "ana", now=minutes(1))
        leads.candidate_to_lead(lead.id, "bruno", now=minutes(1))

        leads.accept_lead(lead.id, "bruno", now=minutes(3))

        with db._get_connection() as conn:
            rows = conn.execute(
                """SELECT q.realtor_id, c.status FROM lead_candidatures c
                   JOIN realtor_queue q ON q.id = c.queue_id WHERE c.lead_id = ?""",
                (lead.id,),
            ).fetchall()
        statuses = {row["realtor_id"]: row["status"] for row in rows}
        assert statuses == {
            "ana": CandidatureStatus.REJECTED.value,
            "bruno": CandidatureStatus.ACCEPTED.value,
        }


class TestReject:
    """Rejecting and redistribution."""

    def test_reject_passes_lead_on(self, db, leads, queue, realtors):
        queue.set_score("ana", 20)
        lead = reserved_lead(leads)

        updated = leads.reject_lead(lead.id, "ana", now=minutes(1))

        assert updated.status == LeadStatus.RESERVED
        assert updated.realtor_id == "bruno"
        assert updated.redistribution_attempts == 1
        assert updated.reserved_until == minutes(11)

        entry = queue.get_entry("ana")
        assert entry.score == 15
        assert entry.total_rejected == 1
        assert stats_row(db, "ana")["leads_rejected"] == 1

    def test_reject_penalty_floors_at_zero(self, queue, leads, realtors):
        lead = reserved_lead(leads)
        leads.reject_lead(lead.id, "ana", now=minutes(1))
        assert queue.get_entry("ana").score == 0
        assert queue.get_score_history("ana")[0].points == -5

    def test_only_holder_can_reject(self, leads, realtors):
        lead = reserved_lead(leads)
        with pytest.raises(NotLeadHolderError):
            leads.reject_lead(lead.id, "bruno", now=minutes(1))

    def test_reject_after_attempts_exhausted_goes_to_mural(self, db, realtors):
        service = LeadDistributionService(db, DistributionConfig(max_redistribution_attempts=1))
        lead = reserved_lead(service)

        lead = service.reject_lead(lead.id, "ana", now=minutes(1))
        assert lead.realtor_id == "bruno"

        lead = service.reject_lead(lead.id, "bruno", now=minutes(2))
        assert lead.status == LeadStatus.AVAILABLE
        assert lead.realtor_id is None
        assert lead.reserved_until is None

    def test_reject_with_nobody_else_goes_to_mural(self, db, leads, queue):
        db.add_realtor("Solo", realtor_id="solo")
        queue.join_queue("solo")
        lead = reserved_lead(leads)

        updated = leads.reject_lead(lead.id, "solo", now=minutes(1))

        assert updated.status == LeadStatus.AVAILABLE

    def test_reject_accepted_lead_frees_slot(self, leads, queue, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(1))
        assert queue.get_entry("ana").active_leads == 1

        leads.reject_lead(lead.id, "ana", now=minutes(30))

        assert queue.get_entry("ana").active_leads == 0


class TestMural:
    """Candidatures on available leads."""

    def test_candidate(self, leads, queue, realtors):
        lead = mural_lead(leads, queue, realtors)

        candidature = leads.candidate_to_lead(lead.id, "ana", now=minutes(1))

        assert candidature.status == CandidatureStatus.PENDING
        assert candidature.queue_id == queue.get_entry("ana").id
        assert leads.get_lead(lead.id).candidates_count == 1

    def test_duplicate_candidature(self, leads, queue, realtors):
        lead = mural_lead(leads, queue, realtors)
        leads.candidate_to_lead(lead.id, "ana", now=minutes(1))

        with pytest.raises(DuplicateCandidatureError):
            leads.candidate_to_lead(lead.id, "ana", now=minutes(2))

    def test_candidate_requires_queue(self, db, leads, queue, realtors):
        lead = mural_lead(leads, queue, realtors)
        db.add_realtor("Outsider", realtor_id="outsider")

        with pytest.raises(RealtorNotInQueueError):
            leads.candidate_to_lead(lead.id, "outsider")

    def test_candidate_requires_available_lead(self, leads, realtors):
        lead = reserved_lead(leads)
        with pytest.raises(LeadNotAvailableError):
            leads.candidate_to_lead(lead.id, "bruno")

    def test_available_leads_filters(self, db, leads, queue, realtors):
        for realtor_id in realtors:
            queue.set_status(realtor_id, QueueStatus.PAUSED)
        house = db.add_property("Casa", city="Campinas", state="SP", property_type="HOUSE", price=500000)
        flat = db.add_property("Apto", city="Santos", state="SP", property_type="APARTMENT", price=300000)
        reserved_lead(leads, property_id=house.id)
        reserved_lead(leads, property_id=flat.id)
        for realtor_id in realtors:
            queue.set_status(realtor_id, QueueStatus.ACTIVE)

        assert len(leads.get_available_leads()) == 2
        campinas = leads.get_available_leads(city="Campinas")
        assert len(campinas) == 1
        assert campinas[0]["property"]["title"] == "Casa"
        assert campinas[0]["candidature_count"] == 0
        assert len(leads.get_available_leads(max_price=400000)) == 1
        assert leads.get_available_leads(property_type="LAND") == []


class TestExpiry:
    """Reservation release and stale lead expiry."""

    def test_release_expired_reservation(self, db, leads, queue, realtors):
        queue.set_score("ana", 20)
        lead = reserved_lead(leads)

        assert leads.release_expired_reservations(now=minutes(5)) == 0
        assert leads.release_expired_reservations(now=minutes(11)) == 1

        updated = leads.get_lead(lead.id)
        assert updated.status == LeadStatus.RESERVED
        assert updated.realtor_id == "bruno"
        assert updated.reserved_until == minutes(21)
        assert updated.redistribution_attempts == 1

        entry = queue.get_entry("ana")
        assert entry.score == 12
        assert entry.total_expired == 1
        assert stats_row(db, "ana")["leads_expired"] == 1

    def test_release_with_nobody_else(self, db, leads, queue):
        db.add_realtor("Solo", realtor_id="solo")
        queue.join_queue("solo")
        lead = reserved_lead(leads)

        leads.release_expired_reservations(now=minutes(11))

        assert leads.get_lead(lead.id).status == LeadStatus.AVAILABLE

    def test_expire_stale_leads(self, db, leads, queue, realtors):
        queue.set_score("ana", 30)
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(1))

        assert leads.expire_stale_leads(now=T0 + timedelta(hours=23)) == 0
        assert leads.expire_stale_leads(now=T0 + timedelta(hours=25)) == 1

        updated = leads.get_lead(lead.id)
        assert updated.status == LeadStatus.EXPIRED
        assert updated.pipeline_stage == PipelineStage.LOST
        assert updated.expires_at == T0 + timedelta(hours=25)

        entry = queue.get_entry("ana")
        assert entry.score == 25
        assert entry.active_leads == 0
        assert stats_row(db, "ana")["leads_expired"] == 1

        # Already expired leads are not touched again
        assert leads.expire_stale_leads(now=T0 + timedelta(hours=50)) == 0

    def test_cleanup_removes_old_rows(self, db, leads, realtors):
        old = datetime.now() - timedelta(days=40)
        lead = reserved_lead(leads, now=old)
        leads.accept_lead(lead.id, "ana", now=old + timedelta(minutes=1))
        leads.expire_stale_leads(now=old + timedelta(hours=25))

        removed = leads.cleanup()

        assert removed["leads"] == 1
        assert removed["score_history"] >= 2
        assert db.get_lead(lead.id) is None


class TestPipeline:
    """Completion, stages, reassignment and ratings."""

    def test_complete_lead(self, db, leads, queue, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(8))

        done = leads.complete_lead(lead.id, "ana", now=minutes(60))

        assert done.status == LeadStatus.COMPLETED
        assert done.pipeline_stage == PipelineStage.WON
        entry = queue.get_entry("ana")
        assert entry.score == 10
        assert entry.active_leads == 0
        assert stats_row(db, "ana")["leads_completed"] == 1

    def test_complete_requires_holder(self, leads, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(1))
        with pytest.raises(NotLeadHolderError):
            leads.complete_lead(lead.id, "bruno")

    def test_update_stage_by_holder(self, db, leads, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(1))

        updated = leads.update_pipeline_stage(lead.id, PipelineStage.PROPOSAL, "ana", "REALTOR", now=minutes(2))

        assert updated.pipeline_stage == PipelineStage.PROPOSAL
        event = LeadEventService(db).list_events(lead.id)[0]
        assert event.type == LeadEventType.STAGE_CHANGED
        assert event.from_stage == "CONTACT"
        assert event.to_stage == "PROPOSAL"

    def test_update_stage_denied_for_stranger(self, leads, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(1))
        with pytest.raises(PermissionDeniedError):
            leads.update_pipeline_stage(lead.id, PipelineStage.VISIT, "bruno", "REALTOR")

    def test_admin_can_update_any_lead(self, leads, realtors):
        lead = reserved_lead(leads)
        updated = leads.update_pipeline_stage(lead.id, PipelineStage.VISIT, "root", "ADMIN")
        assert updated.pipeline_stage == PipelineStage.VISIT

    def test_team_owner_can_update(self, db, leads, realtors):
        team = db.add_team("Centro", owner_id="carla")
        lead = leads.create_lead(team_id=team.id, now=T0)
        updated = leads.update_pipeline_stage(lead.id, PipelineStage.CONTACT, "carla")
        assert updated.pipeline_stage == PipelineStage.CONTACT

    def test_mark_lost(self, leads, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(1))

        lost = leads.mark_lost(lead.id, "ana", "REALTOR", LostReason.FINANCIAL_CONDITION)

        assert lost.pipeline_stage == PipelineStage.LOST
        assert lost.lost_reason == LostReason.FINANCIAL_CONDITION

    def test_realtor_leads_and_pipeline(self, leads, realtors):
        first = reserved_lead(leads)
        leads.accept_lead(first.id, "ana", now=minutes(1))
        leads.update_pipeline_stage(first.id, PipelineStage.VISIT, "ana")

        held = leads.get_realtor_leads("ana")
        assert [lead.id for lead in held] == [first.id]

        pipeline = leads.get_pipeline("ana")
        assert set(pipeline) == {stage.value for stage in PipelineStage}
        assert [item["id"] for item in pipeline["VISIT"]] == [first.id]
        assert pipeline["NEW"] == []

    def test_assign_without_team_requires_admin(self, db, leads, realtors):
        lead = reserved_lead(leads)
        with pytest.raises(PermissionDeniedError):
            leads.assign_lead(lead.id, "bruno", "ana", "REALTOR")

        updated = leads.assign_lead(lead.id, "bruno", "root", "ADMIN")

        assert updated.realtor_id == "bruno"
        with db._get_connection() as conn:
            log = conn.execute("SELECT * FROM lead_assignment_logs WHERE lead_id = ?", (lead.id,)).fetchone()
        assert log["from_realtor_id"] == "ana"
        assert log["to_realtor_id"] == "bruno"
        assert log["changed_by_user_id"] == "root"

    def test_assign_team_lead(self, db, leads, queue, realtors):
        team = db.add_team("Centro", owner_id="ana")
        db.add_team_member(team.id, "bruno")
        db.add_team_member(team.id, "carla", TeamMemberRole.ASSISTANT)
        db.add_realtor("Diego", realtor_id="diego")

        lead = leads.create_lead(team_id=team.id, now=T0)
        lead = leads.distribute_new_lead(lead.id, now=T0)
        assert lead.realtor_id == "ana"
        leads.accept_lead(lead.id, "ana", now=minutes(1))

        with pytest.raises(DistributionError):
            leads.assign_lead(lead.id, "carla", "ana")
        with pytest.raises(PermissionDeniedError):
            leads.assign_lead(lead.id, "bruno", "diego")
        with pytest.raises(DistributionError):
            leads.assign_lead(lead.id, "diego", "ana")

        updated = leads.assign_lead(lead.id, "bruno", "ana")

        assert updated.realtor_id == "bruno"
        assert queue.get_entry("ana").active_leads == 0
        assert queue.get_entry("bruno").active_leads == 1

    def test_assign_mural_lead_reserves_for_realtor(self, db, leads, queue, realtors):
        lead = mural_lead(leads, queue, realtors)
        leads.candidate_to_lead(lead.id, "ana", now=minutes(1))

        updated = leads.assign_lead(lead.id, "bruno", "root", "ADMIN", now=minutes(2))

        assert updated.status == LeadStatus.RESERVED
        assert updated.realtor_id == "bruno"
        assert updated.reserved_until == minutes(12)
        assert [held.id for held in leads.get_realtor_leads("bruno")] == [lead.id]
        with db._get_connection() as conn:
            statuses = [row["status"] for row in conn.execute(
                "SELECT status FROM lead_candidatures WHERE lead_id = ?", (lead.id,)
            )]
        assert statuses == [CandidatureStatus.REJECTED.value]
        with pytest.raises(LeadReservedError):
            leads.accept_lead(lead.id, "ana", now=minutes(3))
        with pytest.raises(LeadNotAvailableError):
            leads.candidate_to_lead(lead.id, "carla", now=minutes(3))

    def test_assign_pending_team_lead_in_manual_mode(self, db, leads, realtors):
        team = db.add_team("Centro", owner_id="ana")
        db.add_team_member(team.id, "bruno")
        TeamSettingsService(db).update(team.id, "ana", None, DistributionMode.MANUAL)
        lead = reserved_lead(leads, team_id=team.id)
        assert lead.status == LeadStatus.PENDING

        updated = leads.assign_lead(lead.id, "bruno", "ana", now=minutes(1))

        assert updated.status == LeadStatus.RESERVED
        assert updated.reserved_until == minutes(11)
        assert [held.id for held in leads.get_realtor_leads("bruno")] == [lead.id]

        back = leads.reject_lead(lead.id, "bruno", now=minutes(2))
        assert back.status == LeadStatus.PENDING
        assert back.realtor_id is None

    def test_rate_realtor(self, db, leads, queue, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(8))

        rating = leads.rate_realtor(lead.id, 5, "Great service")

        assert rating.realtor_id == "ana"
        assert queue.get_entry("ana").score == 15
        assert queue.get_score_history("ana")[0].action == "RATING_5_STARS"
        stats = stats_row(db, "ana")
        assert stats["total_ratings"] == 1
        assert stats["avg_rating"] == 5

    def test_rating_once_per_lead(self, leads, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(1))
        leads.rate_realtor(lead.id, 4)
        with pytest.raises(DistributionError):
            leads.rate_realtor(lead.id, 3)

    def test_rating_range(self, leads, realtors):
        lead = reserved_lead(leads)
        with pytest.raises(ValueError):
            leads.rate_realtor(lead.id, 6)

    def test_two_star_rating_changes_nothing(self, queue, leads, realtors):
        lead = reserved_lead(leads)
        leads.accept_lead(lead.id, "ana", now=minutes(8))
        leads.rate_realtor(lead.id, 2)
        assert queue.get_entry("ana").score == 0
        assert queue.get_score_history("ana") == []


class TestConcurrency:
    """Two services on the same database file behave as one."""

    def test_only_one_accept_wins(self, db, config, realtors):
        other = LeadDistributionService(db, config, queue=QueueService(db, config))
        service = LeadDistributionService(db, config)
        lead = mural_lead(service, QueueService(db, config), realtors)

        service.accept_lead(lead.id, "ana", now=minutes(1))

        with pytest.raises(LeadAlreadyAcceptedError):
            other.accept_lead(lead.id, "bruno", now=minutes(1))
