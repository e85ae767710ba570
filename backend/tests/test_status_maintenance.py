"""
Tests for the status maintenance engine.
"""
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from fitleads.core.datetime_utils import to_my_iso
from fitleads.models.lead import Lead
from fitleads.models.lead_status_history import LeadStatusHistory, StatusChangeSource
from fitleads.services import status_maintenance
from fitleads.services.status_maintenance import (
    LeadSnapshot,
    MaintenanceError,
    get_maintenance_stats,
    is_stale_contact,
    needs_activity_backfill,
    needs_sales_sync,
    run_status_maintenance,
    sync_sales_with_status,
)

from conftest import FIXED_NOW, FIXED_NOW_ISO


CUTOFF = "2024-06-16T10:00:00.000+08:00"


def snapshot(**fields) -> LeadSnapshot:
    values = dict(
        id=1, status="New", sales=0, date="15/06/2024", created_at=None,
        last_activity_date=None, next_follow_up_date=None,
    )
    values.update(fields)
    return LeadSnapshot(**values)


def reload(db_session, lead_id) -> Lead:
    db_session.expire_all()
    return db_session.get(Lead, lead_id)


def run(session_factory):
    return run_status_maintenance(session_factory, follow_up_days=3, now=FIXED_NOW)


class TestSelectionPredicates:
    def test_sales_sync(self):
        assert needs_sales_sync(snapshot(status="Consulted", sales=100))
        assert not needs_sales_sync(snapshot(status="Closed Won", sales=100))
        assert not needs_sales_sync(snapshot(status="Consulted", sales=0))
        assert not needs_sales_sync(snapshot(status="Consulted", sales=None))

    def test_stale_contact(self):
        stale = snapshot(status="Contacted", last_activity_date="2024-06-09T10:00:00.000+08:00")
        assert is_stale_contact(stale, CUTOFF)
        assert not is_stale_contact(stale._replace(last_activity_date="2024-06-17T10:00:00.000+08:00"), CUTOFF)
        assert not is_stale_contact(stale._replace(status="Follow Up"), CUTOFF)
        assert not is_stale_contact(stale._replace(last_activity_date=None, date=None), CUTOFF)
        assert not is_stale_contact(stale._replace(last_activity_date="garbage"), CUTOFF)

    def test_stale_contact_without_activity_uses_lead_date(self):
        lead = snapshot(status="Contacted", date="01/06/2024")
        assert is_stale_contact(lead, CUTOFF)
        assert not needs_activity_backfill(lead, CUTOFF)
        assert not is_stale_contact(lead._replace(date="18/06/2024"), CUTOFF)

    def test_legacy_contacted_label_counts_as_contacted(self):
        lead = snapshot(status="No Reply", last_activity_date="2024-06-09T10:00:00.000+08:00")
        assert is_stale_contact(lead, CUTOFF)

    def test_stale_contact_with_sales_belongs_to_sales_sync(self):
        lead = snapshot(status="Contacted", sales=50, last_activity_date="2024-06-09T10:00:00.000+08:00")
        assert needs_sales_sync(lead)
        assert not is_stale_contact(lead, CUTOFF)
        assert not needs_activity_backfill(lead, CUTOFF)

    def test_backfill_excludes_other_passes(self):
        assert needs_activity_backfill(snapshot(), CUTOFF)
        assert not needs_activity_backfill(
            snapshot(last_activity_date=FIXED_NOW_ISO, next_follow_up_date=FIXED_NOW_ISO), CUTOFF
        )
        stale_without_follow_up = snapshot(
            status="Contacted", last_activity_date="2024-06-09T10:00:00.000+08:00"
        )
        assert not needs_activity_backfill(stale_without_follow_up, CUTOFF)


class TestPromoteStaleContacted:
    def test_stale_contacted_lead_moves_to_follow_up(self, db_session, session_factory, make_lead):
        lead = make_lead(
            status="Contacted",
            last_activity_date="2024-06-09T10:00:00.000+08:00",
            next_follow_up_date="2024-06-12T10:00:00.000+08:00",
        )

        result = run(session_factory)

        assert result.promoted_to_follow_up == 1
        assert result.synced_sales_status == 0
        assert result.updated_activity_dates == 0

        lead = reload(db_session, lead.id)
        assert lead.status == "Follow Up"
        assert lead.last_activity_date == FIXED_NOW_ISO
        assert lead.next_follow_up_date == "2024-06-21T10:00:00.000+08:00"

        entry = db_session.query(LeadStatusHistory).one()
        assert (entry.from_status, entry.to_status) == ("Contacted", "Follow Up")
        assert entry.source == StatusChangeSource.MAINTENANCE
        assert entry.changed_at == FIXED_NOW_ISO
        assert "10 days" in entry.note

    def test_recent_contact_is_left_alone(self, db_session, session_factory, make_lead):
        lead = make_lead(
            status="Contacted",
            last_activity_date="2024-06-18T10:00:00.000+08:00",
            next_follow_up_date="2024-06-21T10:00:00.000+08:00",
        )

        result = run(session_factory)

        assert result.promoted_to_follow_up == 0
        assert reload(db_session, lead.id).status == "Contacted"
        assert db_session.query(LeadStatusHistory).count() == 0

    def test_follow_up_days_is_configurable(self, db_session, session_factory, make_lead):
        make_lead(
            status="Contacted",
            last_activity_date="2024-06-14T10:00:00.000+08:00",
            next_follow_up_date="2024-06-17T10:00:00.000+08:00",
        )

        assert run_status_maintenance(session_factory, follow_up_days=7, now=FIXED_NOW).promoted_to_follow_up == 0
        assert run_status_maintenance(session_factory, follow_up_days=3, now=FIXED_NOW).promoted_to_follow_up == 1

    def test_contacted_lead_without_activity_is_promoted_in_same_run(
        self, db_session, session_factory, make_lead
    ):
        lead = make_lead(status="Contacted", date="01/06/2024")

        first = run(session_factory)
        second = run(session_factory)

        assert first.promoted_to_follow_up == 1
        assert first.updated_activity_dates == 0
        assert second.total_changes == 0

        lead = reload(db_session, lead.id)
        assert lead.status == "Follow Up"
        assert lead.last_activity_date == FIXED_NOW_ISO
        entry = db_session.query(LeadStatusHistory).one()
        assert "18 days" in entry.note

    def test_legacy_no_reply_lead_is_promoted(self, db_session, session_factory, make_lead):
        lead = make_lead(status="No Reply", last_activity_date="2024-06-09T10:00:00.000+08:00")

        assert run(session_factory).promoted_to_follow_up == 1
        assert reload(db_session, lead.id).status == "Follow Up"


class TestSyncSalesWithStatus:
    def test_sales_close_lead_as_won(self, db_session, session_factory, make_lead):
        lead = make_lead(
            status="Consulted",
            sales=300,
            last_activity_date="2024-06-18T10:00:00.000+08:00",
            next_follow_up_date="2024-06-19T10:00:00.000+08:00",
        )

        result = run(session_factory)

        assert result.synced_sales_status == 1
        lead = reload(db_session, lead.id)
        assert lead.status == "Closed Won"
        assert lead.last_activity_date == FIXED_NOW_ISO
        assert lead.closed_date == FIXED_NOW_ISO
        assert lead.closed_month == "June"
        assert lead.closed_year == "2024"
        assert lead.next_follow_up_date is None

        entry = db_session.query(LeadStatusHistory).one()
        assert (entry.from_status, entry.to_status) == ("Consulted", "Closed Won")
        assert entry.source == StatusChangeSource.MAINTENANCE
        assert "300" in entry.note

    def test_stale_contact_with_sales_is_only_synced(self, db_session, session_factory, make_lead):
        lead = make_lead(
            status="Contacted",
            sales=50,
            last_activity_date="2024-06-01T10:00:00.000+08:00",
        )

        result = run(session_factory)

        assert result.synced_sales_status == 1
        assert result.promoted_to_follow_up == 0
        assert result.updated_activity_dates == 0
        assert reload(db_session, lead.id).status == "Closed Won"
        assert [e.to_status for e in db_session.query(LeadStatusHistory).all()] == ["Closed Won"]

    def test_legacy_status_is_recorded_normalized(self, db_session, session_factory, make_lead):
        make_lead(status="Consult", sales=10)

        run(session_factory)

        entry = db_session.query(LeadStatusHistory).one()
        assert entry.from_status == "Consulted"


class TestBackfillActivityDates:
    def test_backfill_from_lead_date(self, db_session, session_factory, make_lead):
        lead = make_lead(status="New", date="15/06/2024")

        result = run(session_factory)

        assert result.updated_activity_dates == 1
        lead = reload(db_session, lead.id)
        assert lead.last_activity_date == "2024-06-15T09:00:00.000+08:00"
        # Saturday + 1 business day
        assert lead.next_follow_up_date == "2024-06-17T09:00:00.000+08:00"
        assert db_session.query(LeadStatusHistory).count() == 0

    def test_existing_follow_up_is_kept(self, db_session, session_factory, make_lead):
        lead = make_lead(status="Consulted", next_follow_up_date="2024-06-25T10:00:00.000+08:00")

        run(session_factory)

        lead = reload(db_session, lead.id)
        assert lead.last_activity_date == "2024-06-15T09:00:00.000+08:00"
        assert lead.next_follow_up_date == "2024-06-25T10:00:00.000+08:00"

    def test_contacted_lead_uses_follow_up_days(self, db_session, session_factory, make_lead):
        lead = make_lead(status="Contacted", last_activity_date="2024-06-18T10:00:00.000+08:00")

        run(session_factory)

        assert reload(db_session, lead.id).next_follow_up_date == "2024-06-21T10:00:00.000+08:00"

    def test_legacy_status_is_normalized_on_backfill(self, db_session, session_factory, make_lead):
        recent = make_lead(status="No Reply", last_activity_date="2024-06-18T10:00:00.000+08:00")
        consult = make_lead(status="Consult")

        result = run(session_factory)

        assert result.updated_activity_dates == 2
        recent = reload(db_session, recent.id)
        assert recent.status == "Contacted"
        assert recent.next_follow_up_date == "2024-06-21T10:00:00.000+08:00"
        assert reload(db_session, consult.id).status == "Consulted"
        assert db_session.query(LeadStatusHistory).count() == 0
        assert run(session_factory).total_changes == 0

    def test_terminal_lead_gets_no_follow_up(self, db_session, session_factory, make_lead):
        lead = make_lead(
            status="Closed Lost",
            closed_date="2024-06-16T10:00:00.000+08:00",
            closed_month="June",
            closed_year="2024",
        )

        result = run(session_factory)

        assert result.updated_activity_dates == 1
        lead = reload(db_session, lead.id)
        assert lead.last_activity_date == "2024-06-15T09:00:00.000+08:00"
        assert lead.next_follow_up_date is None

    def test_falls_back_to_created_at(self, db_session, session_factory, make_lead):
        lead = make_lead(status="New", date="not a date")

        run(session_factory)

        lead = reload(db_session, lead.id)
        assert lead.last_activity_date == to_my_iso(lead.created_at)
        assert lead.next_follow_up_date is not None

    def test_unparseable_activity_date_skips_only_that_lead(self, db_session, session_factory, make_lead):
        bad = make_lead(status="New", last_activity_date="garbage")
        good = make_lead(status="New")

        result = run(session_factory)

        assert result.updated_activity_dates == 1
        assert reload(db_session, bad.id).next_follow_up_date is None
        assert reload(db_session, good.id).next_follow_up_date is not None


class TestMaintenanceRun:
    def test_second_run_changes_nothing(self, db_session, session_factory, make_lead):
        make_lead(status="Contacted", last_activity_date="2024-06-09T10:00:00.000+08:00")
        make_lead(status="Contacted", sales=120)
        make_lead(status="Consulted", sales=80, last_activity_date="2024-06-10T10:00:00.000+08:00")
        make_lead(status="New")
        make_lead(status="Follow Up", date="01/06/2024")
        make_lead(status="Closed Won", sales=0)
        make_lead(status="Closed Lost", last_activity_date="2024-06-11T10:00:00.000+08:00")
        make_lead(status="No Reply")
        make_lead(status="Contacted", date="01/06/2024")
        make_lead(status="No Reply", last_activity_date="2024-06-18T10:00:00.000+08:00")
        make_lead(status="Consult")

        first = run(session_factory)
        second = run(session_factory)

        assert first.total_changes > 0
        assert second.promoted_to_follow_up == 0
        assert second.synced_sales_status == 0
        assert second.updated_activity_dates == 0

    def test_invariants_hold_after_run(self, db_session, session_factory, make_lead):
        make_lead(status="Contacted", sales=120)
        make_lead(status="Follow Up", sales=30, next_follow_up_date=FIXED_NOW_ISO)
        make_lead(status="Contacted", last_activity_date="2024-06-01T10:00:00.000+08:00")
        make_lead(status="New")

        run(session_factory)

        db_session.expire_all()
        for lead in db_session.query(Lead).all():
            if lead.sales and lead.sales > 0:
                assert lead.status == "Closed Won"
            terminal = lead.status in ("Closed Won", "Closed Lost")
            assert (lead.next_follow_up_date is None) == terminal

    def test_empty_database(self, session_factory):
        result = run(session_factory)

        assert result.to_dict()["promoted_to_follow_up"] == 0
        assert result.total_changes == 0
        assert result.execution_time_ms >= 0

    def test_failing_sub_pass_returns_zero(self):
        broken_session = MagicMock()
        broken_session.query.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))

        assert sync_sales_with_status(lambda: broken_session, FIXED_NOW_ISO, 3) == 0
        broken_session.close.assert_called_once()

    def test_failing_sub_pass_does_not_stop_others(self, db_session, session_factory, make_lead):
        make_lead(status="Consulted", sales=10)
        make_lead(status="New")

        # Only the sales pass derives a status
        with patch.object(status_maintenance, "derive_effective_status", side_effect=RuntimeError("boom")):
            result = run(session_factory)

        assert result.synced_sales_status == 0
        assert result.updated_activity_dates == 1

        result = run(session_factory)
        assert result.synced_sales_status == 1
        assert result.updated_activity_dates == 0

    def test_unexpected_failure_raises_maintenance_error(self, session_factory):
        with patch.object(status_maintenance, "sync_sales_with_status", side_effect=RuntimeError("boom")):
            with pytest.raises(MaintenanceError):
                run(session_factory)

    def test_guarded_update_skips_lead_changed_since_read(self, db_session, make_lead):
        lead = make_lead(status="Contacted", last_activity_date="2024-06-01T10:00:00.000+08:00")
        stale_read = status_maintenance._load_snapshots(db_session, Lead.id == lead.id)[0]

        db_session.query(Lead).filter(Lead.id == lead.id).update({"status": "Consulted"})
        db_session.commit()

        assert not status_maintenance._guarded_update(db_session, stale_read, {"status": "Follow Up"})
        assert reload(db_session, lead.id).status == "Consulted"


class TestMaintenanceStats:
    def test_counts_pending_work(self, db_session, make_lead):
        make_lead(status="Contacted", last_activity_date="2024-06-01T10:00:00.000+08:00")
        make_lead(status="Contacted", last_activity_date="2024-06-18T10:00:00.000+08:00")
        make_lead(status="Consulted", sales=100, last_activity_date=FIXED_NOW_ISO)
        make_lead(status="New")

        stats = get_maintenance_stats(db_session, follow_up_days=3, now=FIXED_NOW)

        assert stats == {
            "stale_contacted_leads": 1,
            "leads_with_sales_not_won": 1,
            "leads_without_activity_date": 1,
        }

    def test_stats_are_read_only(self, db_session, make_lead):
        lead = make_lead(status="Consulted", sales=100)

        get_maintenance_stats(db_session, follow_up_days=3, now=FIXED_NOW)

        assert reload(db_session, lead.id).status == "Consulted"
