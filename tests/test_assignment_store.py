"""Tests for the Mongo-backed store, with motor collections mocked."""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo import ReturnDocument

from app.core.exceptions import AmbiguousPlacementError, ConcurrentUpdateError, NotFoundError
from app.flow.states import ConfirmationStatus
from app.models.placement import Placement, ReminderType
from app.services.assignment_store import MongoAssignmentStore, select_active_placement


NOW = datetime(2025, 8, 4, 20, 0, tzinfo=timezone.utc)


def placement_doc(**overrides):
    doc = {
        "_id": "abc",
        "job_id": "job-1",
        "associate_id": "assoc-1",
        "work_date": "2025-08-05",
        "start_time": "09:00",
        "confirmation_status": "UNCONFIRMED",
        "night_before_sent": False,
        "day_of_sent": False,
        "version": 0,
    }
    doc.update(overrides)
    return doc


def cursor_returning(docs):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    return cursor


@pytest.fixture
def collections():
    return {
        "assignments": MagicMock(),
        "associates": MagicMock(),
        "jobs": MagicMock(),
        "messages": MagicMock(),
    }


@pytest.fixture
def mongo_store(collections):
    return MongoAssignmentStore(
        assignments=collections["assignments"],
        associates=collections["associates"],
        jobs=collections["jobs"],
        messages=collections["messages"],
        timezone="America/Denver",
        claim_ttl_seconds=300
    )


class TestQueries:

    @pytest.mark.asyncio
    async def test_due_scan_window_and_filters(self, mongo_store, collections):
        collections["assignments"].find.return_value = cursor_returning([placement_doc()])

        placements = await mongo_store.get_due_assignments(NOW)

        query = collections["assignments"].find.call_args.args[0]
        assert query["work_date"] == {"$gte": "2025-08-03", "$lte": "2025-08-06"}
        assert sorted(query["confirmation_status"]["$nin"]) == ["CONFIRMED", "DECLINED"]
        assert {"night_before_sent": {"$ne": True}} in query["$or"]
        assert placements[0].work_date == date(2025, 8, 5)

    @pytest.mark.asyncio
    async def test_legacy_status_labels_parse(self, mongo_store, collections):
        collections["assignments"].find.return_value = cursor_returning([
            placement_doc(confirmation_status="Soft Confirmed")
        ])
        [placement] = await mongo_store.get_due_assignments(NOW)
        assert placement.confirmation_status == ConfirmationStatus.SOFT_CONFIRMED

    @pytest.mark.asyncio
    async def test_active_assignments_drop_past_shifts(self, mongo_store, collections):
        collections["assignments"].find.return_value = cursor_returning([
            placement_doc(work_date="2025-08-04", start_time="06:00"),
            placement_doc(job_id="job-2"),
        ])
        collections["jobs"].find.return_value = cursor_returning([{"_id": "j1", "id": "job-1", "title": "Forklift Operator"}])

        placements = await mongo_store.get_active_assignments("assoc-1", NOW)

        assert [p.job_id for p in placements] == ["job-2"]
        query = collections["assignments"].find.call_args.args[0]
        assert query["work_date"] == {"$gte": "2025-08-03", "$lte": "2025-08-11"}
        assert "confirmation_status" in query
        assert collections["jobs"].find.call_args.args[0] == {"id": {"$in": ["job-1", "job-2"]}}

    @pytest.mark.asyncio
    async def test_active_assignments_use_job_timezone(self, mongo_store, collections):
        # At 21:00Z a 14:00 EDT shift (18:00Z) is past the grace; 14:00 MDT (20:00Z) is not
        now = datetime(2025, 8, 4, 21, 0, tzinfo=timezone.utc)
        collections["assignments"].find.return_value = cursor_returning([
            placement_doc(job_id="job-east", work_date="2025-08-04", start_time="14:00"),
            placement_doc(job_id="job-local", work_date="2025-08-04", start_time="14:00"),
        ])
        collections["jobs"].find.return_value = cursor_returning([
            {"_id": "j1", "id": "job-east", "title": "Picker", "timezone": "America/New_York"},
            {"_id": "j2", "id": "job-local", "title": "Picker"},
        ])

        placements = await mongo_store.get_active_assignments("assoc-1", now)

        assert [p.job_id for p in placements] == ["job-local"]

    @pytest.mark.asyncio
    async def test_active_assignments_reach_back_for_western_jobs(self, mongo_store, collections):
        # 00:30 MDT on Aug 5 is still 23:30 PDT on Aug 4
        now = datetime(2025, 8, 5, 6, 30, tzinfo=timezone.utc)
        collections["assignments"].find.return_value = cursor_returning([
            placement_doc(job_id="job-west", work_date="2025-08-04", start_time="22:00"),
        ])
        collections["jobs"].find.return_value = cursor_returning([
            {"_id": "j1", "id": "job-west", "title": "Loader", "timezone": "America/Los_Angeles"},
        ])

        placements = await mongo_store.get_active_assignments("assoc-1", now)

        assert [p.job_id for p in placements] == ["job-west"]
        query = collections["assignments"].find.call_args.args[0]
        assert query["work_date"]["$gte"] == "2025-08-04"

    @pytest.mark.asyncio
    async def test_include_terminal_drops_status_filter(self, mongo_store, collections):
        collections["assignments"].find.return_value = cursor_returning([])
        await mongo_store.get_active_assignments("assoc-1", NOW, include_terminal=True)
        query = collections["assignments"].find.call_args.args[0]
        assert "confirmation_status" not in query

    @pytest.mark.asyncio
    async def test_get_associate_by_phone(self, mongo_store, collections):
        collections["associates"].find_one = AsyncMock(return_value={
            "_id": "x", "id": "assoc-1", "first_name": "Maria", "phone_number": "+13035550100"
        })
        associate = await mongo_store.get_associate_by_phone("+13035550100")
        collections["associates"].find_one.assert_awaited_once_with({"phone_number": "+13035550100"})
        assert associate.id == "assoc-1"
        assert associate.opted_out is False


class TestConditionalUpdates:

    @pytest.mark.asyncio
    async def test_claim_reminder_query(self, mongo_store, collections):
        collections["assignments"].find_one_and_update = AsyncMock(return_value=placement_doc())

        claimed = await mongo_store.claim_reminder("job-1", "assoc-1", ReminderType.NIGHT_BEFORE, NOW)

        assert claimed is True
        query, update = collections["assignments"].find_one_and_update.call_args.args
        assert query["night_before_sent"] == {"$ne": True}
        assert query["reminder_unconfirmed.night_before"] == {"$exists": False}
        assert {"reminder_claims.night_before": {"$lt": NOW - timedelta(seconds=300)}} in query["$or"]
        assert update == {"$set": {"reminder_claims.night_before": NOW}}

    @pytest.mark.asyncio
    async def test_claim_reminder_lost(self, mongo_store, collections):
        collections["assignments"].find_one_and_update = AsyncMock(return_value=None)
        assert await mongo_store.claim_reminder("job-1", "assoc-1", ReminderType.DAY_OF, NOW) is False

    @pytest.mark.asyncio
    async def test_mark_sent_clears_claim(self, mongo_store, collections):
        collections["assignments"].find_one_and_update = AsyncMock(return_value=placement_doc(day_of_sent=True))

        placement = await mongo_store.mark_reminder_sent("job-1", "assoc-1", ReminderType.DAY_OF, NOW)

        _, update = collections["assignments"].find_one_and_update.call_args.args
        assert update["$set"]["day_of_sent"] is True
        assert update["$unset"] == {"reminder_claims.day_of": ""}
        assert update["$inc"] == {"version": 1}
        assert placement.day_of_sent is True

    @pytest.mark.asyncio
    async def test_flag_unconfirmed_replaces_claim(self, mongo_store, collections):
        collections["assignments"].update_one = AsyncMock()

        await mongo_store.flag_reminder_unconfirmed("job-1", "assoc-1", ReminderType.NIGHT_BEFORE, NOW)

        collections["assignments"].update_one.assert_awaited_once_with(
            {"job_id": "job-1", "associate_id": "assoc-1"},
            {
                "$set": {"reminder_unconfirmed.night_before": NOW},
                "$unset": {"reminder_claims.night_before": ""},
            }
        )

    def test_unconfirmed_reminder_counts_as_sent(self):
        placement = Placement(**placement_doc(reminder_unconfirmed={"night_before": NOW}))
        assert placement.night_before_sent is False
        assert placement.reminder_sent(ReminderType.NIGHT_BEFORE) is True
        assert placement.reminder_sent(ReminderType.DAY_OF) is False

    @pytest.mark.asyncio
    async def test_update_with_version(self, mongo_store, collections):
        collections["assignments"].find_one_and_update = AsyncMock(
            return_value=placement_doc(confirmation_status="SOFT_CONFIRMED", version=1)
        )

        placement = await mongo_store.update_assignment(
            "job-1", "assoc-1",
            {"confirmation_status": ConfirmationStatus.SOFT_CONFIRMED, "last_activity_time": NOW},
            expected_version=0
        )

        call = collections["assignments"].find_one_and_update.call_args
        query, update = call.args
        assert query["version"] == 0
        assert update["$set"]["confirmation_status"] == "SOFT_CONFIRMED"
        assert update["$inc"] == {"version": 1}
        assert call.kwargs["return_document"] == ReturnDocument.AFTER
        assert isinstance(placement, Placement)
        assert placement.version == 1

    @pytest.mark.asyncio
    async def test_version_conflict(self, mongo_store, collections):
        collections["assignments"].find_one_and_update = AsyncMock(return_value=None)
        collections["assignments"].find_one = AsyncMock(return_value=placement_doc(version=2))

        with pytest.raises(ConcurrentUpdateError):
            await mongo_store.update_assignment("job-1", "assoc-1", {"last_activity_time": NOW}, expected_version=1)

    @pytest.mark.asyncio
    async def test_update_missing_placement(self, mongo_store, collections):
        collections["assignments"].find_one_and_update = AsyncMock(return_value=None)
        collections["assignments"].find_one = AsyncMock(return_value=None)

        with pytest.raises(NotFoundError):
            await mongo_store.update_assignment("job-1", "assoc-1", {"last_activity_time": NOW}, expected_version=1)

    @pytest.mark.asyncio
    async def test_set_opt_out_unknown_associate(self, mongo_store, collections):
        collections["associates"].find_one_and_update = AsyncMock(return_value=None)
        with pytest.raises(NotFoundError):
            await mongo_store.set_opt_out("assoc-404", True, NOW)


class TestSelectActivePlacement:

    def make(self, job_id, day, start="09:00", status=ConfirmationStatus.UNCONFIRMED):
        return Placement(job_id=job_id, associate_id="assoc-1", work_date=day, start_time=start,
                         confirmation_status=status)

    def test_nearest_date_wins(self):
        chosen = select_active_placement([
            self.make("later", date(2025, 8, 7)),
            self.make("sooner", date(2025, 8, 5)),
        ])
        assert chosen.job_id == "sooner"

    def test_same_day_is_ambiguous(self):
        with pytest.raises(AmbiguousPlacementError) as exc_info:
            select_active_placement([
                self.make("a", date(2025, 8, 5), "09:00"),
                self.make("b", date(2025, 8, 5), "14:00"),
            ])
        assert exc_info.value.code == "AMBIGUOUS_PLACEMENT"
        assert exc_info.value.details == {"job_ids": ["a", "b"]}

    def test_terminal_candidates_ignored(self):
        chosen = select_active_placement([
            self.make("done", date(2025, 8, 5), status=ConfirmationStatus.CONFIRMED),
            self.make("open", date(2025, 8, 5), "14:00"),
        ])
        assert chosen.job_id == "open"

    def test_empty(self):
        assert select_active_placement([]) is None
