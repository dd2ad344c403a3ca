"""
Tests for the post scheduling state machine.
"""
from datetime import datetime, timedelta

import pytest

from socialise.cache import TTLCache
from socialise.clock import as_utc
from socialise.errors import ConcurrentModificationError, InvalidPostStateError, PostNotFoundError
from socialise.models.job import JobState
from socialise.models.post import PostStatus
from socialise.queue import QueueManager, ScheduleOptions
from socialise.store import LinkResult

from .conftest import NOW, WORKSPACE_ID


def reload(db, store, post_id):
    db.expire_all()
    return store.find_post(post_id)


def set_links(db, store, post_id, post_status, link_statuses):
    """Force link outcomes, as if a publish job had run."""
    for account_id, status in link_statuses.items():
        store.update_platform_link_result(post_id, account_id, LinkResult(status=status, error_message=None))
    store.update_post_status(post_id, post_status)
    db.commit()


class TestSchedulePost:
    def test_schedule_draft_post(self, db, store, manager, queue, make_post, accounts):
        post_id = make_post()

        result = manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        assert result.success is True
        assert result.delay_ms == 3_600_000
        assert result.scheduled_at == NOW + timedelta(hours=1)
        assert result.job_id.startswith(f"post-{post_id}-")

        post = reload(db, store, post_id)
        assert post.status == PostStatus.SCHEDULED
        assert as_utc(post.scheduled_at) == NOW + timedelta(hours=1)
        assert {link.status for link in post.platform_links} == {"SCHEDULED"}

        jobs = queue.get_jobs(JobState.PENDING)
        assert len(jobs) == 1
        assert jobs[0].state == JobState.DELAYED
        assert jobs[0].name == f"publish-{post_id}"
        assert jobs[0].payload["postId"] == post_id
        assert jobs[0].payload["workspaceId"] == WORKSPACE_ID
        assert jobs[0].payload["platformIds"] == [accounts["facebook"], accounts["instagram"]]
        assert "isRetry" not in jobs[0].payload

    def test_past_datetime_has_zero_delay(self, manager, queue, make_post):
        post_id = make_post()

        result = manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW - timedelta(days=1)))

        assert result.delay_ms == 0
        assert queue.get_jobs([JobState.WAITING])[0].id == result.job_id

    def test_naive_datetime_uses_timezone(self, manager, make_post):
        post_id = make_post()

        # 10:00 in New York on 3 March 2025 is 15:00 UTC (EST)
        result = manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(
            datetime=datetime(2025, 3, 3, 10, 0),
            timezone="America/New_York",
        ))

        assert result.scheduled_at == NOW.replace(hour=15)
        assert result.delay_ms == 7 * 3600 * 1000

    def test_unknown_timezone_is_rejected(self, db, store, manager, queue, make_post):
        post_id = make_post()

        with pytest.raises(ValueError, match="Unknown timezone"):
            manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(
                datetime=datetime(2025, 3, 3, 9, 0),
                timezone="Mars/Olympus",
            ))

        assert queue.get_jobs(JobState.ALL) == []
        assert reload(db, store, post_id).status == PostStatus.DRAFT

    def test_targets_come_from_post_not_options(self, manager, queue, make_post, accounts):
        post_id = make_post(platforms=("facebook",))

        manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(
            datetime=NOW + timedelta(hours=1),
            platforms=["instagram", "tiktok"],
        ))

        assert queue.get_jobs(JobState.PENDING)[0].payload["platformIds"] == [accounts["facebook"]]

    @pytest.mark.parametrize("status", [PostStatus.SCHEDULED, PostStatus.PUBLISHING, PostStatus.PUBLISHED])
    def test_rejects_non_schedulable_status(self, db, store, manager, queue, make_post, status):
        post_id = make_post()
        store.update_post_status(post_id, status)
        db.commit()

        with pytest.raises(InvalidPostStateError, match=f"Cannot schedule post in {status.value} status"):
            manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        assert queue.get_jobs(JobState.ALL) == []
        post = reload(db, store, post_id)
        assert post.status == status
        assert post.scheduled_at is None

    def test_schedule_failed_post(self, db, store, manager, make_post):
        post_id = make_post()
        store.update_post_status(post_id, PostStatus.FAILED)
        db.commit()

        manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        assert reload(db, store, post_id).status == PostStatus.SCHEDULED

    def test_second_schedule_is_rejected(self, manager, queue, make_post):
        post_id = make_post()
        manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        with pytest.raises(InvalidPostStateError):
            manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=2)))

        assert len(queue.get_jobs(JobState.ALL)) == 1

    def test_lost_race_rolls_back_job(self, db, store, manager, queue, make_post, monkeypatch):
        post_id = make_post()
        monkeypatch.setattr(manager.store, "update_post_status", lambda *args, **kwargs: False)

        with pytest.raises(ConcurrentModificationError):
            manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        assert queue.get_jobs(JobState.ALL) == []
        assert reload(db, store, post_id).status == PostStatus.DRAFT

    def test_unknown_post(self, manager):
        with pytest.raises(PostNotFoundError):
            manager.schedule_post("missing", WORKSPACE_ID, ScheduleOptions(datetime=NOW))

    def test_post_of_other_workspace_not_found(self, manager, make_post):
        post_id = make_post()
        with pytest.raises(PostNotFoundError):
            manager.schedule_post(post_id, "other-workspace", ScheduleOptions(datetime=NOW))


class TestCancelScheduledPost:
    def test_cancel_removes_jobs_and_resets_post(self, db, store, manager, queue, make_post):
        post_id = make_post()
        manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        assert manager.cancel_scheduled_post(post_id) is True

        assert queue.get_jobs(JobState.ALL) == []
        post = reload(db, store, post_id)
        assert post.status == PostStatus.DRAFT
        assert post.scheduled_at is None
        assert {link.status for link in post.platform_links} == {"DRAFT"}

    def test_cancel_twice_is_safe(self, db, store, manager, make_post):
        post_id = make_post()
        manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        assert manager.cancel_scheduled_post(post_id) is True
        assert manager.cancel_scheduled_post(post_id) is True

        post = reload(db, store, post_id)
        assert post.status == PostStatus.DRAFT
        assert post.scheduled_at is None

    def test_cancel_without_job(self, db, store, manager, make_post):
        post_id = make_post()
        assert manager.cancel_scheduled_post(post_id) is True
        assert reload(db, store, post_id).status == PostStatus.DRAFT

    def test_cancel_removes_only_this_posts_jobs(self, manager, queue, make_post):
        first = make_post()
        second = make_post()
        manager.schedule_post(first, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))
        manager.schedule_post(second, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        manager.cancel_scheduled_post(first)

        remaining = queue.get_jobs(JobState.PENDING)
        assert [job.post_id for job in remaining] == [second]

    def test_cancel_flags_active_job(self, manager, queue, make_post, clock):
        post_id = make_post()
        result = manager.publish_now(post_id, WORKSPACE_ID)
        queue.claim_next("worker-1")

        manager.cancel_scheduled_post(post_id)

        assert queue.get_job(result.job_id).state == JobState.ACTIVE
        assert queue.is_cancel_requested(result.job_id) is True

    def test_cancel_keeps_published_links(self, db, store, manager, make_post, accounts):
        post_id = make_post()
        set_links(db, store, post_id, PostStatus.FAILED, {
            accounts["facebook"]: PostStatus.PUBLISHED,
            accounts["instagram"]: PostStatus.FAILED,
        })

        manager.cancel_scheduled_post(post_id)

        links = {link.social_account_id: link.status for link in reload(db, store, post_id).platform_links}
        assert links == {accounts["facebook"]: "PUBLISHED", accounts["instagram"]: "DRAFT"}


class TestReschedulePost:
    def test_reschedule_replaces_job(self, db, store, manager, queue, make_post, clock):
        post_id = make_post()
        first = manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        clock.advance(seconds=1)
        second = manager.reschedule_post(post_id, WORKSPACE_ID, NOW + timedelta(hours=3))

        jobs = queue.get_jobs(JobState.ALL)
        assert [job.id for job in jobs] == [second.job_id]
        assert second.job_id != first.job_id
        assert second.delay_ms == 3 * 3_600_000 - 1000
        assert as_utc(reload(db, store, post_id).scheduled_at) == NOW + timedelta(hours=3)


class TestPublishNow:
    def test_publish_now_enqueues_without_status_change(self, db, store, manager, queue, make_post, accounts):
        post_id = make_post()

        result = manager.publish_now(post_id, WORKSPACE_ID)

        assert result.job_id.startswith(f"post-now-{post_id}-")
        assert result.platform_ids == [accounts["facebook"], accounts["instagram"]]
        job = queue.get_job(result.job_id)
        assert job.state == JobState.WAITING
        assert job.name == f"publish-now-{post_id}"
        assert job.payload["kind"] == "publish-now"
        assert reload(db, store, post_id).status == PostStatus.DRAFT

    def test_repeated_publish_now_creates_distinct_jobs(self, manager, queue, make_post):
        post_id = make_post()

        first = manager.publish_now(post_id, WORKSPACE_ID)
        second = manager.publish_now(post_id, WORKSPACE_ID)

        assert first.job_id != second.job_id
        assert len(queue.get_jobs(JobState.ALL)) == 2

    def test_fully_published_post_is_rejected(self, db, store, manager, queue, make_post, accounts):
        post_id = make_post()
        set_links(db, store, post_id, PostStatus.PUBLISHED, {
            accounts["facebook"]: PostStatus.PUBLISHED,
            accounts["instagram"]: PostStatus.PUBLISHED,
        })

        with pytest.raises(InvalidPostStateError, match="already published"):
            manager.publish_now(post_id, WORKSPACE_ID)

        assert queue.get_jobs(JobState.ALL) == []

    def test_partly_published_post_is_queued(self, db, store, manager, queue, make_post, accounts):
        post_id = make_post()
        set_links(db, store, post_id, PostStatus.FAILED, {
            accounts["facebook"]: PostStatus.PUBLISHED,
            accounts["instagram"]: PostStatus.FAILED,
        })

        result = manager.publish_now(post_id, WORKSPACE_ID)

        assert queue.get_job(result.job_id).state == JobState.WAITING


class TestRetryFailedPost:
    def test_retry_only_failed_targets(self, db, store, manager, queue, make_post, accounts):
        post_id = make_post()
        set_links(db, store, post_id, PostStatus.FAILED, {
            accounts["facebook"]: PostStatus.PUBLISHED,
            accounts["instagram"]: PostStatus.FAILED,
        })

        result = manager.retry_failed_post(post_id, WORKSPACE_ID)

        assert result.platform_ids == [accounts["instagram"]]
        job = queue.get_job(result.job_id)
        assert result.job_id.startswith(f"post-retry-{post_id}-")
        assert job.name == f"retry-{post_id}"
        assert job.payload["platformIds"] == [accounts["instagram"]]
        assert job.payload["isRetry"] is True

        post = reload(db, store, post_id)
        assert post.status == PostStatus.SCHEDULED
        links = {link.social_account_id: link.status for link in post.platform_links}
        assert links == {accounts["facebook"]: "PUBLISHED", accounts["instagram"]: "SCHEDULED"}

    def test_retry_three_targets_one_failed(self, db, store, manager, queue, accounts):
        third = store.create_social_account(WORKSPACE_ID, "facebook", "Second Page", "page-2", "token")
        post = store.create_post(
            WORKSPACE_ID,
            caption="Three targets",
            social_account_ids=[accounts["facebook"], accounts["instagram"], third.id],
        )
        db.commit()
        set_links(db, store, post.id, PostStatus.FAILED, {
            accounts["facebook"]: PostStatus.PUBLISHED,
            accounts["instagram"]: PostStatus.PUBLISHED,
            third.id: PostStatus.FAILED,
        })

        result = manager.retry_failed_post(post.id, WORKSPACE_ID)

        assert queue.get_job(result.job_id).payload["platformIds"] == [third.id]

    @pytest.mark.parametrize("status", [PostStatus.DRAFT, PostStatus.SCHEDULED, PostStatus.PUBLISHING, PostStatus.PUBLISHED])
    def test_rejects_non_failed_post(self, db, store, manager, queue, make_post, status):
        post_id = make_post()
        store.update_post_status(post_id, status)
        db.commit()

        with pytest.raises(InvalidPostStateError, match="Post is not in FAILED status"):
            manager.retry_failed_post(post_id, WORKSPACE_ID)

        assert queue.get_jobs(JobState.ALL) == []


class TestProjections:
    def test_upcoming_posts(self, manager, make_post):
        later = make_post(caption="later")
        sooner = make_post(caption="sooner")
        make_post(caption="draft")
        manager.schedule_post(later, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(days=2)))
        manager.schedule_post(sooner, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=2)))

        upcoming = manager.get_upcoming_posts(WORKSPACE_ID)

        assert [p.id for p in upcoming] == [sooner, later]

    def test_post_history_pagination(self, manager, make_post):
        for i in range(3):
            make_post(caption=f"post {i}")

        posts, total = manager.get_post_history(WORKSPACE_ID, limit=2)

        assert total == 3
        assert len(posts) == 2

    def test_post_history_status_filter(self, manager, make_post):
        scheduled = make_post()
        make_post()
        manager.schedule_post(scheduled, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        posts, total = manager.get_post_history(WORKSPACE_ID, status=PostStatus.SCHEDULED)

        assert total == 1
        assert posts[0].id == scheduled

    def test_queue_stats_are_cached(self, db, queue, clock, make_post):
        timer = [0.0]
        manager = QueueManager(db, queue, clock=clock, cache=TTLCache(5, clock=lambda: timer[0]))
        first = make_post()
        manager.schedule_post(first, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))

        assert manager.get_queue_stats()["delayed"] == 1

        # Enqueued behind the manager's back: not visible until the entry expires
        queue.enqueue("publish-now-x", {"postId": "x", "workspaceId": WORKSPACE_ID, "platformIds": []})
        assert manager.get_queue_stats()["waiting"] == 0

        timer[0] = 6.0
        assert manager.get_queue_stats()["waiting"] == 1

    def test_scheduling_invalidates_cached_stats(self, db, queue, clock, make_post):
        manager = QueueManager(db, queue, clock=clock, cache=TTLCache(60))
        post_id = make_post()

        assert manager.get_queue_stats()["delayed"] == 0
        manager.schedule_post(post_id, WORKSPACE_ID, ScheduleOptions(datetime=NOW + timedelta(hours=1)))
        assert manager.get_queue_stats()["delayed"] == 1


class TestWeeklySchedule:
    def test_seven_posts_one_per_day(self, manager):
        suggestions = manager.generate_weekly_schedule(WORKSPACE_ID, 7, ["instagram"])

        assert len(suggestions) == 7
        assert [s.date.date() for s in suggestions] == [(NOW + timedelta(days=d)).date() for d in range(7)]
        assert all((s.date.hour, s.date.minute) == (9, 0) for s in suggestions)
        assert all(s.reason == "Morning commute engagement" for s in suggestions)
        assert all(s.platforms == ["instagram"] for s in suggestions)

    def test_slots_cycle_through_optimal_times(self, manager):
        suggestions = manager.generate_weekly_schedule(WORKSPACE_ID, 14, ["facebook"])

        assert len(suggestions) == 14
        assert [(s.date.hour, s.date.minute) for s in suggestions[:2]] == [(9, 0), (12, 0)]
        assert suggestions[1].reason == "Lunch break browsing"

    def test_three_per_day_uses_evening_slot(self, manager):
        suggestions = manager.generate_weekly_schedule(WORKSPACE_ID, 21, [])

        assert (suggestions[2].date.hour, suggestions[2].date.minute) == (19, 30)
        assert suggestions[2].reason == "Peak evening engagement"

    def test_stops_at_requested_count(self, manager):
        suggestions = manager.generate_weekly_schedule(WORKSPACE_ID, 9, ["facebook"])
        assert len(suggestions) == 9

    def test_zero_posts(self, manager):
        assert manager.generate_weekly_schedule(WORKSPACE_ID, 0, ["facebook"]) == []

    def test_slots_are_wall_clock_times_in_timezone(self, manager):
        # 08:00 UTC on Monday is 03:00 in New York, so Monday's 09:00 slot is still ahead
        suggestions = manager.generate_weekly_schedule(WORKSPACE_ID, 7, ["facebook"], timezone="America/New_York")

        first = suggestions[0].date
        assert first.isoformat() == "2025-03-03T09:00:00-05:00"
        assert as_utc(first) == NOW.replace(hour=14)
        # DST starts on 9 March; the 09:00 slot keeps its wall-clock time
        assert suggestions[6].date.isoformat() == "2025-03-09T09:00:00-04:00"

    def test_unknown_timezone_for_weekly_schedule(self, manager):
        with pytest.raises(ValueError, match="Unknown timezone"):
            manager.generate_weekly_schedule(WORKSPACE_ID, 7, ["facebook"], timezone="Mars/Olympus")
