from unittest.mock import MagicMock, patch

import pytest
from fastapi import BackgroundTasks, HTTPException
from postgrest.exceptions import APIError

from app.services.notification_service import Delivery, FanoutPlan, NotificationService


def _make_admin_client_raising(error: Exception) -> MagicMock:
    client = MagicMock()
    chain = MagicMock()
    client.table.return_value = chain
    chain.insert.return_value = chain
    chain.execute.side_effect = error
    return client


def test_role_recipients_are_resolved_when_fanout_runs(fake_db):
    """
    收件人在 fan-out 执行时实时查询：计划创建后新增的编辑也会收到通知。
    """
    early = fake_db.add_user("editor")
    plan = FanoutPlan(paper_id=None, deliveries=(Delivery(role="editor", message="hello"),))
    late = fake_db.add_user("editor")
    fake_db.add_user("author")

    created = NotificationService().deliver(plan)

    assert created == 2
    assert {n["user_id"] for n in fake_db.rows("notifications")} == {early["id"], late["id"]}


def test_one_row_per_recipient_per_fanout_and_no_dedup_across_calls(fake_db):
    admin = fake_db.add_user("admin")
    plan = FanoutPlan(
        paper_id=None,
        deliveries=(
            Delivery(user_ids=(admin["id"],), message="as author"),
            Delivery(role="admin", message="as admin"),
        ),
    )
    svc = NotificationService()

    svc.deliver(plan)
    assert [n["message"] for n in fake_db.notifications_for(admin["id"])] == ["as author"]

    svc.deliver(plan)
    assert len(fake_db.notifications_for(admin["id"])) == 2


def test_reviewers_of_paper_are_resolved_from_reviews(fake_db):
    reviewer = fake_db.add_user("editor")
    fake_db.rows("reviews").append(fake_db.new_row("reviews", {"paper_id": "p1", "reviewer_id": reviewer["id"]}))

    NotificationService().deliver(
        FanoutPlan(paper_id="p1", deliveries=(Delivery(reviewers_of_paper=True, message="decided"),))
    )

    rows = fake_db.notifications_for(reviewer["id"])
    assert len(rows) == 1
    assert rows[0]["paper_id"] == "p1"


def test_schedule_with_background_tasks_defers_delivery(fake_db):
    fake_db.add_user("editor")
    tasks = BackgroundTasks()
    plan = FanoutPlan(paper_id=None, deliveries=(Delivery(role="editor", message="later"),))

    NotificationService().schedule(plan, tasks)

    assert fake_db.rows("notifications") == []
    assert len(tasks.tasks) == 1


def test_fanout_failures_are_swallowed(fake_db):
    fake_db.add_user("editor")
    fake_db.fail_tables.add("notifications")
    plan = FanoutPlan(paper_id=None, deliveries=(Delivery(role="editor", message="x"),))

    # 不抛异常，返回 0
    NotificationService().schedule(plan)
    assert NotificationService().deliver(plan) == 0


def test_create_notification_suppresses_fk_errors_for_orphan_users():
    api_error = APIError(
        {
            "code": "23503",
            "message": 'insert or update on table "notifications" violates foreign key constraint "notifications_user_id_fkey"',
            "details": None,
            "hint": None,
        }
    )

    with patch(
        "app.services.notification_service.supabase_admin",
        _make_admin_client_raising(api_error),
    ):
        res = NotificationService().create_notification(user_id="gone", message="m")
        assert res is None


def test_mark_read_only_for_recipient(fake_db):
    owner = fake_db.add_user("author")
    other = fake_db.add_user("author")
    svc = NotificationService()
    row = svc.create_direct(user_id=owner["id"], message="hi")

    with pytest.raises(HTTPException) as exc:
        svc.mark_read(user_id=other["id"], notification_id=row["id"])
    assert exc.value.status_code == 404
    assert fake_db.notifications_for(owner["id"])[0]["is_read"] is False

    updated = svc.mark_read(user_id=owner["id"], notification_id=row["id"])
    assert updated["is_read"] is True
    # 重复标记幂等
    assert svc.mark_read(user_id=owner["id"], notification_id=row["id"])["is_read"] is True


def test_list_for_user_is_newest_first_and_scoped(fake_db):
    me = fake_db.add_user("author")
    someone = fake_db.add_user("author")
    svc = NotificationService()
    svc.create_direct(user_id=me["id"], message="first")
    svc.create_direct(user_id=someone["id"], message="not mine")
    svc.create_direct(user_id=me["id"], message="second")

    rows = svc.list_for_user(user_id=me["id"])
    assert [r["message"] for r in rows] == ["second", "first"]


def test_create_direct_surfaces_persistence_failure(fake_db):
    fake_db.fail_tables.add("notifications")
    with pytest.raises(HTTPException) as exc:
        NotificationService().create_direct(user_id="u", message="m")
    assert exc.value.status_code == 500


def test_notify_writes_one_linked_row_per_recipient(fake_db):
    a = fake_db.add_user("author")
    b = fake_db.add_user("editor")

    NotificationService().notify([a["id"], b["id"]], "Paper updated", "p-9")

    rows = fake_db.rows("notifications")
    assert sorted(r["user_id"] for r in rows) == sorted([a["id"], b["id"]])
    assert {r["paper_id"] for r in rows} == {"p-9"}
    assert {r["message"] for r in rows} == {"Paper updated"}
    assert all(r["is_read"] is False for r in rows)


def test_notify_repeated_calls_are_not_deduplicated(fake_db):
    a = fake_db.add_user("author")
    svc = NotificationService()

    svc.notify([a["id"]], "ping")
    svc.notify([a["id"]], "ping")

    assert len(fake_db.notifications_for(a["id"])) == 2
    assert fake_db.notifications_for(a["id"])[0]["paper_id"] is None


def test_notify_with_background_tasks_runs_after_response(fake_db):
    a = fake_db.add_user("author")
    tasks = BackgroundTasks()

    NotificationService().notify([a["id"]], "later", "p-1", background_tasks=tasks)
    assert fake_db.rows("notifications") == []

    task = tasks.tasks[0]
    task.func(*task.args, **task.kwargs)
    assert [n["message"] for n in fake_db.notifications_for(a["id"])] == ["later"]
