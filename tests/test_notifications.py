from datetime import timedelta

from conftest import RecordingSender, order_payload, run
from database import utcnow
from notifications import (
    FAILED,
    PENDING,
    SENT,
    NotificationWorker,
    backoff_delay,
    build_order_email,
    build_whatsapp_text,
    dispatch_due,
    enqueue_order_notifications,
)


def queued(db):
    return run(db["notifications"].find({}).to_list(None))


def test_enqueue_creates_one_task_per_channel(db):
    count = run(enqueue_order_notifications(db, {"_id": "x", **order_payload()}, ["email", "whatsapp"]))

    tasks = queued(db)
    assert count == 2
    assert {t["kind"] for t in tasks} == {"email", "whatsapp"}
    assert all(t["status"] == PENDING and t["attempts"] == 0 for t in tasks)
    assert all("_id" not in t["order"] for t in tasks)


def test_enqueue_with_no_channels_is_a_no_op(db):
    assert run(enqueue_order_notifications(db, order_payload(), [])) == 0
    assert queued(db) == []


def test_dispatch_marks_sent(db):
    sender = RecordingSender()
    run(enqueue_order_notifications(db, order_payload(), ["email"]))

    sent = run(dispatch_due(db, {"email": sender}))

    assert sent == 1
    assert sender.orders[0]["orderId"] == "ORD-1001"
    assert queued(db)[0]["status"] == SENT


def test_failed_delivery_backs_off_then_gives_up(db):
    sender = RecordingSender()
    sender.fail = True
    run(enqueue_order_notifications(db, order_payload(), ["email"]))
    now = utcnow()

    run(dispatch_due(db, {"email": sender}, now=now, max_attempts=2))
    task = queued(db)[0]
    assert task["status"] == PENDING
    assert task["attempts"] == 1

    # not due yet
    assert run(dispatch_due(db, {"email": sender}, now=now, max_attempts=2)) == 0
    assert queued(db)[0]["attempts"] == 1

    later = now + backoff_delay(1) + timedelta(seconds=1)
    run(dispatch_due(db, {"email": sender}, now=later, max_attempts=2))
    task = queued(db)[0]
    assert task["status"] == FAILED
    assert task["attempts"] == 2


def test_task_without_sender_fails_immediately(db):
    run(enqueue_order_notifications(db, order_payload(), ["whatsapp"]))

    run(dispatch_due(db, {}))

    task = queued(db)[0]
    assert task["status"] == FAILED
    assert "no sender configured" in task["lastError"]


def test_backoff_doubles_per_attempt():
    assert backoff_delay(1, 30) == timedelta(seconds=30)
    assert backoff_delay(2, 30) == timedelta(seconds=60)
    assert backoff_delay(4, 30) == timedelta(seconds=240)


def test_worker_requeues_interrupted_tasks(db):
    run(enqueue_order_notifications(db, order_payload(), ["email"]))
    run(db["notifications"].update_many({}, {"$set": {"status": "sending"}}))

    run(NotificationWorker(db, {}, poll_seconds=60).requeue_stale())

    assert queued(db)[0]["status"] == PENDING


def test_order_email_escapes_customer_input():
    msg = build_order_email(order_payload(name="<script>x</script>"))

    html_part = msg.get_body(preferencelist=("html",)).get_content()
    assert "&lt;script&gt;" in html_part
    assert "ORD-1001" in msg["Subject"]
    assert "Stethoscope" in html_part


def test_whatsapp_text_summarises_order():
    text = build_whatsapp_text(order_payload())
    assert "Order ID: ORD-1001" in text
    assert "Items: 2" in text
