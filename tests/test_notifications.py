"""Tests for the notification outbox, dispatcher and CLI commands.

Covers:
- Claim-before-send (a command is delivered at most once)
- Commands without a recipient
- Deferred dispatch and the `dispatch-notifications` flush
- Email context and rendering
- `seed-session-types` and `prune-ledger`
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from booking_sync.events import PaymentFailed
from booking_sync.models.booking import Booking
from booking_sync.models.notification import NotificationCommand
from booking_sync.models.processed_event import ProcessedEvent
from booking_sync.models.session_type import SessionType
from booking_sync.services import notification_service
from booking_sync.services.email_service import _build_message

from conftest import BUILDER_ID, CLIENT_ID, PAID_SESSION_TYPE_ID

START = datetime(2026, 11, 2, 15, 0, tzinfo=timezone.utc)


def _make_booking(db_session, ref="B_N", email="client@example.com", status=Booking.CONFIRMED):
    booking = Booking(
        id=str(uuid.uuid4()),
        correlation_key=ref,
        client_id=CLIENT_ID,
        builder_id=BUILDER_ID,
        session_type_id=PAID_SESSION_TYPE_ID,
        start_time=START,
        end_time=START + timedelta(hours=1),
        status=status,
        client_email=email,
        client_name="Casey Client",
    )
    db_session.add(booking)
    db_session.commit()
    return booking


def _make_command(db_session, booking, event_id, kind=NotificationCommand.SEND_BOOKING_CONFIRMATION):
    command = NotificationCommand(
        booking_id=booking.id,
        kind=kind,
        recipient=booking.client_email,
        context={"session_title": "AI app build session", "client_name": "Casey"},
        provider="stripe",
        external_event_id=event_id,
    )
    db_session.add(command)
    db_session.commit()
    return command


class TestDispatch:

    def test_dispatch_sends_and_claims(self, db_session, session_types, sent_emails):
        booking = _make_booking(db_session)
        command = _make_command(db_session, booking, "evt_1")

        assert notification_service.dispatch(command) is True

        sent_emails.assert_called_once()
        kwargs = sent_emails.call_args.kwargs
        assert kwargs["to"] == "client@example.com"
        assert kwargs["template"] == "emails/booking_confirmed.html"
        assert "AI app build session" in kwargs["subject"]
        assert kwargs["headers"] == {"X-Booking-Ref": "B_N"}
        assert db_session.get(NotificationCommand, command.id).dispatched_at is not None

    def test_second_dispatch_is_skipped(self, db_session, session_types, sent_emails):
        booking = _make_booking(db_session)
        command = _make_command(db_session, booking, "evt_2")

        assert notification_service.dispatch(command) is True
        assert notification_service.dispatch(command) is False
        assert sent_emails.call_count == 1

    def test_no_recipient_is_claimed_but_not_sent(self, db_session, session_types, sent_emails):
        booking = _make_booking(db_session, email=None)
        command = _make_command(db_session, booking, "evt_3")

        assert notification_service.dispatch(command) is False
        sent_emails.assert_not_called()
        assert db_session.get(NotificationCommand, command.id).dispatched_at is not None

    def test_dispatch_pending_sends_only_undispatched(self, db_session, session_types):
        booking = _make_booking(db_session)
        _make_command(db_session, booking, "evt_a")
        _make_command(db_session, booking, "evt_b", kind=NotificationCommand.SEND_BOOKING_CANCELLATION)
        done = _make_command(db_session, booking, "evt_c")
        done.dispatched_at = datetime.now(timezone.utc)
        db_session.commit()

        with patch("booking_sync.services.notification_service.send_email_sync") as mock_send:
            sent = notification_service.dispatch_pending()

        assert sent == 2
        assert mock_send.call_count == 2
        assert NotificationCommand.query.filter(NotificationCommand.dispatched_at.is_(None)).count() == 0

    def test_suppressed_send_counts_as_delivered(self, db_session, session_types):
        """MAIL_SUPPRESS_SEND (on in tests) renders the email but skips SMTP."""
        booking = _make_booking(db_session)
        _make_command(db_session, booking, "evt_s")

        with patch("booking_sync.services.email_service.smtplib.SMTP") as mock_smtp:
            assert notification_service.dispatch_pending() == 1
        mock_smtp.assert_not_called()

    def test_undelivered_sync_send_stays_claimed(self, app, monkeypatch, db_session, session_types):
        """SMTP not configured -> not counted as sent, and never retried."""
        monkeypatch.setitem(app.config, "MAIL_SUPPRESS_SEND", False)
        monkeypatch.setitem(app.config, "MAIL_USERNAME", None)
        booking = _make_booking(db_session)
        command = _make_command(db_session, booking, "evt_u")

        assert notification_service.dispatch_pending() == 0
        assert db_session.get(NotificationCommand, command.id).dispatched_at is not None
        assert notification_service.dispatch_pending() == 0


class TestContext:

    def test_build_context(self, app, db_session, session_types):
        booking = _make_booking(db_session, ref="B_CTX")
        event = PaymentFailed(
            provider="stripe",
            external_event_id="evt_f",
            correlation_key="B_CTX",
            raw_type="payment_intent.payment_failed",
            occurred_at=None,
            failure_message="Insufficient funds",
        )

        context = notification_service.build_context(booking, event)

        assert context["session_title"] == "AI app build session"
        assert context["client_name"] == "Casey Client"
        assert context["booking_url"] == "http://localhost:5000/bookings/B_CTX"
        assert context["failure_message"] == "Insufficient funds"
        assert "November 02, 2026" in context["start_time"]

    def test_unknown_session_type_title(self, db_session):
        booking = _make_booking(db_session, ref="B_NOTYPE")
        context = notification_service.build_context(booking)
        assert context["session_title"] == "your session"
        assert "failure_message" not in context

    def test_templates_render(self, app, db_session, session_types):
        booking = _make_booking(db_session, ref="B_TPL")
        context = notification_service.build_context(booking)

        for kind, (subject, template) in notification_service.TEMPLATES.items():
            msg = _build_message(app, "client@example.com", subject, template, context, None)
            html = msg.get_payload()[0].get_payload(decode=True).decode("utf-8")
            assert "AI app build session" in html
            assert msg["To"] == "client@example.com"
            assert msg["Message-ID"]


class TestDeferredDispatch:

    def test_deferred_commands_flushed_by_cli(self, app, monkeypatch, post_calendly,
                                              calendly_event, session_types, sent_emails):
        """Inline dispatch off -> command queued, then sent by the CLI flush."""
        monkeypatch.setitem(app.config, "NOTIFICATIONS_DISPATCH_INLINE", False)

        resp = post_calendly(calendly_event(booking_ref="B_DEF", session_type_id="st_free_intro"))
        assert resp.status_code == 200
        sent_emails.assert_not_called()

        command = NotificationCommand.query.first()
        assert command.dispatched_at is None

        runner = app.test_cli_runner()
        with patch("booking_sync.services.notification_service.send_email_sync") as mock_send:
            result = runner.invoke(args=["dispatch-notifications"])

        assert result.exit_code == 0
        assert "Dispatched 1 notification(s)." in result.output
        mock_send.assert_called_once()


class TestCli:

    def test_seed_session_types(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-session-types", "--builder-id", "b_seed"])

        assert result.exit_code == 0
        types = SessionType.query.filter_by(builder_id="b_seed").all()
        assert len(types) == 2
        assert sorted(t.requires_payment for t in types) == [False, True]

        # Second run creates nothing new
        runner.invoke(args=["seed-session-types", "--builder-id", "b_seed"])
        assert SessionType.query.filter_by(builder_id="b_seed").count() == 2

    def test_prune_ledger(self, app, db_session):
        db_session.add(ProcessedEvent(
            provider="stripe",
            external_event_id="evt_ancient",
            event_type="x",
            outcome="ignored_event",
            processed_at=datetime.now(timezone.utc) - timedelta(days=90),
        ))
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["prune-ledger", "--days", "30"])

        assert result.exit_code == 0
        assert "Pruned 1 ledger entries." in result.output
        assert ProcessedEvent.query.count() == 0

    def test_prune_ledger_rejects_short_window(self, app):
        result = app.test_cli_runner().invoke(args=["prune-ledger", "--days", "3"])
        assert result.exit_code != 0
