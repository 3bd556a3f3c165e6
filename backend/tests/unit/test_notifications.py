"""
Unit tests for the notification store and dispatcher.
"""
import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from motivai.core.errors import NetworkUnavailable, ServerError
from motivai.schemas import (
    CancelledPayload,
    CreatedPayload,
    ExpiredPayload,
    NotificationDraft,
    RenewedPayload,
    SubscriptionEventRecord,
    TrialEndedPayload,
    UpdatedPayload,
)
from motivai.services.notifications import NotificationDispatcher, NotificationStore


@pytest.fixture
def store():
    return NotificationStore(storage_path=None)


@pytest.fixture
def dispatcher(store):
    return NotificationDispatcher(store=store)


def _event(payload):
    return SubscriptionEventRecord(
        id="evt-1",
        subscription_id="sub-1",
        user_id="uid_alice",
        event_type=payload.event_type,
        payload=payload,
        source="system",
        created_at=datetime(2025, 3, 10),
    )


class TestTriggers:
    """Trigger templates."""

    def test_quota_warning_contains_percentage(self, dispatcher):
        notification = dispatcher.quota_warning(8, 10)

        assert notification.type == "warning"
        assert notification.title == "Limite bientôt atteinte"
        assert "80%" in notification.message
        assert notification.message == "Vous avez utilisé 8/10 lettres (80%). Passez au premium pour plus."
        assert notification.data == {"used": 8, "total": 10, "percentage": 80}

    def test_quota_warning_rounds_half_up(self, dispatcher):
        assert dispatcher.quota_warning(1, 8).data["percentage"] == 13
        assert dispatcher.quota_warning(2, 3).data["percentage"] == 67

    def test_letter_generated(self, dispatcher):
        notification = dispatcher.letter_generated("l1", "Développeur Python")

        assert notification.type == "success"
        assert notification.message == 'Votre lettre "Développeur Python" a été créée par notre IA.'
        assert notification.action.label == "Voir la lettre"
        assert notification.action.href == "/dashboard/letters/l1"
        assert notification.data == {"letterId": "l1", "letterTitle": "Développeur Python"}

    def test_letter_deleted_has_no_action(self, dispatcher):
        notification = dispatcher.letter_deleted("Ancienne lettre")
        assert notification.type == "warning"
        assert notification.action is None

    @pytest.mark.parametrize(
        "days,expected",
        [(1, "Votre abonnement expire dans 1 jour."), (3, "Votre abonnement expire dans 3 jours.")],
    )
    def test_subscription_expiring_pluralizes(self, dispatcher, days, expected):
        assert dispatcher.subscription_expiring(days).message == expected

    def test_subscription_upgraded(self, dispatcher):
        notification = dispatcher.subscription_upgraded("Professionnel")
        assert notification.message == "Félicitations ! Vous êtes maintenant abonné au plan Professionnel."
        assert notification.action.href == "/dashboard/subscription"

    def test_quota_reset_points_to_new_letter(self, dispatcher):
        assert dispatcher.quota_reset().action.href == "/dashboard/letters/new"

    def test_new_feature_uses_description_as_message(self, dispatcher):
        notification = dispatcher.new_feature("Export DOCX", "Exportez vos lettres en Word.")
        assert notification.title == "🎉 Nouvelle fonctionnalité : Export DOCX"
        assert notification.message == "Exportez vos lettres en Word."

    def test_errors(self, dispatcher):
        assert dispatcher.api_error("timeout").message == "Une erreur est survenue : timeout"
        failed = dispatcher.payment_failed("9,99 €", "carte refusée")
        assert failed.title == "Échec du paiement"
        assert failed.message == "Le paiement de 9,99 € a échoué : carte refusée"

    def test_system_maintenance(self, dispatcher):
        notification = dispatcher.system_maintenance("12/04 à 02:00", "2 heures")
        assert notification.message == (
            "Maintenance prévue le 12/04 à 02:00 pendant 2 heures. Service temporairement indisponible."
        )

    def test_custom(self, dispatcher, store):
        notification = dispatcher.custom(NotificationDraft(type="info", title="Hello", message="World"))
        assert store.notifications[0] is notification


class TestStore:
    """Ordering and the incremental unread counter."""

    def test_most_recent_first(self, dispatcher, store):
        first = dispatcher.quota_reached()
        second = dispatcher.quota_reset()

        assert store.notifications == [second, first]
        assert store.unread_count == 2

    def test_mark_read_decrements_once(self, dispatcher, store):
        notification = dispatcher.quota_reached()
        dispatcher.quota_reset()

        assert store.mark_read(notification.id) is True
        assert store.mark_read(notification.id) is True
        assert store.unread_count == 1

    def test_mark_all_read(self, dispatcher, store):
        dispatcher.quota_reached()
        dispatcher.quota_reset()

        store.mark_all_read()

        assert store.unread_count == 0
        assert all(n.read for n in store.notifications)

    def test_delete_unread_and_read(self, dispatcher, store):
        unread = dispatcher.quota_reached()
        read = dispatcher.quota_reset()
        store.mark_read(read.id)

        store.delete(read.id)
        assert store.unread_count == 1
        store.delete(unread.id)
        assert store.unread_count == 0
        assert store.notifications == []

    def test_unknown_ids_are_ignored(self, store):
        assert store.mark_read("nope") is False
        assert store.delete("nope") is False

    def test_clear(self, dispatcher, store):
        dispatcher.quota_reached()
        store.clear()
        assert store.notifications == []
        assert store.unread_count == 0


class TestPersistence:
    """Best-effort persistence of the most recent notifications."""

    def test_only_fifty_most_recent_are_persisted(self, tmp_path):
        path = tmp_path / "notifications.json"
        store = NotificationStore(storage_path=path, retention_limit=50)
        dispatcher = NotificationDispatcher(store=store)

        for i in range(60):
            dispatcher.api_error(f"erreur {i}")

        state = json.loads(path.read_text(encoding="utf-8"))
        assert len(state["notifications"]) == 50
        assert state["notifications"][0]["message"] == "Une erreur est survenue : erreur 59"
        assert state["unread_count"] == 50
        assert len(store.notifications) == 60
        assert store.unread_count == 60

    def test_reloaded_counter_matches_kept_notifications(self, tmp_path):
        path = tmp_path / "notifications.json"
        dispatcher = NotificationDispatcher(store=NotificationStore(storage_path=path, retention_limit=50))
        for i in range(60):
            dispatcher.api_error(f"erreur {i}")

        restored = NotificationStore(storage_path=path, retention_limit=50)
        assert len(restored.notifications) == 50
        assert restored.unread_count == 50

        for notification in list(restored.notifications):
            restored.delete(notification.id)

        assert restored.notifications == []
        assert restored.unread_count == 0

    def test_state_is_restored(self, tmp_path):
        path = tmp_path / "notifications.json"
        dispatcher = NotificationDispatcher(store=NotificationStore(storage_path=path))
        kept = dispatcher.letter_generated("l1", "Titre")

        restored = NotificationStore(storage_path=path)

        assert [n.id for n in restored.notifications] == [kept.id]
        assert restored.unread_count == 1

    def test_corrupt_storage_starts_empty(self, tmp_path):
        path = tmp_path / "notifications.json"
        path.write_text("{not json", encoding="utf-8")

        store = NotificationStore(storage_path=path)

        assert store.notifications == []
        assert store.unread_count == 0

    def test_unwritable_storage_does_not_raise(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = NotificationStore(storage_path=blocker / "notifications.json")

        NotificationDispatcher(store=store).quota_reached()

        assert store.unread_count == 1


class TestLiveMessages:
    """Inbound live channel messages."""

    def test_live_message_has_same_shape_as_local_trigger(self, dispatcher):
        local = dispatcher.quota_reached()
        raw = json.dumps(
            {
                "type": "notification",
                "notification": {
                    "type": local.type,
                    "title": local.title,
                    "message": local.message,
                    "action": local.action.model_dump(),
                },
            }
        )

        live = dispatcher.handle_live_message(raw)

        keys = {"type", "title", "message", "data", "action"}
        assert live.model_dump(include=keys) == local.model_dump(include=keys)
        assert live.read is False
        assert dispatcher.store.unread_count == 2

    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            json.dumps({"type": "notification", "notification": {"title": "missing type"}}),
            json.dumps(["not", "an", "object"]),
        ],
    )
    def test_malformed_messages_are_ignored(self, dispatcher, raw):
        assert dispatcher.handle_live_message(raw) is None
        assert dispatcher.store.notifications == []

    def test_other_message_types_are_ignored(self, dispatcher):
        assert dispatcher.handle_live_message({"type": "ping"}) is None
        assert dispatcher.store.unread_count == 0


class TestSubscriptionEvents:
    """Lifecycle events rendered as notifications."""

    def test_created_renders_upgrade_with_plan_name(self, dispatcher):
        notification = dispatcher.handle_subscription_event(
            _event(CreatedPayload(plan="pro", status="active", interval="monthly"))
        )
        assert notification.title == "Abonnement activé"
        assert notification.data == {"planName": "Professionnel"}

    def test_upgrade(self, dispatcher):
        notification = dispatcher.handle_subscription_event(
            _event(UpdatedPayload(change_type="upgrade", from_plan="basic", to_plan="premium"))
        )
        assert notification.data == {"planName": "Premium"}

    def test_downgrade_is_silent(self, dispatcher):
        assert dispatcher.handle_subscription_event(
            _event(UpdatedPayload(change_type="downgrade", from_plan="pro", to_plan="basic"))
        ) is None

    def test_cancelled(self, dispatcher):
        notification = dispatcher.handle_subscription_event(_event(CancelledPayload(at_period_end=True)))
        assert notification.title == "Abonnement annulé"

    def test_expired_and_unconverted_trial(self, dispatcher):
        assert dispatcher.handle_subscription_event(_event(ExpiredPayload(reason="end_date_passed"))).type == "error"
        assert dispatcher.handle_subscription_event(_event(TrialEndedPayload(converted=False))).title == (
            "Abonnement expiré"
        )
        assert dispatcher.handle_subscription_event(_event(TrialEndedPayload(converted=True))) is None

    def test_renewed_is_silent(self, dispatcher):
        assert dispatcher.handle_subscription_event(_event(RenewedPayload())) is None


class TestServerSync:
    """Store mutations mirrored to the notification API."""

    @pytest.fixture
    def api(self):
        return MagicMock(
            get_notifications=AsyncMock(),
            mark_notification_read=AsyncMock(),
            mark_all_notifications_read=AsyncMock(),
            delete_notification=AsyncMock(),
            clear_notifications=AsyncMock(),
        )

    @pytest.mark.asyncio
    async def test_fetch_replaces_store(self, store, api):
        api.get_notifications.return_value = {
            "notifications": [
                {
                    "id": "n1",
                    "type": "info",
                    "title": "Bienvenue",
                    "message": "Bonjour",
                    "read": False,
                    "createdAt": "2025-03-10T12:00:00",
                },
                {"id": "n2", "type": "success", "title": "OK", "message": "OK", "read": True},
            ],
            "unreadCount": 1,
        }
        dispatcher = NotificationDispatcher(store=store, api=api)

        await dispatcher.fetch()

        assert [n.id for n in store.notifications] == ["n1", "n2"]
        assert store.notifications[0].created_at == datetime(2025, 3, 10, 12, 0)
        assert store.unread_count == 1
        assert store.is_loading is False
        assert store.error is None

    @pytest.mark.asyncio
    async def test_fetch_failure_sets_error(self, store, api):
        api.get_notifications.side_effect = NetworkUnavailable()
        dispatcher = NotificationDispatcher(store=store, api=api)

        await dispatcher.fetch()

        assert store.error == "Erreur de connexion. Vérifiez votre connexion internet."
        assert store.is_loading is False

    @pytest.mark.asyncio
    async def test_mark_read_updates_store_after_api(self, store, api):
        dispatcher = NotificationDispatcher(store=store, api=api)
        notification = dispatcher.quota_reached()

        await dispatcher.mark_read(notification.id)

        api.mark_notification_read.assert_awaited_once_with(notification.id)
        assert store.unread_count == 0

    @pytest.mark.asyncio
    async def test_api_failure_leaves_store_unchanged(self, store, api):
        api.delete_notification.side_effect = ServerError("Introuvable", 404)
        dispatcher = NotificationDispatcher(store=store, api=api)
        notification = dispatcher.quota_reached()

        await dispatcher.delete(notification.id)

        assert store.notifications == [notification]
        assert store.error == "Erreur lors de la suppression"

    @pytest.mark.asyncio
    async def test_mark_all_and_clear(self, store, api):
        dispatcher = NotificationDispatcher(store=store, api=api)
        dispatcher.quota_reached()

        await dispatcher.mark_all_read()
        assert store.unread_count == 0
        await dispatcher.clear()
        assert store.notifications == []


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_init_connects_channel_and_dispose_disconnects(self, store):
        channel = MagicMock(disconnect=AsyncMock())
        dispatcher = NotificationDispatcher(store=store, channel=channel)

        await dispatcher.init()
        assert channel.on_message == dispatcher.handle_live_message
        channel.connect.assert_called_once()

        await dispatcher.dispose()
        channel.disconnect.assert_awaited_once()

    def test_for_session_builds_live_channel(self, store):
        dispatcher = NotificationDispatcher.for_session("tok", store=store)

        assert dispatcher.channel.token == "tok"
        assert dispatcher.channel.url.endswith("/notifications?token=tok")
        assert dispatcher.channel.is_running is False
