"""
UI notification store and dispatcher.

Handles:
- Trigger templates for letter, subscription, quota, system and error events
- Ordered notification store with an incremental unread counter
- Best-effort JSON persistence of the most recent notifications
- Optional sync with the server notification endpoints
- Live notifications pushed over the websocket channel
"""
import json
import math
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from motivai.core import plans
from motivai.core.config import settings
from motivai.core.errors import MotivaiError
from motivai.schemas import (
    LiveNotificationMessage,
    Notification,
    NotificationAction,
    NotificationDraft,
    NotificationPage,
    SubscriptionEventRecord,
)
from motivai.services.live_channel import NotificationChannel
import logging

logger = logging.getLogger(__name__)

SUBSCRIPTION_HREF = "/dashboard/subscription"


class NotificationStore:
    """
    Most-recent-first list of notifications.

    ``unread_count`` is maintained incrementally by every mutation rather
    than recounted.
    """

    def __init__(
        self,
        storage_path: Optional[Union[str, Path]] = None,
        retention_limit: Optional[int] = None,
    ):
        path = storage_path if storage_path is not None else settings.notification_storage_path
        self.storage_path = Path(path) if path else None
        self.retention_limit = retention_limit or settings.notification_retention_limit

        self.notifications: List[Notification] = []
        self.unread_count = 0
        self.is_loading = False
        self.error: Optional[str] = None

        self._load()

    def _find(self, notification_id: str) -> Optional[Notification]:
        for notification in self.notifications:
            if notification.id == notification_id:
                return notification
        return None

    def add(self, draft: NotificationDraft) -> Notification:
        notification = Notification(
            **draft.model_dump(),
            id=str(uuid.uuid4()),
            read=False,
            created_at=datetime.utcnow(),
        )
        self.notifications.insert(0, notification)
        self.unread_count += 1
        self._persist()
        return notification

    def mark_read(self, notification_id: str) -> bool:
        notification = self._find(notification_id)
        if notification is None:
            return False

        if not notification.read:
            notification.read = True
            self.unread_count = max(0, self.unread_count - 1)
            self._persist()
        return True

    def mark_all_read(self) -> None:
        for notification in self.notifications:
            notification.read = True
        self.unread_count = 0
        self._persist()

    def delete(self, notification_id: str) -> bool:
        notification = self._find(notification_id)
        if notification is None:
            return False

        self.notifications.remove(notification)
        if not notification.read:
            self.unread_count = max(0, self.unread_count - 1)
        self._persist()
        return True

    def clear(self) -> None:
        self.notifications = []
        self.unread_count = 0
        self._persist()

    def replace(self, notifications: List[Notification], unread_count: Optional[int] = None) -> None:
        """Replace the contents with a server snapshot."""
        self.notifications = list(notifications)
        if unread_count is None:
            unread_count = sum(1 for n in self.notifications if not n.read)
        self.unread_count = unread_count
        self._persist()

    def _persist(self) -> None:
        if self.storage_path is None:
            return

        kept = self.notifications[: self.retention_limit]
        state = {
            "notifications": [n.model_dump(mode="json") for n in kept],
            "unread_count": sum(1 for n in kept if not n.read),
        }
        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            self.storage_path.write_text(json.dumps(state, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to persist notifications to {self.storage_path}: {str(e)}")

    def _load(self) -> None:
        if self.storage_path is None or not self.storage_path.exists():
            return

        try:
            state = json.loads(self.storage_path.read_text(encoding="utf-8"))
            self.notifications = [Notification.model_validate(n) for n in state.get("notifications", [])]
            self.unread_count = sum(1 for n in self.notifications if not n.read)
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Ignoring unreadable notification storage {self.storage_path}: {str(e)}")
            self.notifications = []
            self.unread_count = 0


class NotificationDispatcher:
    """
    Turns domain events into UI notifications.

    Explicit context object: ``init()`` loads server state and opens the live
    channel, ``dispose()`` closes it.
    """

    def __init__(self, store: Optional[NotificationStore] = None, api=None, channel=None):
        """
        Args:
            store: Notification store (a fresh in-memory one by default)
            api: Optional ApiClient for server sync
            channel: Optional NotificationChannel for live notifications
        """
        self.store = store or NotificationStore()
        self.api = api
        self.channel = channel

    @classmethod
    def for_session(cls, token: str, api=None, store: Optional[NotificationStore] = None) -> "NotificationDispatcher":
        """Dispatcher wired to the live channel of a signed-in user."""
        return cls(store=store, api=api, channel=NotificationChannel(token))

    async def init(self) -> None:
        if self.api is not None:
            await self.fetch()
        if self.channel is not None:
            self.channel.on_message = self.handle_live_message
            self.channel.connect()
        logger.info("Notification dispatcher initialized")

    async def dispose(self) -> None:
        if self.channel is not None:
            await self.channel.disconnect()
        logger.info("Notification dispatcher disposed")

    def _add(
        self,
        kind: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        action: Optional[Dict[str, str]] = None,
    ) -> Notification:
        draft = NotificationDraft(
            type=kind,
            title=title,
            message=message,
            data=data,
            action=NotificationAction(**action) if action else None,
        )
        return self.store.add(draft)

    # ===== Letters =====

    def letter_generated(self, letter_id: str, letter_title: str) -> Notification:
        return self._add(
            "success",
            "Lettre générée avec succès",
            f'Votre lettre "{letter_title}" a été créée par notre IA.',
            data={"letterId": letter_id, "letterTitle": letter_title},
            action={"label": "Voir la lettre", "href": f"/dashboard/letters/{letter_id}"},
        )

    def letter_updated(self, letter_id: str, letter_title: str) -> Notification:
        return self._add(
            "info",
            "Lettre mise à jour",
            f'Les modifications de "{letter_title}" ont été sauvegardées.',
            data={"letterId": letter_id, "letterTitle": letter_title},
            action={"label": "Voir la lettre", "href": f"/dashboard/letters/{letter_id}"},
        )

    def letter_deleted(self, letter_title: str) -> Notification:
        return self._add(
            "warning",
            "Lettre supprimée",
            f'La lettre "{letter_title}" a été supprimée définitivement.',
            data={"letterTitle": letter_title},
        )

    # ===== Subscription =====

    def subscription_upgraded(self, plan_name: str) -> Notification:
        return self._add(
            "success",
            "Abonnement activé",
            f"Félicitations ! Vous êtes maintenant abonné au plan {plan_name}.",
            data={"planName": plan_name},
            action={"label": "Voir les avantages", "href": SUBSCRIPTION_HREF},
        )

    def subscription_expiring(self, days_left: int) -> Notification:
        return self._add(
            "warning",
            "Abonnement bientôt expiré",
            f"Votre abonnement expire dans {days_left} jour{'s' if days_left > 1 else ''}.",
            data={"daysLeft": days_left},
            action={"label": "Renouveler", "href": SUBSCRIPTION_HREF},
        )

    def subscription_expired(self) -> Notification:
        return self._add(
            "error",
            "Abonnement expiré",
            "Votre abonnement a expiré. Renouvelez pour continuer à utiliser toutes les fonctionnalités.",
            action={"label": "Renouveler maintenant", "href": SUBSCRIPTION_HREF},
        )

    def subscription_cancelled(self) -> Notification:
        return self._add(
            "info",
            "Abonnement annulé",
            "Votre abonnement a été annulé. Vous gardez l'accès jusqu'à la fin de la période.",
            action={"label": "Voir les détails", "href": SUBSCRIPTION_HREF},
        )

    # ===== Quotas =====

    def quota_warning(self, used: int, total: int) -> Notification:
        # Half-up rounding
        percentage = int(math.floor(used / total * 100 + 0.5)) if total else 100
        return self._add(
            "warning",
            "Limite bientôt atteinte",
            f"Vous avez utilisé {used}/{total} lettres ({percentage}%). Passez au premium pour plus.",
            data={"used": used, "total": total, "percentage": percentage},
            action={"label": "Upgrader", "href": SUBSCRIPTION_HREF},
        )

    def quota_reached(self) -> Notification:
        return self._add(
            "error",
            "Limite atteinte",
            "Vous avez atteint votre limite mensuelle. Upgradez pour continuer.",
            action={"label": "Voir les plans", "href": SUBSCRIPTION_HREF},
        )

    def quota_reset(self) -> Notification:
        return self._add(
            "success",
            "Quota réinitialisé",
            "Vos quotas mensuels ont été renouvelés. Bon mois !",
            action={"label": "Créer une lettre", "href": "/dashboard/letters/new"},
        )

    # ===== System =====

    def system_maintenance(self, start_time: str, duration: str) -> Notification:
        return self._add(
            "warning",
            "Maintenance programmée",
            f"Maintenance prévue le {start_time} pendant {duration}. Service temporairement indisponible.",
            data={"startTime": start_time, "duration": duration},
        )

    def new_feature(self, feature_name: str, description: str) -> Notification:
        return self._add(
            "info",
            f"🎉 Nouvelle fonctionnalité : {feature_name}",
            description,
            data={"featureName": feature_name, "description": description},
            action={"label": "Découvrir", "href": "/dashboard"},
        )

    # ===== Errors =====

    def api_error(self, message: str) -> Notification:
        return self._add(
            "error",
            "Erreur technique",
            f"Une erreur est survenue : {message}",
            data={"message": message},
        )

    def payment_failed(self, amount: str, reason: str) -> Notification:
        return self._add(
            "error",
            "Échec du paiement",
            f"Le paiement de {amount} a échoué : {reason}",
            data={"amount": amount, "reason": reason},
            action={"label": "Réessayer", "href": SUBSCRIPTION_HREF},
        )

    def custom(self, draft: NotificationDraft) -> Notification:
        return self.store.add(draft)

    # ===== Event sources =====

    def handle_subscription_event(self, event: SubscriptionEventRecord) -> Optional[Notification]:
        """Subscription listener: render the notification matching a lifecycle event."""
        payload = event.payload

        if event.event_type in ("created", "trial_started"):
            return self.subscription_upgraded(plans.get_plan(payload.plan)["name"])
        if event.event_type == "updated" and payload.change_type == "upgrade":
            return self.subscription_upgraded(plans.get_plan(payload.to_plan)["name"])
        if event.event_type == "cancelled":
            return self.subscription_cancelled()
        if event.event_type == "expired":
            return self.subscription_expired()
        if event.event_type == "trial_ended" and not payload.converted:
            return self.subscription_expired()

        logger.debug(f"No notification for subscription event {event.event_type}")
        return None

    def handle_live_message(self, raw: Union[str, bytes, Dict[str, Any]]) -> Optional[Notification]:
        """Convert an inbound live message; malformed messages are logged and dropped."""
        try:
            data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            if not isinstance(data, dict) or data.get("type") != "notification":
                logger.debug(f"Ignoring live message: {data!r}")
                return None
            message = LiveNotificationMessage.model_validate(data)
        except (ValueError, ValidationError) as e:
            logger.error(f"Malformed live notification message: {str(e)}")
            return None

        return self.custom(message.notification)

    # ===== Server sync =====

    async def fetch(self) -> None:
        self.store.is_loading = True
        self.store.error = None
        try:
            data = await self.api.get_notifications()
        except MotivaiError as e:
            logger.error(f"Failed to fetch notifications: {e.message}")
            self.store.error = e.message or "Erreur lors du chargement des notifications"
            self.store.is_loading = False
            return

        if isinstance(data, list):
            page = NotificationPage(notifications=data)
        else:
            page = NotificationPage.model_validate(data or {})
        self.store.replace(page.notifications, page.unread_count)
        self.store.is_loading = False

    async def mark_read(self, notification_id: str) -> None:
        try:
            await self.api.mark_notification_read(notification_id)
        except MotivaiError as e:
            logger.error(f"Failed to mark notification {notification_id} read: {e.message}")
            self.store.error = "Erreur lors de la mise à jour"
            return
        self.store.mark_read(notification_id)

    async def mark_all_read(self) -> None:
        try:
            await self.api.mark_all_notifications_read()
        except MotivaiError as e:
            logger.error(f"Failed to mark all notifications read: {e.message}")
            self.store.error = "Erreur lors de la mise à jour"
            return
        self.store.mark_all_read()

    async def delete(self, notification_id: str) -> None:
        try:
            await self.api.delete_notification(notification_id)
        except MotivaiError as e:
            logger.error(f"Failed to delete notification {notification_id}: {e.message}")
            self.store.error = "Erreur lors de la suppression"
            return
        self.store.delete(notification_id)

    async def clear(self) -> None:
        try:
            await self.api.clear_notifications()
        except MotivaiError as e:
            logger.error(f"Failed to clear notifications: {e.message}")
            self.store.error = "Erreur lors de la suppression"
            return
        self.store.clear()
