from __future__ import annotations

"""Per-user conversation router.

Every inbound event is routed here. State changes go through SessionStore and
commit before any message is sent; transport and backend calls are made
outside the store's locks.
"""

import logging
import time
import uuid
from typing import Callable, Dict, Optional, Sequence, Union

from . import messages
from .admin import AdminService
from .backend import ChatService
from .catalog_store import CatalogStore
from .config import Settings
from .errors import (
    AdminAuthError,
    BackendError,
    BackendQuotaExceeded,
    IngestionError,
    SessionNotFound,
    TransportSendFailure,
)
from .flows import (
    ORDER_ASK_DELIVERY,
    ORDER_ASK_LOCATION,
    ORDER_ASK_NAME,
    ORDER_ASK_PHONE,
    DeliveryOutcome,
    advance_config,
    advance_order,
    choose_delivery,
    confirm_delivery,
    take_change,
)
from .history import HistoryStore, build_conversation_digest, build_recent_digest, collect_users
from .rules import is_config_request, is_likely_config_response, should_offer_purchase
from .session_store import SessionStore
from .sessions import (
    AdminApprovalRequest,
    AdminMessageSession,
    AdminPasswordSession,
    ChangeRequestSession,
    ChangeTarget,
    ConfigSpec,
    ConfigWizardSession,
    FeedbackCapture,
    FlowKind,
    GroupThreadLink,
    OrderSession,
    PendingApproval,
)
from .transport import ButtonEvent, Choice, FileEvent, TextEvent, Transport
from .utils import mask_contact_value

logger = logging.getLogger("shopbot.orchestrator")

Event = Union[TextEvent, ButtonEvent, FileEvent]

PRUNE_INTERVAL_SEC = 60.0
ADMIN_USER_LIST_LIMIT = 200
HISTORY_COMMAND_LIMIT = 10
APPROVE_YES_PREFIX = "adm_approve_yes:"
APPROVE_NO_PREFIX = "adm_approve_no:"
ADMIN_USER_PREFIX = "admin_msgs_user:"
CHANGE_PREFIX = "cfg_change_"


class Orchestrator:
    """Routes text, button and file events to flows, commands and the default AI path."""

    def __init__(
        self,
        settings: Settings,
        transport: Transport,
        sessions: SessionStore,
        catalog: CatalogStore,
        chat: ChatService,
        admin: AdminService,
        history: HistoryStore,
    ) -> None:
        """Purpose: Wire the router to its collaborators.
        Inputs/Outputs: Inputs are settings, transport, stores and services; no return.
        Side Effects / State: Builds the command and button dispatch tables.
        Dependencies: SessionStore, ChatService, AdminService, CatalogStore, HistoryStore.
        Failure Modes: None at init.
        If Removed: Events have nowhere to go.
        Testing Notes: Build with OutboxTransport and a scripted backend; assert on drained messages.
        """
        # Channels are optional; empty ids disable forwarding.
        self._settings = settings
        self._transport = transport
        self._sessions = sessions
        self._catalog = catalog
        self._chat = chat
        self._admin = admin
        self._history = history
        self._staff_chat = settings.staff_chat_id
        self._orders_chat = settings.orders_chat_id
        self._last_prune = time.monotonic()
        self._commands: Dict[str, Callable[[TextEvent], None]] = {
            "start": self._cmd_start,
            "help": self._cmd_help,
            "clear": self._cmd_clear,
            "history": self._cmd_history,
            "admin": self._cmd_admin,
            "logout": self._cmd_logout,
            "catalog": self._cmd_catalog,
            "products": self._cmd_products,
            "configuratsiya": self._cmd_config,
            "config": self._cmd_config,
            "clean": self._cmd_clean,
            "shop": self._cmd_shop,
        }
        self._buttons: Dict[str, Callable[[ButtonEvent], None]] = {
            "cfg_fb_yes": self._btn_feedback_yes,
            "cfg_fb_no": self._btn_feedback_no,
            "cfg_fb_change": self._btn_feedback_change,
            "order_yes": self._btn_order_yes,
            "order_no": self._btn_order_no,
            "buy_yes": self._btn_buy_yes,
            "buy_no": self._btn_buy_no,
            "shop_yes": self._btn_shop_yes,
            "shop_no": self._btn_shop_no,
            "shop_more": self._btn_shop_more,
            "msg_admin_start": self._btn_message_admin,
            "delivery_pickup": lambda event: self._delivery_choice(event, courier=False),
            "delivery_courier": lambda event: self._delivery_choice(event, courier=True),
            "delivery_confirm_yes": lambda event: self._delivery_confirm(event, agree=True),
            "delivery_confirm_no": lambda event: self._delivery_confirm(event, agree=False),
            "admin_msgs": self._btn_admin_messages,
        }

    # Transport helpers

    def _send(self, chat_id: str, text: str, choices: Optional[Sequence[Choice]] = None) -> Optional[str]:
        # Sends are best-effort; committed state is never rolled back on failure.
        try:
            return self._transport.send_text(chat_id, text, choices)
        except TransportSendFailure:
            logger.warning("send failed chat=%s", chat_id, exc_info=True)
            return None

    def _call(self, action: Callable[[], object], chat_id: str) -> None:
        try:
            action()
        except TransportSendFailure:
            logger.warning("transport call failed chat=%s", chat_id, exc_info=True)

    def _backend_failure_text(self, exc: BackendError) -> str:
        if isinstance(exc, BackendQuotaExceeded):
            return messages.BACKEND_QUOTA
        return messages.BACKEND_FAILED

    # Entry points

    def handle(self, event: Event) -> None:
        if isinstance(event, TextEvent):
            self.handle_text(event)
        elif isinstance(event, ButtonEvent):
            self.handle_button(event)
        elif isinstance(event, FileEvent):
            self.handle_file(event)
        else:
            raise TypeError(f"unsupported event type: {type(event).__name__}")

    def _maybe_prune(self) -> None:
        now = time.monotonic()
        if now - self._last_prune >= PRUNE_INTERVAL_SEC:
            self._last_prune = now
            self._sessions.prune_idle()

    def handle_text(self, event: TextEvent) -> None:
        """Purpose: Route one inbound text (or contact/location) event.
        Inputs/Outputs: Input is a TextEvent; replies go out through the transport.
        Side Effects / State: May advance, start or end flows; may call the backend.
        Dependencies: SessionStore precedence, flow steps, ChatService.
        Failure Modes: SessionNotFound from a flow that just ended tells the user to restart.
        If Removed: No conversation works.
        Testing Notes: Order of checks: staff chat, password capture, commands, then flows.
        """
        # Staff channel, then password capture, then commands, then the flow that owns the user.
        self._maybe_prune()
        if self._staff_chat and event.chat_id == self._staff_chat:
            self._handle_staff_message(event)
            return
        try:
            if self._sessions.get_session(event.user_id, AdminPasswordSession) is not None:
                self._handle_password(event)
                return
            text = event.text or ""
            if text.startswith("/"):
                self._handle_command(event)
                return
            if not text and event.contact is None and event.location is None:
                return
            self._route_text(event)
        except SessionNotFound as exc:
            logger.info("user=%s stale flow=%s", event.user_id, exc.kind)
            self._send(event.chat_id, messages.FLOW_EXPIRED)

    def _route_text(self, event: TextEvent) -> None:
        active, shop_mode = self._sessions.routing_rank(event.user_id)
        if shop_mode:
            self._handle_shop_query(event)
            return
        if active is not None:
            handlers = {
                FlowKind.ADMIN_MESSAGE: self._handle_admin_message,
                FlowKind.CONFIG_WIZARD: self._handle_config_answer,
                FlowKind.ORDER: self._handle_order_input,
                FlowKind.CHANGE_REQUEST: self._handle_change_request,
            }
            handler = handlers.get(active.kind)
            if handler is not None:
                handler(event)
                return
        self._handle_default(event)

    # Commands

    def _handle_command(self, event: TextEvent) -> None:
        name = event.text.strip()[1:].split(maxsplit=1)[0] if event.text.strip()[1:] else ""
        name = name.split("@", 1)[0].lower()
        handler = self._commands.get(name)
        logger.info("user=%s command=%s", event.user_id, name or "-")
        if handler is None:
            self._send(event.chat_id, messages.UNKNOWN_COMMAND)
            return
        handler(event)

    def _cmd_start(self, event: TextEvent) -> None:
        self._send(event.chat_id, messages.WELCOME)

    def _cmd_help(self, event: TextEvent) -> None:
        self._send(event.chat_id, messages.HELP)

    def _cmd_clear(self, event: TextEvent) -> None:
        self._history.clear(event.user_id)
        self._send(event.chat_id, messages.HISTORY_CLEARED)

    def _cmd_history(self, event: TextEvent) -> None:
        records = self._history.recent(event.user_id, HISTORY_COMMAND_LIMIT)
        if not records:
            self._send(event.chat_id, messages.HISTORY_EMPTY)
            return
        self._send(event.chat_id, messages.history_text([(record.text, record.response) for record in records]))

    def _cmd_admin(self, event: TextEvent) -> None:
        if self._admin.is_admin(event.user_id):
            self._send(event.chat_id, messages.ADMIN_ALREADY)
            return
        self._sessions.start(event.user_id, AdminPasswordSession())
        self._send(event.chat_id, messages.ADMIN_PASSWORD_PROMPT)

    def _handle_password(self, event: TextEvent) -> None:
        self._sessions.end(event.user_id, FlowKind.ADMIN_PASSWORD)
        if not self._admin.login(event.user_id, event.text or ""):
            self._send(event.chat_id, messages.ADMIN_WRONG_PASSWORD)
            return
        self._send(event.chat_id, messages.ADMIN_WELCOME, messages.ADMIN_PANEL_CHOICES)

    def _cmd_logout(self, event: TextEvent) -> None:
        if self._admin.logout(event.user_id):
            self._send(event.chat_id, messages.ADMIN_LOGGED_OUT)
        else:
            self._send(event.chat_id, messages.ADMIN_NOT_LOGGED_IN)

    def _cmd_catalog(self, event: TextEvent) -> None:
        if not self._admin.is_admin(event.user_id):
            self._send(event.chat_id, messages.ADMIN_ONLY)
            return
        info = self._admin.catalog_info()
        if not info.total:
            self._send(event.chat_id, messages.CATALOG_EMPTY)
            return
        updated = time.strftime("%Y-%m-%d %H:%M", time.localtime(info.updated_at)) if info.updated_at else None
        self._send(
            event.chat_id,
            messages.catalog_info_text(info.source, updated, info.total, sorted(info.categories.items())),
        )

    def _cmd_products(self, event: TextEvent) -> None:
        products = self._catalog.all()
        if not products:
            self._send(event.chat_id, messages.PRODUCTS_NOT_FOUND)
            return
        text = self._catalog.as_text()
        if len(text) > messages.PRODUCTS_TEXT_LIMIT:
            self._send(event.chat_id, messages.products_too_large(len(products)))
            return
        self._send(event.chat_id, text)

    def _cmd_config(self, event: TextEvent) -> None:
        self._sessions.start(event.user_id, ConfigWizardSession())
        self._send(event.chat_id, messages.CONFIG_QUESTION_TYPE)

    def _cmd_clean(self, event: TextEvent) -> None:
        try:
            self._admin.clean_all(event.user_id)
        except AdminAuthError:
            self._send(event.chat_id, messages.ADMIN_ONLY)
            return
        self._send(event.chat_id, messages.CLEANED)

    def _cmd_shop(self, event: TextEvent) -> None:
        self._sessions.set_shop_mode(event.user_id, True)
        self._send(event.chat_id, messages.SHOP_PROMPT)

    # Flows

    def _handle_admin_message(self, event: TextEvent) -> None:
        text = (event.text or "").strip()
        self._sessions.transition(event.user_id, AdminMessageSession, lambda session: (not text, None))
        if not text:
            self._send(event.chat_id, messages.ADMIN_MESSAGE_EMPTY)
            return
        if not self._staff_chat:
            self._send(event.chat_id, messages.ADMIN_MESSAGE_UNAVAILABLE)
            return
        staff_message_id = self._send(
            self._staff_chat,
            messages.staff_user_message(event.username, event.user_id, text),
        )
        if staff_message_id is None:
            self._send(event.chat_id, messages.ADMIN_MESSAGE_FAILED)
            return
        self._sessions.group_links.put(
            staff_message_id,
            GroupThreadLink(
                user_id=event.user_id,
                chat_id=event.chat_id,
                username=event.username,
                summary=messages.USER_MESSAGE_SUMMARY,
                details=text,
                allow_order=False,
            ),
        )
        self._send(event.chat_id, messages.ADMIN_MESSAGE_SENT)

    def _handle_config_answer(self, event: TextEvent) -> None:
        text = event.text or ""
        step = self._sessions.transition(event.user_id, ConfigWizardSession, lambda session: advance_config(session, text))
        if step.completed is not None:
            logger.info("user=%s flow=config completed", event.user_id)
            self._finish_config(event, step.completed)
            return
        self._send(event.chat_id, step.reply)

    def _finish_config(self, event: TextEvent, spec: ConfigSpec) -> None:
        summary = messages.config_summary(spec)
        self._send(event.chat_id, summary)
        try:
            response = self._chat.process(
                event.user_id, event.username, summary, prompt=messages.config_prompt(spec)
            )
        except BackendError as exc:
            logger.warning("user=%s config backend failed: %s", event.user_id, exc)
            text = messages.BACKEND_QUOTA if isinstance(exc, BackendQuotaExceeded) else messages.CONFIG_ERROR
            self._send(event.chat_id, text)
            return
        self._send(event.chat_id, response)
        self._offer_feedback(event, summary, response, spec)

    def _offer_feedback(self, event: TextEvent, summary: str, response: str, spec: Optional[ConfigSpec]) -> None:
        self._sessions.feedback.put(
            event.user_id,
            FeedbackCapture(
                summary=summary,
                config_text=response,
                username=event.username,
                chat_id=event.chat_id,
                spec=spec,
            ),
        )
        self._send(event.chat_id, messages.CONFIG_FEEDBACK_PROMPT, messages.CONFIG_FEEDBACK_CHOICES)

    def _handle_shop_query(self, event: TextEvent) -> None:
        query = (event.text or "").strip()
        if not query:
            self._send(event.chat_id, messages.SHOP_EMPTY_QUERY)
            return
        products = self._catalog.search(query)
        if not products:
            self._send(event.chat_id, messages.SHOP_NOT_FOUND)
            return
        preview = messages.product_preview(products)
        self._sessions.set_shop_mode(event.user_id, False)
        self._sessions.pending_approvals.put(
            event.user_id,
            PendingApproval(
                user_id=event.user_id,
                chat_id=event.chat_id,
                summary=messages.shop_summary(query),
                details=preview,
                username=event.username,
            ),
        )
        self._send(event.chat_id, messages.shop_found(preview), messages.SHOP_CHOICES)

    def _handle_order_input(self, event: TextEvent) -> None:
        step = self._sessions.transition(
            event.user_id,
            OrderSession,
            lambda session: advance_order(session, event.text or "", event.contact, event.location),
        )
        if event.contact is not None:
            logger.info("user=%s flow=order contact=%s", event.user_id, mask_contact_value(event.contact.phone))
        self._send_order_prompt(event.chat_id, step.ask)

    def _send_order_prompt(self, chat_id: str, ask: str) -> None:
        if ask == ORDER_ASK_NAME:
            self._send(chat_id, messages.ORDER_ASK_NAME)
        elif ask == ORDER_ASK_PHONE:
            self._call(lambda: self._transport.request_contact(chat_id, messages.ORDER_ASK_PHONE), chat_id)
        elif ask == ORDER_ASK_LOCATION:
            self._call(lambda: self._transport.request_location(chat_id, messages.ORDER_ASK_LOCATION), chat_id)
        elif ask == ORDER_ASK_DELIVERY:
            self._call(
                lambda: self._transport.send_choice(chat_id, messages.ORDER_ASK_DELIVERY, messages.DELIVERY_CHOICES),
                chat_id,
            )

    def _handle_change_request(self, event: TextEvent) -> None:
        spec = self._sessions.transition(
            event.user_id,
            ChangeRequestSession,
            lambda session: take_change(session, event.text or ""),
        )
        if spec is None:
            self._send(event.chat_id, messages.CHANGE_EMPTY)
            return
        try:
            response = self._chat.process(
                event.user_id, event.username, spec.extra, prompt=messages.change_prompt(spec, spec.extra)
            )
        except BackendError as exc:
            logger.warning("user=%s change backend failed: %s", event.user_id, exc)
            text = messages.BACKEND_QUOTA if isinstance(exc, BackendQuotaExceeded) else messages.CHANGE_ERROR
            self._send(event.chat_id, text)
            return
        self._send(event.chat_id, response)
        self._offer_feedback(event, messages.spec_line(spec), response, spec)

    def _handle_default(self, event: TextEvent) -> None:
        """Purpose: Answer free text via the backend with reminder, offer and feedback hooks.
        Inputs/Outputs: Input is the TextEvent; replies go out through the transport.
        Side Effects / State: Marks the per-chat config reminder; may store an offer or feedback.
        Dependencies: rules heuristics, ChatService.process.
        Failure Modes: Backend errors become quota or generic messages; no state is lost.
        If Removed: Free-form questions go unanswered.
        Testing Notes: The first config-like message in a chat is redirected, the second is answered.
        """
        # Config intent is redirected once per chat, later ones go to the backend.
        text = event.text or ""
        config_request = is_config_request(text)
        if config_request and self._sessions.mark_config_reminder(event.chat_id):
            logger.info("user=%s chat=%s config reminder", event.user_id, event.chat_id)
            self._send(event.chat_id, messages.CONFIG_REMINDER)
            return
        try:
            response = self._chat.process(event.user_id, event.username, text)
        except BackendError as exc:
            logger.warning("user=%s backend failed kind=%s", event.user_id, exc.__class__.__name__)
            self._send(event.chat_id, self._backend_failure_text(exc))
            return
        self._send(event.chat_id, response)

        if should_offer_purchase(text, response):
            self._sessions.pending_approvals.put(
                event.user_id,
                PendingApproval(
                    user_id=event.user_id,
                    chat_id=event.chat_id,
                    summary=messages.product_request_summary(text),
                    details=response,
                    username=event.username,
                ),
            )
            self._send(event.chat_id, messages.BUY_OFFER, messages.BUY_CHOICES)

        if config_request or is_likely_config_response(response):
            self._offer_feedback(event, messages.request_summary(text), response, None)

    # Staff channel

    def _handle_staff_message(self, event: TextEvent) -> None:
        if not event.reply_to_message_id:
            return
        staff_text = (event.text or "").strip()
        if not staff_text:
            return
        # A forwarded message takes one staff reply.
        link = self._sessions.group_links.pop(event.reply_to_message_id)
        if link is None:
            return
        request_id = event.message_id or uuid.uuid4().hex[:12]
        self._sessions.admin_approvals.put(
            request_id,
            AdminApprovalRequest(link=link, staff_text=staff_text, staff_chat_id=event.chat_id),
        )
        logger.info("staff reply request=%s user=%s", request_id, link.user_id)
        self._send(event.chat_id, messages.STAFF_APPROVAL_PROMPT, messages.staff_approval_choices(request_id))

    def _handle_staff_decision(self, event: ButtonEvent, request_id: str, allow_order: bool) -> None:
        if not request_id:
            self._send(event.chat_id, messages.STAFF_APPROVAL_BAD_ID)
            return
        request = self._sessions.admin_approvals.pop(request_id)
        if request is None:
            self._send(event.chat_id, messages.STAFF_APPROVAL_NOT_FOUND)
            return
        link = request.link
        choices = [messages.MESSAGE_ADMIN_CHOICE]
        if allow_order:
            self._sessions.pending_approvals.put(
                link.user_id,
                PendingApproval(
                    user_id=link.user_id,
                    chat_id=link.chat_id,
                    summary=link.summary,
                    details=link.details,
                    username=link.username,
                ),
            )
            choices = list(messages.ORDER_CHOICES) + choices
        self._send(link.chat_id, messages.admin_reply(request.staff_text, allow_order), choices)
        status = messages.STAFF_STATUS_ORDER if allow_order else messages.STAFF_STATUS_REPLY_ONLY
        if event.message_id:
            self._call(lambda: self._transport.edit_text(event.chat_id, event.message_id, status), event.chat_id)
        else:
            self._send(event.chat_id, status)
        logger.info("staff decision request=%s allow_order=%s", request_id, allow_order)

    # Buttons

    def handle_button(self, event: ButtonEvent) -> None:
        """Purpose: Dispatch one button press.
        Inputs/Outputs: Input is a ButtonEvent; replies go out through the transport.
        Side Effects / State: Pops correlation entries, starts or advances flows.
        Dependencies: The button dispatch table plus the prefixed staff/admin ids.
        Failure Modes: Unknown ids are ignored; stale flow buttons ask the user to restart.
        If Removed: Offers, feedback and checkout cannot progress.
        Testing Notes: Pressing order_yes twice starts one order and reports not found once.
        """
        # Prefixed ids carry an argument after the colon.
        self._maybe_prune()
        choice_id = event.choice_id or ""
        logger.info("user=%s button=%s", event.user_id, choice_id)
        try:
            if choice_id.startswith(APPROVE_YES_PREFIX):
                self._handle_staff_decision(event, choice_id[len(APPROVE_YES_PREFIX):], True)
                return
            if choice_id.startswith(APPROVE_NO_PREFIX):
                self._handle_staff_decision(event, choice_id[len(APPROVE_NO_PREFIX):], False)
                return
            if choice_id.startswith(ADMIN_USER_PREFIX):
                self._btn_admin_user_messages(event, choice_id[len(ADMIN_USER_PREFIX):])
                return
            if choice_id.startswith(CHANGE_PREFIX):
                self._btn_change_component(event, choice_id[len(CHANGE_PREFIX):])
                return
            handler = self._buttons.get(choice_id)
            if handler is None:
                logger.debug("user=%s unknown button=%s", event.user_id, choice_id)
                return
            handler(event)
        except SessionNotFound as exc:
            logger.info("user=%s stale flow=%s button=%s", event.user_id, exc.kind, choice_id)
            self._send(event.chat_id, messages.FLOW_EXPIRED)

    def _btn_feedback_yes(self, event: ButtonEvent) -> None:
        self._send(event.chat_id, messages.FEEDBACK_THANKS)
        info = self._sessions.feedback.pop(event.user_id)
        if info is None or not self._staff_chat:
            return
        staff_message_id = self._send(
            self._staff_chat,
            messages.staff_config_liked(info.username, event.user_id, info.summary, info.config_text),
        )
        if staff_message_id is None:
            return
        self._sessions.group_links.put(
            staff_message_id,
            GroupThreadLink(
                user_id=event.user_id,
                chat_id=info.chat_id or event.chat_id,
                username=info.username,
                summary=info.summary,
                details=info.config_text,
                allow_order=True,
            ),
        )

    def _btn_feedback_no(self, event: ButtonEvent) -> None:
        self._sessions.feedback.pop(event.user_id)
        self._send(event.chat_id, messages.FEEDBACK_DISLIKED)

    def _btn_feedback_change(self, event: ButtonEvent) -> None:
        self._send(event.chat_id, messages.CHANGE_PROMPT, messages.CHANGE_CHOICES)

    def _btn_change_component(self, event: ButtonEvent, component: str) -> None:
        try:
            target = ChangeTarget(component)
        except ValueError:
            logger.debug("user=%s unknown component=%s", event.user_id, component)
            return
        info = self._sessions.feedback.get(event.user_id)
        if info is None:
            raise SessionNotFound("feedback", event.user_id)
        self._sessions.start(
            event.user_id,
            ChangeRequestSession(target=target, spec=(info.spec or ConfigSpec()).copy(), summary=info.summary),
        )
        self._send(event.chat_id, messages.CHANGE_QUESTIONS[target.value])

    def _start_order(self, event: ButtonEvent, approval: PendingApproval) -> None:
        self._sessions.start(event.user_id, OrderSession(summary=approval.summary, details=approval.details))
        self._send(event.chat_id, messages.ORDER_ASK_NAME)

    def _btn_order_yes(self, event: ButtonEvent) -> None:
        approval = self._sessions.pending_approvals.pop(event.user_id)
        if approval is None:
            self._send(event.chat_id, messages.ORDER_NOT_FOUND)
            return
        self._start_order(event, approval)

    def _btn_order_no(self, event: ButtonEvent) -> None:
        self._sessions.pending_approvals.pop(event.user_id)
        self._send(event.chat_id, messages.ORDER_DECLINED)

    def _btn_buy_yes(self, event: ButtonEvent) -> None:
        approval = self._sessions.pending_approvals.pop(event.user_id)
        if approval is None:
            self._send(event.chat_id, messages.BUY_NOT_FOUND)
            return
        self._start_order(event, approval)
        if self._staff_chat:
            self._send(
                self._staff_chat,
                messages.staff_product_request(approval.username, event.user_id, approval.summary, approval.details),
            )

    def _btn_buy_no(self, event: ButtonEvent) -> None:
        self._sessions.pending_approvals.pop(event.user_id)
        self._send(event.chat_id, messages.BUY_DECLINED)

    def _btn_shop_yes(self, event: ButtonEvent) -> None:
        approval = self._sessions.pending_approvals.pop(event.user_id)
        if approval is None:
            self._send(event.chat_id, messages.SHOP_ORDER_NOT_FOUND)
            return
        self._start_order(event, approval)
        if self._staff_chat:
            self._send(
                self._staff_chat,
                messages.staff_shop_request(approval.username, event.user_id, approval.summary, approval.details),
            )

    def _btn_shop_no(self, event: ButtonEvent) -> None:
        self._sessions.pending_approvals.pop(event.user_id)
        self._send(event.chat_id, messages.SHOP_DECLINED)

    def _btn_shop_more(self, event: ButtonEvent) -> None:
        self._sessions.set_shop_mode(event.user_id, True)
        self._send(event.chat_id, messages.SHOP_MORE)

    def _btn_message_admin(self, event: ButtonEvent) -> None:
        self._sessions.start(event.user_id, AdminMessageSession())
        self._send(event.chat_id, messages.ADMIN_MESSAGE_PROMPT)

    def _delivery_choice(self, event: ButtonEvent, courier: bool) -> None:
        try:
            outcome = self._sessions.transition(
                event.user_id, OrderSession, lambda session: choose_delivery(session, courier)
            )
        except SessionNotFound:
            self._send(event.chat_id, messages.ORDER_NOT_FOUND)
            return
        if not outcome.reply:
            self._send(event.chat_id, messages.FLOW_EXPIRED)
            return
        if outcome.completed:
            self._complete_order(event, outcome)
            return
        self._call(
            lambda: self._transport.send_choice(event.chat_id, outcome.reply, messages.DELIVERY_CONFIRM_CHOICES),
            event.chat_id,
        )

    def _delivery_confirm(self, event: ButtonEvent, agree: bool) -> None:
        try:
            outcome = self._sessions.transition(
                event.user_id, OrderSession, lambda session: confirm_delivery(session, agree)
            )
        except SessionNotFound:
            self._send(event.chat_id, messages.ORDER_NOT_FOUND)
            return
        if not outcome.reply:
            self._send(event.chat_id, messages.FLOW_EXPIRED)
            return
        self._complete_order(event, outcome)

    def _complete_order(self, event: ButtonEvent, outcome: DeliveryOutcome) -> None:
        self._send(event.chat_id, outcome.reply)
        logger.info(
            "user=%s flow=order completed delivery=%s phone=%s",
            event.user_id,
            outcome.delivery,
            mask_contact_value(outcome.order.phone),
        )
        if not self._orders_chat:
            return
        self._send(
            self._orders_chat,
            messages.order_summary(event.user_id, event.username, outcome.order, outcome.delivery, outcome.note),
        )

    def _btn_admin_messages(self, event: ButtonEvent) -> None:
        if not self._admin.is_admin(event.user_id):
            self._send(event.chat_id, messages.ADMIN_ONLY)
            return
        records = self._history.all_messages(ADMIN_USER_LIST_LIMIT)
        users = collect_users(records)
        if not users:
            self._send(event.chat_id, messages.ADMIN_NO_MESSAGES)
            return
        choices = [
            Choice(f"{ADMIN_USER_PREFIX}{user.user_id}", messages.user_label(user.username, user.user_id))
            for user in users
        ]
        text = f"{build_recent_digest(records)}\n\n{messages.admin_user_list(len(users))}"
        self._send(event.chat_id, text, choices)

    def _btn_admin_user_messages(self, event: ButtonEvent, user_id: str) -> None:
        if not self._admin.is_admin(event.user_id):
            self._send(event.chat_id, messages.ADMIN_ONLY)
            return
        if not user_id:
            self._send(event.chat_id, messages.ADMIN_USER_NOT_FOUND)
            return
        records = self._history.recent(user_id, 0)
        if not records:
            self._send(event.chat_id, messages.ADMIN_USER_NO_MESSAGES)
            return
        self._send(event.chat_id, build_conversation_digest(records))

    # Files

    def handle_file(self, event: FileEvent) -> None:
        """Catalog upload from an admin chat; everyone else gets a refusal."""
        if not self._admin.is_admin(event.user_id):
            self._send(event.chat_id, messages.UPLOAD_ADMIN_ONLY)
            return
        try:
            self._admin.check_upload(event.data, event.filename)
        except IngestionError as exc:
            self._send(event.chat_id, messages.upload_failed(str(exc)))
            return
        self._send(event.chat_id, messages.UPLOAD_PROCESSING)
        try:
            count = self._admin.upload_catalog(event.user_id, event.data, event.filename)
        except AdminAuthError:
            self._send(event.chat_id, messages.UPLOAD_ADMIN_ONLY)
            return
        except IngestionError as exc:
            logger.warning("user=%s upload failed file=%s: %s", event.user_id, event.filename, exc)
            self._send(event.chat_id, messages.upload_failed(str(exc)))
            return
        self._send(event.chat_id, messages.upload_done(count, event.filename))
