from __future__ import annotations

"""Flow step functions.

Each step mutates a session in place and returns ``(keep, outcome)`` so it can
run inside ``SessionStore.transition`` under the user's lock. Steps never talk
to the transport or the backend; the orchestrator acts on the outcome after the
state change has committed.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from . import messages
from .sessions import (
    ChangeRequestSession,
    ChangeTarget,
    ConfigSpec,
    ConfigStage,
    ConfigWizardSession,
    OrderSession,
    OrderStage,
)
from .transport import Contact, Location


@dataclass
class ConfigStep:
    """reply is the next question; completed carries the finished spec; reset flags a bad stage."""
    reply: str = ""
    completed: Optional[ConfigSpec] = None
    reset: bool = False


# Stage -> (field answered at this stage, question for the next stage).
CONFIG_STAGE_TABLE = {
    ConfigStage.NEED_TYPE: ("pc_type", messages.CONFIG_QUESTION_BUDGET),
    ConfigStage.NEED_BUDGET: ("budget", messages.CONFIG_QUESTION_CPU),
    ConfigStage.NEED_CPU: ("cpu", messages.CONFIG_QUESTION_STORAGE),
    ConfigStage.NEED_STORAGE: ("storage", messages.CONFIG_QUESTION_GPU),
    ConfigStage.NEED_GPU: ("gpu", ""),
}


def advance_config(session: ConfigWizardSession, text: str) -> Tuple[bool, ConfigStep]:
    """Purpose: Consume one wizard answer and move to the next stage.
    Inputs/Outputs: Inputs are the wizard session and raw text; returns (keep, ConfigStep).
    Side Effects / State: Writes the answer into session.spec and bumps the stage.
    Dependencies: CONFIG_STAGE_TABLE.
    Failure Modes: An unknown stage ends the session with reset=True.
    If Removed: /configuratsiya cannot collect requirements.
    Testing Notes: Five answers complete the wizard; no stage is ever skipped.
    """
    # Every answer is accepted as-is, even empty; the last one completes the wizard.
    entry = CONFIG_STAGE_TABLE.get(session.stage)
    if entry is None:
        return False, ConfigStep(reply=messages.CONFIG_SESSION_RESET, reset=True)
    field_name, next_question = entry
    setattr(session.spec, field_name, text.strip())
    if session.stage == ConfigStage.NEED_GPU:
        return False, ConfigStep(completed=session.spec.copy())
    session.stage = ConfigStage(session.stage + 1)
    return True, ConfigStep(reply=next_question)


def apply_change(spec: ConfigSpec, target: ChangeTarget, value: str) -> ConfigSpec:
    """Merge a replacement value into a copy of spec; ram and other only add the extra text."""
    updated = spec.copy()
    if target == ChangeTarget.CPU:
        updated.cpu = value
    elif target == ChangeTarget.GPU:
        updated.gpu = value
    elif target == ChangeTarget.SSD:
        updated.storage = value
    updated.extra = value
    return updated


def take_change(session: ChangeRequestSession, text: str) -> Tuple[bool, Optional[ConfigSpec]]:
    # Single-shot: the session is dropped whatever the input was.
    value = text.strip()
    if not value:
        return False, None
    return False, apply_change(session.spec, session.target, value)


ORDER_ASK_NAME = "name"
ORDER_ASK_PHONE = "phone"
ORDER_ASK_LOCATION = "location"
ORDER_ASK_DELIVERY = "delivery"


@dataclass
class OrderStep:
    """ask names the next prompt to send; empty means the event is ignored."""
    ask: str = ""


def advance_order(
    session: OrderSession,
    text: str,
    contact: Optional[Contact] = None,
    location: Optional[Location] = None,
) -> Tuple[bool, OrderStep]:
    """Purpose: Consume one text/contact/location event for a checkout.
    Inputs/Outputs: Inputs are the order session and the event payloads; returns (True, OrderStep).
    Side Effects / State: Stores name, phone or location and advances one stage.
    Dependencies: None beyond the session model.
    Failure Modes: Empty input re-asks the same stage; text at the button stages is ignored.
    If Removed: Checkout cannot collect contact details.
    Testing Notes: A shared contact wins over typed text at the phone stage.
    """
    # Structured payloads take priority over typed text.
    value = (text or "").strip()
    if session.stage == OrderStage.NEED_NAME:
        if not value:
            return True, OrderStep(ask=ORDER_ASK_NAME)
        session.name = value
        session.stage = OrderStage.NEED_PHONE
        return True, OrderStep(ask=ORDER_ASK_PHONE)
    if session.stage == OrderStage.NEED_PHONE:
        phone = contact.phone.strip() if contact is not None and contact.phone else value
        if not phone:
            return True, OrderStep(ask=ORDER_ASK_PHONE)
        session.phone = phone
        session.stage = OrderStage.NEED_LOCATION
        return True, OrderStep(ask=ORDER_ASK_LOCATION)
    if session.stage == OrderStage.NEED_LOCATION:
        if location is not None:
            value = f"Lat: {location.latitude:.5f}, Lon: {location.longitude:.5f}"
        if not value:
            return True, OrderStep(ask=ORDER_ASK_LOCATION)
        session.location = value
        session.stage = OrderStage.NEED_DELIVERY_CHOICE
        return True, OrderStep(ask=ORDER_ASK_DELIVERY)
    return True, OrderStep()


@dataclass
class DeliveryOutcome:
    """completed is set when the order is final; an empty reply means a stale button."""
    order: OrderSession
    completed: bool
    delivery: str = ""
    note: str = ""
    reply: str = ""


def choose_delivery(session: OrderSession, courier: bool) -> Tuple[bool, DeliveryOutcome]:
    if session.stage != OrderStage.NEED_DELIVERY_CHOICE:
        return True, DeliveryOutcome(order=session, completed=False)
    if courier:
        session.delivery = "courier"
        session.stage = OrderStage.NEED_DELIVERY_CONFIRM
        return True, DeliveryOutcome(order=session, completed=False, reply=messages.ORDER_ASK_DELIVERY_CONFIRM)
    session.delivery = "pickup"
    return False, DeliveryOutcome(
        order=session,
        completed=True,
        delivery=messages.PICKUP_DELIVERY,
        reply=messages.ORDER_PICKUP_DONE,
    )


def confirm_delivery(session: OrderSession, agree: bool) -> Tuple[bool, DeliveryOutcome]:
    """Courier price answer; both answers finish the order."""
    if session.stage != OrderStage.NEED_DELIVERY_CONFIRM:
        return True, DeliveryOutcome(order=session, completed=False)
    if not agree:
        session.delivery = "pickup"
        return False, DeliveryOutcome(
            order=session,
            completed=True,
            delivery=messages.PICKUP_DELIVERY,
            note="Customer declined the delivery price",
            reply=messages.ORDER_PICKUP_FALLBACK,
        )
    return False, DeliveryOutcome(
        order=session,
        completed=True,
        delivery=messages.COURIER_DELIVERY,
        note="Agreed",
        reply=messages.ORDER_COURIER_DONE,
    )
