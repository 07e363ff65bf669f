from __future__ import annotations

"""Conversation session variants and the correlation records that link flows.

A user's in-progress flow is one of the session variants below; each carries a
``kind`` tag so the router can dispatch on it. Correlation records are not
stage machines: they are inserted on a triggering event and popped exactly once.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, Optional, Union


class FlowKind(str, Enum):
    ADMIN_MESSAGE = "admin_message"
    ADMIN_PASSWORD = "admin_password"
    CONFIG_WIZARD = "config_wizard"
    ORDER = "order"
    CHANGE_REQUEST = "change_request"


class ConfigStage(int, Enum):
    NEED_TYPE = 0
    NEED_BUDGET = 1
    NEED_CPU = 2
    NEED_STORAGE = 3
    NEED_GPU = 4


class OrderStage(int, Enum):
    NEED_NAME = 0
    NEED_PHONE = 1
    NEED_LOCATION = 2
    NEED_DELIVERY_CHOICE = 3
    NEED_DELIVERY_CONFIRM = 4


class ChangeTarget(str, Enum):
    CPU = "cpu"
    GPU = "gpu"
    RAM = "ram"
    SSD = "ssd"
    OTHER = "other"


@dataclass
class ConfigSpec:
    """Answers collected by the config wizard, reused by change requests."""
    pc_type: str = ""
    budget: str = ""
    cpu: str = ""
    storage: str = ""
    gpu: str = ""
    extra: str = ""

    def copy(self) -> "ConfigSpec":
        return ConfigSpec(
            pc_type=self.pc_type,
            budget=self.budget,
            cpu=self.cpu,
            storage=self.storage,
            gpu=self.gpu,
            extra=self.extra,
        )


@dataclass
class _SessionBase:
    started_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.updated_at = time.time()


@dataclass
class ConfigWizardSession(_SessionBase):
    """PC-build questionnaire; each text answer advances exactly one stage."""
    kind: ClassVar[FlowKind] = FlowKind.CONFIG_WIZARD
    stage: ConfigStage = ConfigStage.NEED_TYPE
    spec: ConfigSpec = field(default_factory=ConfigSpec)


@dataclass
class OrderSession(_SessionBase):
    """Checkout: contact details, then a delivery decision."""
    kind: ClassVar[FlowKind] = FlowKind.ORDER
    stage: OrderStage = OrderStage.NEED_NAME
    summary: str = ""
    details: str = ""
    name: str = ""
    phone: str = ""
    location: str = ""
    delivery: str = ""


@dataclass
class ChangeRequestSession(_SessionBase):
    """Single-shot capture of one replacement value for a config component."""
    kind: ClassVar[FlowKind] = FlowKind.CHANGE_REQUEST
    target: ChangeTarget = ChangeTarget.OTHER
    spec: ConfigSpec = field(default_factory=ConfigSpec)
    summary: str = ""


@dataclass
class AdminMessageSession(_SessionBase):
    kind: ClassVar[FlowKind] = FlowKind.ADMIN_MESSAGE


@dataclass
class AdminPasswordSession(_SessionBase):
    kind: ClassVar[FlowKind] = FlowKind.ADMIN_PASSWORD


Session = Union[
    ConfigWizardSession,
    OrderSession,
    ChangeRequestSession,
    AdminMessageSession,
    AdminPasswordSession,
]

# Routing precedence when a user has more than one flow open; lower wins.
# Shop mode sits between the config wizard and the order flow.
FLOW_PRECEDENCE: Dict[FlowKind, int] = {
    FlowKind.ADMIN_PASSWORD: 0,
    FlowKind.ADMIN_MESSAGE: 1,
    FlowKind.CONFIG_WIZARD: 2,
    FlowKind.ORDER: 4,
    FlowKind.CHANGE_REQUEST: 5,
}
SHOP_MODE_PRECEDENCE = 3


@dataclass
class PendingApproval:
    """An offer awaiting the user's yes/no before checkout starts."""
    user_id: str
    chat_id: str
    summary: str
    details: str = ""
    username: str = ""
    sent_at: float = field(default_factory=time.time)


@dataclass
class GroupThreadLink:
    """Maps a staff-channel message back to the customer it was forwarded for."""
    user_id: str
    chat_id: str
    username: str = ""
    summary: str = ""
    details: str = ""
    allow_order: bool = False
    created_at: float = field(default_factory=time.time)


@dataclass
class AdminApprovalRequest:
    """A staff reply held until staff confirm it should reach the customer."""
    link: GroupThreadLink
    staff_text: str
    staff_chat_id: str = ""
    created_at: float = field(default_factory=time.time)


@dataclass
class FeedbackCapture:
    """Last configuration answer shown to a user, kept for feedback buttons."""
    summary: str
    config_text: str
    username: str = ""
    chat_id: str = ""
    spec: Optional[ConfigSpec] = None
    created_at: float = field(default_factory=time.time)
