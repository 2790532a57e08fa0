from enum import Enum


class AuthMethod(str, Enum):
    LOCAL = "local"
    DEVICE = "device"


class LoopbackFlowState(str, Enum):
    IDLE = "IDLE"
    SERVER_LISTENING = "SERVER_LISTENING"
    AWAITING_REDIRECT = "AWAITING_REDIRECT"
    CODE_RECEIVED = "CODE_RECEIVED"
    EXCHANGING = "EXCHANGING"
    DONE = "DONE"
    FAILED = "FAILED"


class DeviceFlowState(str, Enum):
    IDLE = "IDLE"
    DEVICE_CODE_REQUESTED = "DEVICE_CODE_REQUESTED"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    POLLING = "POLLING"
    DONE = "DONE"
    TIMED_OUT = "TIMED_OUT"
    FAILED = "FAILED"


class FetchKind(str, Enum):
    COURSEWORK = "COURSEWORK"
    ANNOUNCEMENTS = "ANNOUNCEMENTS"


class ItemSource(str, Enum):
    COURSEWORK = "cw"
    ANNOUNCEMENT = "ann"
