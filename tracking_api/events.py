"""
Closed catalogue of telemetry event types shared by the API and the web client.
"""

from enum import Enum


class EventType(str, Enum):
    TYPING = "typing"
    PASTE = "paste"
    COPY = "copy"
    CUT = "cut"
    PROMPT_FOCUS = "promptFocus"
    PROMPT_BLUR = "promptBlur"
    PROMPT_SUBMIT = "promptSubmit"
    RESPONSE_VIEW = "responseView"
    RESPONSE_SCROLL = "responseScroll"
    RESPONSE_COPY = "responseCopy"
    PROMPT_CLEAR = "promptClear"
    CONTEXT_RESET = "contextReset"
    SESSION_START = "sessionStart"
    SESSION_END = "sessionEnd"
    IDLE_START = "idleStart"
    IDLE_END = "idleEnd"


EVENT_TYPE_NAMES = frozenset(item.value for item in EventType)
