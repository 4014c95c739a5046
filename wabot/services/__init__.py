from wabot.services.normalizer import (
    ButtonSelection,
    FreeText,
    Inbound,
    MalformedEventError,
    Unrecognized,
    normalize_event,
)
from wabot.services.outbound import OutboundMessage, SendMenu, SendText, SendYesNo
from wabot.services.result import SendResult
from wabot.services.state_machine import (
    FlowSpec,
    InvalidStepError,
    Mode,
    Session,
    advance_flow,
    start_flow,
)
