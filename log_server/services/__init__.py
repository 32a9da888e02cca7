from .formatting import friendly_duration, local_time
from .reporter import Reporter, get_reporter, is_registered
from .twilio_client import TwilioClient, UpstreamError, parse_twilio_time

__all__ = [
    "Reporter",
    "TwilioClient",
    "UpstreamError",
    "friendly_duration",
    "get_reporter",
    "is_registered",
    "local_time",
    "parse_twilio_time",
]
