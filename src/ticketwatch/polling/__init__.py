from .cache import DedupCache
from .channels import EventChannel, PollChannels
from .engine import PollEngine, PollReport
from .scheduler import Poller

__all__ = [
    "DedupCache",
    "EventChannel",
    "PollChannels",
    "PollEngine",
    "PollReport",
    "Poller",
]
