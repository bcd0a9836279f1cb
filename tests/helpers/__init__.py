from .fakes import FakePushTransport, RecordingPush, ScriptedSender
from .inmemory_db import InMemDB

__all__ = [
    "FakePushTransport",
    "InMemDB",
    "RecordingPush",
    "ScriptedSender",
]
