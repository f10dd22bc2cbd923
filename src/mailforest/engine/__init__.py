"""Threading engine: records, containers, threads and the ThreadSet forest.

Usage:
    from mailforest.engine import Record, ThreadSet

    forest = ThreadSet()
    forest.ingest(Record(id="a@example.com", date=sent, subject="Budget"))
"""

from mailforest.engine.container import Container
from mailforest.engine.record import Record, normalize_subject, reify_subject, subject_is_reply
from mailforest.engine.thread import FAKE_ROOT, Marker, Thread
from mailforest.engine.threadset import ThreadSet

__all__ = [
    "Container",
    "FAKE_ROOT",
    "Marker",
    "Record",
    "Thread",
    "ThreadSet",
    "normalize_subject",
    "reify_subject",
    "subject_is_reply",
]
