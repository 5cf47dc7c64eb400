"""
Progress stream transport

Publish progress travels as newline-delimited JSON, one tagged event per
line. Jobs run on a detached worker thread so a dropped client never stops
them; the HTTP response only drains the queue.
"""
from typing import Any, AsyncGenerator, Callable, Dict, Iterable, Iterator
import asyncio
import contextvars
import json
import logging
import queue
import threading

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"
EVENT_TYPES = frozenset({"started", "item", "completed", "error"})

_DONE = object()


def encode_event(event: Dict[str, Any]) -> str:
    """Serialize one event as a single NDJSON line"""
    return json.dumps(event, default=str) + "\n"


def decode_events(lines: Iterable[str]) -> Iterator[Dict[str, Any]]:
    """
    Parse an NDJSON progress stream

    Blank lines, malformed JSON, non-object values and unknown event types
    are skipped.
    """
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except ValueError:
            logger.debug(f"Skipping malformed progress line: {line[:80]}")
            continue
        if not isinstance(event, dict) or event.get("type") not in EVENT_TYPES:
            continue
        yield event


def run_detached(job: Callable[[], Iterable[Dict[str, Any]]], name: str = "publish-job") -> "queue.Queue":
    """
    Run ``job`` on a daemon thread, forwarding its events into a queue

    The queue is closed with an internal sentinel once the job finishes. An
    exception escaping the job becomes a final ``error`` event.
    """
    events: "queue.Queue" = queue.Queue()

    def worker():
        try:
            for event in job():
                events.put(event)
        except Exception as e:
            logger.error(f"Detached job {name} failed: {e}", exc_info=True)
            events.put({"type": "error", "message": str(e)})
        finally:
            events.put(_DONE)

    # Copy the request context so job logs keep the request ID
    context = contextvars.copy_context()
    thread = threading.Thread(target=context.run, args=(worker,), name=name, daemon=True)
    thread.start()
    return events


async def stream_events(events: "queue.Queue") -> AsyncGenerator[str, None]:
    """Drain a detached job's queue as NDJSON lines"""
    loop = asyncio.get_running_loop()
    while True:
        event = await loop.run_in_executor(None, events.get)
        if event is _DONE:
            break
        yield encode_event(event)
