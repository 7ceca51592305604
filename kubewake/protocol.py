"""
Wire protocol for the event delta stream.

This module encodes subscriptions sent to the backend and decodes the delta
frames it pushes back. Decoding is strict: anything that is not exactly the
expected shape raises ProtocolError so the caller can drop the frame and keep
going.

Client -> server:
    {"clusters": [...], "namespaces": [...], "types": [...], "reasons": [...]}

Server -> client:
    {"type": "ADDED"|"MODIFIED"|"DELETED", "event": {...}, "cluster": "...", "timestamp": "..."}

Key Functions:
- encode_subscription: Serialize a Subscription to a JSON text frame
- decode_event: Build an EventRecord from an event payload (stream or REST listing)
- decode_delta: Parse one inbound frame into a DeltaMessage
"""

import json
from datetime import datetime
from typing import Any, Dict, Optional, Union

from .exceptions import ProtocolError
from .models import DeltaKind, DeltaMessage, EventRecord, Subscription
from .timestamps import utc_now

# camelCase payload key -> EventRecord field
_STRING_FIELDS = {
    'type': 'type',
    'reason': 'reason',
    'message': 'message',
    'firstTimestamp': 'first_timestamp',
    'lastTimestamp': 'last_timestamp',
    'involvedObjectKind': 'involved_object_kind',
    'involvedObjectName': 'involved_object_name',
    'source': 'source',
    'sourceComponent': 'source_component',
    'sourceHost': 'source_host',
}


def encode_subscription(subscription: Subscription) -> str:
    """Serialize a subscription; every dimension is a sorted list, empty meaning no filter."""
    return json.dumps({
        'clusters': sorted(subscription.clusters),
        'namespaces': sorted(subscription.namespaces),
        'types': sorted(subscription.types),
        'reasons': sorted(subscription.reasons),
    }, separators=(',', ':'))


def decode_event(payload: Any, cluster_tag: str) -> EventRecord:
    """
    Build an EventRecord from an event payload.

    Args:
        payload: Decoded JSON object with camelCase event fields
        cluster_tag: Cluster the event belongs to

    Returns:
        EventRecord: The decoded event, tagged with ``cluster_tag``

    Raises:
        ProtocolError: If the identity fields are missing or a field has the wrong type
    """
    if not isinstance(payload, dict):
        raise ProtocolError(f"event must be an object, got {type(payload).__name__}")

    name = payload.get('name')
    namespace = payload.get('namespace')
    if not isinstance(name, str) or not name:
        raise ProtocolError("event.name must be a non-empty string")
    if not isinstance(namespace, str):
        raise ProtocolError("event.namespace must be a string")

    count = payload.get('count', 0)
    if count is None:
        count = 0
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise ProtocolError(f"event.count must be a non-negative integer, got {count!r}")

    fields: Dict[str, Any] = {}
    for key, attr in _STRING_FIELDS.items():
        value = payload.get(key)
        if value is None:
            value = ''
        if not isinstance(value, str):
            raise ProtocolError(f"event.{key} must be a string")
        fields[attr] = value

    return EventRecord(name=name, namespace=namespace, count=count, cluster_tag=cluster_tag, **fields)


def decode_delta(frame: Union[str, bytes], received_at: Optional[datetime] = None) -> DeltaMessage:
    """
    Parse one inbound frame into a DeltaMessage.

    Args:
        frame: Text or binary WebSocket frame
        received_at: Client receive time (defaults to now, UTC)

    Returns:
        DeltaMessage: The decoded delta

    Raises:
        ProtocolError: If the frame is not valid JSON or does not match the delta shape
    """
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = frame.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ProtocolError(f"frame is not valid UTF-8: {e}") from e
    try:
        msg = json.loads(frame)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"frame is not valid JSON: {e}") from e
    except RecursionError as e:
        raise ProtocolError("frame is nested too deeply") from e
    if not isinstance(msg, dict):
        raise ProtocolError(f"frame must be a JSON object, got {type(msg).__name__}")

    raw_kind = msg.get('type')
    try:
        kind = DeltaKind(raw_kind)
    except ValueError:
        raise ProtocolError(f"unknown delta type: {raw_kind!r}") from None

    cluster = msg.get('cluster')
    if not isinstance(cluster, str) or not cluster:
        raise ProtocolError("cluster must be a non-empty string")

    sent_at = msg.get('timestamp') or ''
    if not isinstance(sent_at, str):
        raise ProtocolError("timestamp must be a string")

    event = decode_event(msg.get('event'), cluster)
    return DeltaMessage(
        kind=kind,
        event=event,
        cluster_tag=cluster,
        received_at=received_at or utc_now(),
        sent_at=sent_at,
    )
