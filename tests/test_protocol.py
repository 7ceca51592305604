"""Tests for the delta stream wire protocol."""

import json
from datetime import datetime, timezone

import pytest

from kubewake.exceptions import ProtocolError
from kubewake.models import DeltaKind, Subscription
from kubewake.protocol import decode_delta, decode_event, encode_subscription


def _frame(**overrides) -> str:
    msg = {
        "type": "ADDED",
        "cluster": "prod",
        "timestamp": "2024-01-15T10:00:00Z",
        "event": {
            "name": "api.17a",
            "namespace": "default",
            "type": "Warning",
            "reason": "BackOff",
            "message": "Back-off restarting failed container",
            "count": 3,
            "firstTimestamp": "2024-01-15T09:00:00Z",
            "lastTimestamp": "2024-01-15T10:00:00Z",
            "involvedObjectKind": "Pod",
            "involvedObjectName": "api-7d9",
            "source": "kubelet@node-1",
        },
    }
    msg.update(overrides)
    return json.dumps(msg)


class TestEncodeSubscription:
    def test_sorted_compact_lists(self) -> None:
        sub = Subscription.build(clusters=["b", "a"], namespaces=["kube-system"], types=["Warning"])
        assert json.loads(encode_subscription(sub)) == {
            "clusters": ["a", "b"],
            "namespaces": ["kube-system"],
            "types": ["Warning"],
            "reasons": [],
        }
        assert " " not in encode_subscription(sub)

    def test_empty_values_are_dropped(self) -> None:
        sub = Subscription.build(clusters=["prod", ""], reasons=None)
        assert json.loads(encode_subscription(sub))["clusters"] == ["prod"]


class TestDecodeDelta:
    def test_decodes_full_frame(self) -> None:
        received = datetime(2024, 1, 15, 10, 0, 1, tzinfo=timezone.utc)
        delta = decode_delta(_frame(), received_at=received)
        assert delta.kind is DeltaKind.ADDED
        assert delta.cluster_tag == "prod"
        assert delta.received_at == received
        assert delta.sent_at == "2024-01-15T10:00:00Z"
        assert delta.event.cluster_tag == "prod"
        assert delta.event.count == 3
        assert delta.event.involved_object_name == "api-7d9"
        assert delta.event.source_component == ""

    def test_decodes_bytes(self) -> None:
        delta = decode_delta(_frame(type="DELETED").encode("utf-8"))
        assert delta.kind is DeltaKind.DELETED

    @pytest.mark.parametrize("frame", [
        "not json",
        "[]",
        "42",
        b"\xff\xfe",
    ])
    def test_rejects_non_object_frames(self, frame) -> None:
        with pytest.raises(ProtocolError):
            decode_delta(frame)

    @pytest.mark.parametrize("overrides", [
        {"type": "BOOKMARK"},
        {"type": None},
        {"cluster": ""},
        {"cluster": 7},
        {"timestamp": 12345},
        {"event": None},
        {"event": "x"},
    ])
    def test_rejects_bad_envelope(self, overrides) -> None:
        with pytest.raises(ProtocolError):
            decode_delta(_frame(**overrides))

    def test_missing_timestamp_is_allowed(self) -> None:
        msg = json.loads(_frame())
        del msg["timestamp"]
        assert decode_delta(json.dumps(msg)).sent_at == ""

    def test_rejects_deeply_nested_frame(self) -> None:
        with pytest.raises(ProtocolError):
            decode_delta("[" * 100000 + "]" * 100000)


class TestDecodeEvent:
    def test_missing_optional_fields_default_to_empty(self) -> None:
        event = decode_event({"name": "x", "namespace": "ns", "reason": None, "count": None}, "c1")
        assert event.reason == ""
        assert event.count == 0
        assert event.cluster_tag == "c1"

    @pytest.mark.parametrize("payload", [
        {"namespace": "ns"},
        {"name": "", "namespace": "ns"},
        {"name": "x"},
        {"name": "x", "namespace": 5},
        {"name": "x", "namespace": "ns", "count": -1},
        {"name": "x", "namespace": "ns", "count": "3"},
        {"name": "x", "namespace": "ns", "count": True},
        {"name": "x", "namespace": "ns", "message": 42},
    ])
    def test_fails_closed(self, payload) -> None:
        with pytest.raises(ProtocolError):
            decode_event(payload, "c1")
