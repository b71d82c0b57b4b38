"""Unit tests for result values."""

from dataclasses import dataclass

from damp_orchestrator.results import BatchResult, Result


@dataclass
class Payload:
    value: int

    def to_dict(self):
        return {"value": self.value}


def test_ok_and_fail():
    ok = Result.ok({"a": 1})
    failed = Result.fail("boom")

    assert ok.success and ok.data == {"a": 1} and ok.error is None
    assert not failed.success and failed.data is None and failed.error == "boom"


def test_to_dict_serializes_nested_payload():
    assert Result.ok(Payload(3)).to_dict() == {
        "success": True,
        "data": {"value": 3},
        "error": None,
    }


def test_batch_merge_keeps_order_and_errors():
    containers = BatchResult(deleted=["c1"], failed=["c2"], errors={"c2": "in use"})
    volumes = BatchResult(deleted=["v1"])

    merged = containers.merge(volumes)

    assert merged.deleted == ["c1", "v1"]
    assert merged.failed == ["c2"]
    assert merged.errors == {"c2": "in use"}
    assert not merged.complete
    assert volumes.complete
