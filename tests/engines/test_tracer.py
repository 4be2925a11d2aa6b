"""
Tests for royalty_engines.tracer (ROYALTY_ENGINE_TRACE records).
"""

from dataclasses import dataclass

from royalty_engines.financial import Weight, split_amount_accurately
from royalty_engines.tracer import compute_input_fingerprint, traced_engine


@dataclass(frozen=True)
class _Point:
    x: int
    y: int


class TestFingerprint:

    def test_is_16_hex_chars(self):
        fp = compute_input_fingerprint(("a",), {"a": 1})
        assert len(fp) == 16
        int(fp, 16)

    def test_deterministic(self):
        kwargs = {"total": 100, "weights": [Weight("a", 10000)]}
        assert compute_input_fingerprint(("total", "weights"), kwargs) == (
            compute_input_fingerprint(("total", "weights"), dict(kwargs))
        )

    def test_dict_key_order_does_not_matter(self):
        assert compute_input_fingerprint(("d",), {"d": {"a": 1, "b": 2}}) == (
            compute_input_fingerprint(("d",), {"d": {"b": 2, "a": 1}})
        )

    def test_different_inputs_differ(self):
        assert compute_input_fingerprint(("p",), {"p": _Point(1, 2)}) != (
            compute_input_fingerprint(("p",), {"p": _Point(2, 1)})
        )

    def test_missing_field_is_null(self):
        assert compute_input_fingerprint(("x",), {}) == (
            compute_input_fingerprint(("x",), {"x": None})
        )


class TestTracedEngine:

    def test_emits_trace_record(self, captured_logs):
        split_amount_accurately(100, [Weight("a", 10000)])

        traces = [r for r in captured_logs() if r["message"] == "ROYALTY_ENGINE_TRACE"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["engine_name"] == "split"
        assert trace["engine_version"] == "1.0"
        assert trace["logger"] == "royalty_kernel.engines.tracer"
        assert len(trace["input_fingerprint"]) == 16
        assert trace["duration_ms"] >= 0

    def test_positional_and_keyword_calls_share_fingerprint(self, captured_logs):
        weights = [Weight("a", 5000), Weight("b", 5000)]
        split_amount_accurately(250, weights)
        split_amount_accurately(total_cents=250, weights=weights)

        fps = [
            r["input_fingerprint"]
            for r in captured_logs()
            if r["message"] == "ROYALTY_ENGINE_TRACE"
        ]
        assert len(fps) == 2
        assert fps[0] == fps[1]

    def test_preserves_return_value_and_name(self):
        @traced_engine("double", "2.0", fingerprint_fields=("n",))
        def double(n):
            return n * 2

        assert double(21) == 42
        assert double.__name__ == "double"
