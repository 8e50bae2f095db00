"""Tests for chatloop.llm.tool_call_assembler.ToolCallAssembler."""

from __future__ import annotations

import json

from chatloop.llm.tool_call_assembler import ToolCallAssembler, ToolCallBuilder
from chatloop.llm.types import RawToolDelta


class TestSingleToolCall:
    """Assemble a single tool call from incremental deltas."""

    def test_basic_assembly(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="call_1", name="get_url"))
        asm.feed(RawToolDelta(call_index=0, args_delta='{"url": '))
        asm.feed(RawToolDelta(call_index=0, args_delta='"https://x.test"}'))

        calls = asm.finalize()
        assert len(calls) == 1
        tc = calls[0]
        assert tc.id == "call_1"
        assert tc.name == "get_url"
        assert tc.arguments == {"url": "https://x.test"}
        assert asm.errors == []

    def test_arguments_concatenate_in_arrival_order(self):
        payload = json.dumps({"query": "weather in paris", "limit": 3})
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="c", name="search"))
        for ch in payload:
            asm.feed(RawToolDelta(call_index=0, args_delta=ch))
        assert asm.finalize()[0].arguments == {"query": "weather in paris", "limit": 3}

    def test_empty_arguments_become_empty_dict(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="c", name="get_url"))
        assert asm.finalize()[0].arguments == {}

    def test_missing_id_gets_index_fallback(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=3, name="echo", args_delta="{}"))
        assert asm.finalize()[0].id == "call_3"


class TestMergeRules:
    def test_first_id_wins(self):
        b = ToolCallBuilder(call_index=0)
        b.merge(RawToolDelta(call_index=0, id="first"))
        b.merge(RawToolDelta(call_index=0, id="second"))
        assert b.id == "first"

    def test_last_non_empty_name_wins(self):
        b = ToolCallBuilder(call_index=0)
        b.merge(RawToolDelta(call_index=0, name="get_"))
        b.merge(RawToolDelta(call_index=0, name="get_url"))
        b.merge(RawToolDelta(call_index=0, name=""))
        assert b.name == "get_url"

    def test_parsed_arguments_partial_json_is_none(self):
        b = ToolCallBuilder(call_index=0, arguments='{"url": "htt')
        assert b.parsed_arguments() is None

    def test_parsed_arguments_non_object_is_none(self):
        b = ToolCallBuilder(call_index=0, arguments="[1, 2]")
        assert b.parsed_arguments() is None


class TestMultipleToolCalls:
    def test_interleaved_indices_sorted(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=1, id="b", name="second"))
        asm.feed(RawToolDelta(call_index=0, id="a", name="first"))
        asm.feed(RawToolDelta(call_index=1, args_delta='{"n": 2}'))
        asm.feed(RawToolDelta(call_index=0, args_delta='{"n": 1}'))

        calls = asm.finalize()
        assert [c.name for c in calls] == ["first", "second"]
        assert [c.arguments["n"] for c in calls] == [1, 2]

    def test_builders_snapshot_ordered(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=2, name="z"))
        asm.feed(RawToolDelta(call_index=0, name="a"))
        assert [b.call_index for b in asm.builders()] == [0, 2]


class TestMalformed:
    def test_malformed_json_recorded_and_defaults_to_empty(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="bad", name="broken_tool"))
        asm.feed(RawToolDelta(call_index=0, args_delta='{"key": INVALID_JSON'))

        calls = asm.finalize()
        assert len(calls) == 1
        assert calls[0].arguments == {}
        assert len(asm.errors) == 1
        assert "broken_tool" in asm.errors[0]


class TestState:
    def test_bool_and_reset(self):
        asm = ToolCallAssembler()
        assert not asm
        asm.feed(RawToolDelta(call_index=0, name="x", args_delta="{oops"))
        assert asm
        asm.finalize()
        asm.reset()
        assert not asm
        assert asm.errors == []
