"""Tests for JSON-schema argument validation."""

from chatloop.tools.base import normalize_schema
from chatloop.tools.validation import ToolValidator
from tests.mock_tools import EchoTool, SearchTool


def test_valid_args_pass():
    ok, err = ToolValidator.validate(EchoTool(), {"message": "hello"})
    assert ok
    assert err is None


def test_missing_required_field():
    ok, err = ToolValidator.validate(EchoTool(), {})
    assert not ok
    assert "message" in err


def test_wrong_type():
    ok, err = ToolValidator.validate(EchoTool(), {"message": 42})
    assert not ok
    assert "string" in err


def test_optional_fields():
    ok, _ = ToolValidator.validate(SearchTool(), {})
    assert ok


def test_normalize_schema_fills_defaults():
    assert normalize_schema({}) == {"type": "object", "properties": {}}
    assert normalize_schema(None) == {"type": "object", "properties": {}}
