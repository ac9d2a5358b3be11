"""Unit tests for batch ids, slugs and session name encoding."""

import pytest

from taskmux.core.naming import (
    SessionNameCodec,
    branch_name_for,
    is_ticket_id,
    sanitize_batch_id,
    slugify,
)
from taskmux.utils.logging import ValidationError


class TestSlugify:
    """Test cases for slugify."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Fix Bug", "fix-bug"),
            ("  Add   OAuth2 login!  ", "add-oauth2-login"),
            ("snake_case_name", "snake-case-name"),
            ("---", ""),
        ],
    )
    def test_slugify(self, text, expected):
        assert slugify(text) == expected

    @pytest.mark.parametrize(
        "text",
        ["Fix Bug", "a__b--c", "x" * 80, "Ünïcode ✓ text", "trailing-dash-at-the-cap-boundary-x"],
    )
    def test_slugify_is_idempotent(self, text):
        once = slugify(text)
        assert slugify(once) == once

    def test_slugify_caps_length_without_trailing_dash(self):
        slug = slugify("abcd efgh", max_length=5)
        assert slug == "abcd"


class TestBatchIds:
    """Test batch id sanitizing and branch naming."""

    def test_ticket_ids_are_kept(self):
        assert is_ticket_id("PROJ-123")
        assert sanitize_batch_id("PROJ-123") == "PROJ-123"

    def test_other_ids_are_slugified(self):
        assert not is_ticket_id("proj-123")
        assert sanitize_batch_id("My Feature") == "my-feature"

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            sanitize_batch_id("___")

    def test_branch_name(self):
        assert branch_name_for("My Feature", "feature") == "feature/my-feature"


class TestSessionNameCodec:
    """Test the reversible session name mapping."""

    @pytest.fixture
    def codec(self):
        return SessionNameCodec("taskmux")

    def test_encode_batch_and_task(self, codec):
        assert codec.encode("proj1") == "taskmux_proj1"
        assert codec.encode("proj1", "fix-bug") == "taskmux_proj1_fix-bug"

    @pytest.mark.parametrize(
        "batch_id,task",
        [("proj1", None), ("proj1", "fix-bug"), ("PROJ-42", "a-b-c"), ("x", "y")],
    )
    def test_decode_reverses_encode(self, codec, batch_id, task):
        assert codec.decode(codec.encode(batch_id, task)) == (batch_id, task)

    def test_decode_foreign_names(self, codec):
        assert codec.decode("other_proj1") is None
        assert codec.decode("taskmux_a_b_c") is None
        assert codec.decode("taskmux_Bad Name") is None

    def test_session_id_round_trip(self, codec):
        assert codec.encode_id("proj1_fix-bug") == "taskmux_proj1_fix-bug"
        assert codec.decode_id("taskmux_proj1_fix-bug") == "proj1_fix-bug"

    def test_encode_rejects_separator_in_parts(self, codec):
        with pytest.raises(ValidationError):
            codec.encode("proj_1")

    def test_encode_id_rejects_invalid(self, codec):
        with pytest.raises(ValidationError):
            codec.encode_id("a_b_c")

    def test_prefix_must_not_contain_separator(self):
        with pytest.raises(ValidationError):
            SessionNameCodec("task_mux")
