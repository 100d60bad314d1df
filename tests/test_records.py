"""
Unit Tests for Record Validation

RULE: Missing required fields raise RecordValidationError.
"""

from datetime import datetime, timezone

import pytest

from firehose_indexer.errors import RecordValidationError
from firehose_indexer.records import (
    COMMUNITY_DEFINITION_COLLECTION,
    MOD_ACTION_COLLECTION,
    POST_COLLECTION,
    VOTE_COLLECTION,
    CommunityRecord,
    FlairRecord,
    ModActionRecord,
    PostRecord,
    VoteRecord,
    decode_record,
    parse_datetime,
)

COMMUNITY_URI = "at://did:plc:alice/mlcommons.community.community/python"


class TestPostRecord:

    def test_minimal_post(self):
        record = decode_record(POST_COLLECTION, {
            "text": "hello",
            "communityRef": {"uri": COMMUNITY_URI},
            "createdAt": "2024-06-01T10:00:00.000Z",
        })

        assert isinstance(record, PostRecord)
        assert record.community_uri == COMMUNITY_URI
        assert record.created_at == datetime(2024, 6, 1, 10, tzinfo=timezone.utc)
        assert not record.is_reply

    def test_reply_root_defaults_to_parent(self):
        record = PostRecord.from_payload({
            "text": "re",
            "communityRef": COMMUNITY_URI,
            "createdAt": "2024-06-01T10:00:00Z",
            "reply": {"parent": {"uri": "at://parent"}},
            "tags": ["a", "b"],
            "embed": {"type": "link", "url": "https://example.com"},
        })

        assert record.reply_parent == "at://parent"
        assert record.reply_root == "at://parent"
        assert record.tags == ("a", "b")
        assert record.embed_type == "link"

    @pytest.mark.parametrize("payload", [
        {"communityRef": COMMUNITY_URI, "createdAt": "2024-06-01T10:00:00Z"},
        {"text": "x", "createdAt": "2024-06-01T10:00:00Z"},
        {"text": "x", "communityRef": COMMUNITY_URI},
        {"text": "x", "communityRef": COMMUNITY_URI, "createdAt": "yesterday"},
        {"text": "x", "communityRef": COMMUNITY_URI, "createdAt": "2024-06-01T10:00:00Z", "tags": "a"},
    ])
    def test_invalid_posts(self, payload):
        with pytest.raises(RecordValidationError):
            PostRecord.from_payload(payload)


class TestVoteRecord:

    def test_vote(self):
        record = decode_record(VOTE_COLLECTION, {
            "subject": {"uri": "at://p", "cid": "bafy"},
            "direction": "down",
            "createdAt": "2024-06-01T10:00:00Z",
        })

        assert isinstance(record, VoteRecord)
        assert record.value == -1

    def test_invalid_direction(self):
        with pytest.raises(RecordValidationError, match="direction"):
            VoteRecord.from_payload({"subject": "at://p", "direction": "sideways", "createdAt": "2024-06-01T10:00:00Z"})


class TestCommunityRecord:

    def test_definition_alias_and_defaults(self):
        record = decode_record(COMMUNITY_DEFINITION_COLLECTION, {"name": "python"})

        assert isinstance(record, CommunityRecord)
        assert record.visibility == "public"
        assert record.post_permissions == "anyone"
        assert record.created_at is None

    def test_invalid_visibility(self):
        with pytest.raises(RecordValidationError):
            CommunityRecord.from_payload({"visibility": "secret"})


class TestModActionRecord:

    def test_post_action_requires_subject(self):
        with pytest.raises(RecordValidationError, match="subject"):
            decode_record(MOD_ACTION_COLLECTION, {"community": COMMUNITY_URI, "action": "remove_post"})

    def test_user_action(self):
        record = ModActionRecord.from_payload({
            "community": COMMUNITY_URI,
            "action": "ban_user",
            "targetUser": "did:plc:troll",
            "reason": "spam",
        })

        assert record.target_user_did == "did:plc:troll"
        assert record.target_post_uri is None


class TestDecodeRecord:

    def test_unknown_collection(self):
        assert decode_record("app.bsky.feed.like", {"x": 1}) is None

    def test_missing_payload(self):
        with pytest.raises(RecordValidationError):
            decode_record(POST_COLLECTION, None)

    def test_parse_datetime_offset(self):
        parsed = parse_datetime("2024-06-01T12:00:00+02:00")

        assert parsed == datetime(2024, 6, 1, 10, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value,microsecond", [
        ("2024-06-01T10:00:00.1Z", 100000),
        ("2024-06-01T10:00:00.12345Z", 123450),
        ("2024-06-01T10:00:00.123456789Z", 123456),
    ])
    def test_parse_datetime_fraction_widths(self, value, microsecond):
        parsed = parse_datetime(value)

        assert parsed == datetime(2024, 6, 1, 10, 0, 0, microsecond, tzinfo=timezone.utc)


class TestFlairRecord:

    @pytest.mark.parametrize("raw,expected", [
        (True, True),
        (False, False),
        ("false", False),
        ("true", False),
        (None, False),
    ])
    def test_mod_only_requires_boolean_true(self, raw, expected):
        payload = {"community": COMMUNITY_URI, "name": "Question"}
        if raw is not None:
            payload["isModOnly"] = raw

        assert FlairRecord.from_payload(payload).is_mod_only is expected
