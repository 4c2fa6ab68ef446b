"""Tests for list_conversations functionality."""

from list_conversations import (
    format_conversation_info,
    matches_partners,
    partner_names,
)

BLOG = "me.tumblr.com"


def conversation(*names, **extra):
    data = {"id": "c1", "participants": [{"name": n, "uuid": f"t:{n}"} for n in names]}
    data.update(extra)
    return data


class TestPartnerNames:
    """Test partner_names function."""

    def test_excludes_own_blog(self):
        assert partner_names(conversation("me", "alice"), BLOG) == ["alice"]

    def test_group_conversation(self):
        assert partner_names(conversation("alice", "me", "bob"), BLOG) == ["alice", "bob"]

    def test_missing_participants(self):
        assert partner_names({"id": "c1"}, BLOG) == []


class TestMatchesPartners:
    """Test matches_partners function."""

    def test_no_filter_matches_everything(self):
        assert matches_partners(conversation("me", "alice"), BLOG, [])

    def test_case_insensitive_match(self):
        assert matches_partners(conversation("me", "alice"), BLOG, ["Alice"])

    def test_any_partner_matches(self):
        assert matches_partners(conversation("me", "bob"), BLOG, ["alice", "bob"])

    def test_own_blog_does_not_match(self):
        assert not matches_partners(conversation("me", "alice"), BLOG, ["me"])


class TestFormatConversationInfo:
    """Test format_conversation_info function."""

    def test_basic(self):
        result = format_conversation_info(3, conversation("me", "alice"), BLOG)
        assert result.splitlines() == ["Conversation #3", "  ID: c1", "  With: alice"]

    def test_with_activity_and_unread(self):
        result = format_conversation_info(
            1,
            conversation("me", "alice", last_modified_ts=1704096000000, unread_messages_count=2),
            BLOG,
        )
        assert "  Last activity: 2024-01-01 08:00:00 UTC" in result
        assert "  Unread: 2" in result

    def test_self_only(self):
        result = format_conversation_info(1, conversation("me"), BLOG)
        assert "  With: (only you)" in result
