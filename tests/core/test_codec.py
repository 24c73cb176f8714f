"""
Tests for the topic entry naming convention.
"""

import pytest

from gitbroker.core.codec import (
    CHECKPOINT_EVENT,
    Checkpoint,
    Message,
    decode_entry,
    encode_file_name,
    is_checkpoint_name,
    parse_file_name,
    sort_key,
)


class TestEncoding:
    """Test building file names."""

    def test_message_file_name(self):
        """Test a message names its own file."""
        message = Message(order_key=1234, node="PING-NODE", event="PING", body="{}")

        assert message.file_name == "1234_PING-NODE_PING.json"

    def test_checkpoint_file_name(self):
        """Test a checkpoint uses the reserved event."""
        checkpoint = Checkpoint(order_key=1234, node="PONG-NODE")

        assert checkpoint.file_name == f"1234_PONG-NODE_{CHECKPOINT_EVENT}.json"

    def test_node_may_contain_underscore(self):
        """Test nodes with underscores survive a round trip."""
        name = encode_file_name(7, "node_a", "PING")

        assert parse_file_name(name) == (7, "node_a", "PING")

    @pytest.mark.parametrize("event", ["", "MY_EVENT", "a/b"])
    def test_invalid_event(self, event):
        """Test events that cannot be decoded are rejected."""
        with pytest.raises(ValueError):
            encode_file_name(1, "node", event)

    @pytest.mark.parametrize("node", ["", "a/b", "a\\b"])
    def test_invalid_node(self, node):
        """Test nodes that are not plain file name parts are rejected."""
        with pytest.raises(ValueError):
            encode_file_name(1, node, "PING")

    def test_negative_order_key(self):
        """Test negative keys are rejected."""
        with pytest.raises(ValueError):
            encode_file_name(-1, "node", "PING")


class TestDecoding:
    """Test reading file names back."""

    @pytest.mark.parametrize("name", [
        "README.md",
        "notes.json",
        "abc_node_PING.json",
        "12_PING.json",
        "12__PING.json",
    ])
    def test_malformed_names(self, name):
        """Test names outside the convention are rejected."""
        with pytest.raises(ValueError):
            parse_file_name(name)

    def test_decode_message(self):
        """Test decoding a message keeps the exact file name and body."""
        entry = decode_entry("30_PING-NODE_PING.json", '{"n": 1}')

        assert isinstance(entry, Message)
        assert entry.order_key == 30
        assert entry.node == "PING-NODE"
        assert entry.event == "PING"
        assert entry.body == '{"n": 1}'
        assert entry.file_name == "30_PING-NODE_PING.json"

    def test_decode_checkpoint(self):
        """Test decoding a checkpoint."""
        entry = decode_entry("40_PONG-NODE_OK.json", "PROCESSED")

        assert isinstance(entry, Checkpoint)
        assert entry.node == "PONG-NODE"

    def test_is_checkpoint_name(self):
        """Test checkpoint detection, optionally for one node."""
        assert is_checkpoint_name("40_PONG-NODE_OK.json")
        assert is_checkpoint_name("40_PONG-NODE_OK.json", "PONG-NODE")
        assert not is_checkpoint_name("40_PONG-NODE_OK.json", "PING-NODE")
        assert not is_checkpoint_name("40_PONG-NODE_PING.json")
        assert not is_checkpoint_name("garbage.json")


class TestSortKey:
    """Test listing order."""

    def test_numeric_order(self):
        """Test keys sort as numbers, not text."""
        names = ["100_a_PING.json", "9_a_PING.json", "20_a_PING.json"]

        assert sorted(names, key=sort_key) == [
            "9_a_PING.json",
            "20_a_PING.json",
            "100_a_PING.json",
        ]

    def test_messages_before_checkpoint_at_same_key(self):
        """Test a checkpoint sorts after messages sharing its key."""
        names = ["20_b_OK.json", "20_a_PING.json"]

        assert sorted(names, key=sort_key) == ["20_a_PING.json", "20_b_OK.json"]

    def test_invalid_names_sort_first(self):
        """Test undecodable names sort before every entry."""
        assert sort_key("junk.json")[0] == -1
