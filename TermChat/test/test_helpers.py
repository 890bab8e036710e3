import pytest

from TermChat.core.message.protocol import EventType
from TermChat.core.server.interfaces import StoredMessage
from TermChat.core.server.utils.helpers import (
    create_disconnect_notice,
    create_dm_event,
    create_error_event,
    create_room_message_event,
    create_status_event,
    escape_html,
    is_valid_message,
    is_valid_room_name,
    is_valid_username,
    sanitize_text,
    serialize_history,
)


class TestValidators:

    @pytest.mark.parametrize("name", ["bob", "alice_99", "A" * 50])
    def test_valid_usernames(self, name):
        assert is_valid_username(name)

    @pytest.mark.parametrize("name", ["ab", "A" * 51, "bad-name", "with space", "", None, 42])
    def test_invalid_usernames(self, name):
        assert not is_valid_username(name)

    @pytest.mark.parametrize("name", ["general", "dev-ops", "room_1", "r" * 100])
    def test_valid_room_names(self, name):
        assert is_valid_room_name(name)

    @pytest.mark.parametrize("name", ["ab", "r" * 101, "no spaces", "semi;colon", None])
    def test_invalid_room_names(self, name):
        assert not is_valid_room_name(name)

    def test_message_bounds(self):
        assert is_valid_message("hi")
        assert is_valid_message("x" * 1000)
        assert not is_valid_message("x" * 1001)
        assert not is_valid_message("   ")
        assert not is_valid_message(None)
        assert not is_valid_message("abcdef", max_length=5)


class TestSanitize:

    def test_escape_html(self):
        assert escape_html("<a href=\"x\">'&'</a>") == "&lt;a href=&quot;x&quot;&gt;&#x27;&amp;&#x27;&lt;/a&gt;"

    def test_script_and_iframe_blocks_are_removed(self):
        text = "a<script>steal()</script>b<iframe src='x'></iframe>c"

        assert sanitize_text(text) == "abc"

    def test_inline_handlers_are_removed(self):
        assert "onerror" not in sanitize_text('<img src=x onerror="alert(1)">')

    def test_plain_text_is_untouched(self):
        assert sanitize_text("hello world") == "hello world"


class TestEventFactories:

    def setup_method(self):
        self.room_message = StoredMessage(1, "alice", "hi", 10.0, room="general")
        self.direct_message = StoredMessage(2, "alice", "yo", 11.0, recipient="bob")

    def test_room_message_event(self):
        event = create_room_message_event(self.room_message)

        assert event.type is EventType.ROOM_MESSAGE
        assert event.data == {"room": "general", "user": "alice", "msg": "hi", "timestamp": 10.0}

    def test_dm_event(self):
        event = create_dm_event(self.direct_message)

        assert event.data == {"from": "alice", "to": "bob", "msg": "yo", "timestamp": 11.0}

    def test_status_and_notices(self):
        assert create_status_event("bob", False).data == {"username": "bob", "status": "offline"}
        notice = create_disconnect_notice(EventType.DM_USER_DISCONNECT, "bob", 5.0)
        assert notice.type is EventType.DM_USER_DISCONNECT
        assert notice.data == {"username": "bob", "timestamp": 5.0}

    def test_error_event(self):
        assert create_error_event("nope").data == {"kind": "validation", "msg": "nope"}

    def test_serialize_history(self):
        assert serialize_history([self.room_message]) == [{
            "id": 1, "from": "alice", "to": None, "room": "general", "text": "hi", "timestamp": 10.0,
        }]
