import pytest

from toolchat.history import TurnHistoryBuffer
from toolchat.models import Message, MessageMetadata, Role


def _streaming(content: str = "") -> Message:
    return Message(role=Role.ASSISTANT, content=content, metadata=MessageMetadata(is_streaming=True))


def test_append_preserves_order_and_rejects_duplicates():
    buffer = TurnHistoryBuffer()
    first = buffer.append(Message(role=Role.USER, content="one"))
    buffer.append(Message(role=Role.ASSISTANT, content="two"))

    assert [m.content for m in buffer] == ["one", "two"]
    with pytest.raises(ValueError):
        buffer.append(first)


def test_deltas_grow_streaming_content():
    buffer = TurnHistoryBuffer()
    message = buffer.append(_streaming())

    for delta in ("a", "b", "c"):
        buffer.append_delta(message.id, delta)

    assert buffer.get(message.id).content == "abc"


def test_streaming_content_is_append_only():
    buffer = TurnHistoryBuffer()
    message = buffer.append(_streaming("hello"))

    with pytest.raises(ValueError, match="append-only"):
        buffer.update_in_place(message.id, content="goodbye")


def test_finalized_message_cannot_change():
    buffer = TurnHistoryBuffer()
    message = buffer.append(_streaming("done"))
    buffer.finalize(message.id, finish_reason="stop")

    assert not buffer.get(message.id).is_streaming
    assert buffer.get(message.id).metadata.finish_reason == "stop"
    with pytest.raises(ValueError, match="finalized"):
        buffer.append_delta(message.id, "more")


def test_update_rejects_unknown_ids_and_fields():
    buffer = TurnHistoryBuffer()
    message = buffer.append(_streaming())

    with pytest.raises(KeyError):
        buffer.update_in_place("missing", content="x")
    with pytest.raises(ValueError, match="Unknown message fields"):
        buffer.update_in_place(message.id, is_streaming=False)


def test_provider_context_skips_streaming_and_empty_messages():
    buffer = TurnHistoryBuffer()
    buffer.append(Message(role=Role.USER, content="question"))
    buffer.append(Message(role=Role.ASSISTANT, content="   "))
    buffer.append(Message(role=Role.ASSISTANT, content="answer"))
    buffer.append(_streaming("in progress"))

    assert buffer.as_provider_context() == [(Role.USER, "question"), (Role.ASSISTANT, "answer")]


def test_remove_drops_message():
    buffer = TurnHistoryBuffer()
    message = buffer.append(Message(role=Role.USER, content="x"))

    assert buffer.remove(message.id) is True
    assert buffer.remove(message.id) is False
    assert len(buffer) == 0
