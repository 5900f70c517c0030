import pytest

from relay_core.chatbot.mailbox import Mailbox
from relay_core.domain.exceptions import StreamDecodeError
from relay_core.providers.stream_decoder import StreamDecoder, extract_delta


def test_decode_simple_delta_frames():
    frames = [
        'data: {"delta":"Hi"}\n',
        'data: {"delta":" there"}\n',
        "data: [DONE]\n",
    ]
    decoder = StreamDecoder(frames)
    assert "".join(decoder.iter_deltas()) == "Hi there"
    assert decoder.finished
    assert not decoder.timed_out


def test_decode_openai_chunks():
    frames = [
        'data: {"choices": [{"index": 0, "delta": {"role": "assistant"}}]}',
        "",
        'data: {"choices": [{"index": 0, "delta": {"content": "hel"}}]}',
        "",
        'data: {"choices": [{"index": 0, "delta": {"content": "lo"}, "finish_reason": "stop"}]}',
        "data: [DONE]",
    ]
    assert "".join(StreamDecoder(frames).iter_deltas()) == "hello"


def test_too_many_empty_messages():
    decoder = StreamDecoder([": keep-alive\n"] * 11)
    with pytest.raises(StreamDecodeError) as exc:
        list(decoder.iter_deltas())
    assert exc.value.code == "TOO_MANY_EMPTY_MESSAGES"
    assert not decoder.finished


def test_empty_counter_resets_on_valid_frame():
    frames = ["noise"] * 10 + ['data: {"delta":"a"}'] + ["noise"] * 10 + ['data: {"delta":"b"}', "data: [DONE]"]
    assert "".join(StreamDecoder(frames).iter_deltas()) == "ab"


def test_bytes_frames_are_decoded():
    frames = ['data: {"delta":"你好"}'.encode("utf-8"), b"data: [DONE]"]
    assert "".join(StreamDecoder(frames).iter_deltas()) == "你好"


def test_wall_clock_cap_stops_without_done():
    ticks = iter([0.0, 30.0, 61.0])

    def frames():
        while True:
            yield 'data: {"delta":"x"}'

    decoder = StreamDecoder(frames(), max_wait=60.0, clock=lambda: next(ticks))
    assert "".join(decoder.iter_deltas()) == "xx"
    assert decoder.timed_out
    assert not decoder.finished


def test_consume_delivers_text():
    mailbox = Mailbox()
    text = StreamDecoder(['data: {"delta":"Hi"}', "data: [DONE]"]).consume(mailbox)
    assert text == "Hi"
    assert mailbox.receive(timeout=0) == "Hi"


def test_consume_closes_mailbox_when_nothing_decoded():
    mailbox = Mailbox()
    text = StreamDecoder(["bad"] * 11).consume(mailbox)
    assert text == ""
    assert mailbox.closed
    assert mailbox.receive(timeout=0) == ""


def test_consume_keeps_partial_text_on_malformed_frame():
    mailbox = Mailbox()
    StreamDecoder(['data: {"delta":"part"}', "data: {not json"]).consume(mailbox)
    assert mailbox.receive(timeout=0) == "part"


def test_consume_drops_result_when_mailbox_full():
    mailbox = Mailbox()
    assert mailbox.offer("earlier")
    text = StreamDecoder(['data: {"delta":"late"}', "data: [DONE]"]).consume(mailbox)
    assert text == "late"
    assert mailbox.receive(timeout=0) == "earlier"


def test_extract_delta_ignores_unknown_shapes():
    assert extract_delta([1, 2]) == ""
    assert extract_delta({"delta": {"content": None}}) == ""
    assert extract_delta({"choices": [{"delta": {"content": "a"}}, {"delta": {"content": "b"}}]}) == "ab"
