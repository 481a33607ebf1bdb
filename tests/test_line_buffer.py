"""Tests for the incremental line buffer."""

from playground_proxy.parsers import LineBuffer


def test_holds_partial_line_until_delimiter():
    buffer = LineBuffer()

    assert buffer.feed(b'0:"Hel') == []
    assert buffer.pending_size == len(b'0:"Hel')
    assert buffer.feed(b'lo"\n0:"x') == ['0:"Hello"']
    assert buffer.flush() == '0:"x'
    assert buffer.pending_size == 0


def test_empties_buffer_up_to_last_delimiter():
    buffer = LineBuffer()

    lines = buffer.feed(b"a\nb\n\nc\n")

    assert lines == ["a", "b", "", "c"]
    assert buffer.pending_size == 0
    assert buffer.flush() is None


def test_strips_carriage_returns():
    buffer = LineBuffer()

    assert buffer.feed(b"data: 1\r\n\r\n") == ["data: 1", ""]


def test_reassembles_multibyte_character_split_across_chunks():
    encoded = '0:"héllo ✓"\n'.encode("utf-8")
    split_at = encoded.index("✓".encode("utf-8")) + 1
    buffer = LineBuffer()

    first = buffer.feed(encoded[:split_at])
    second = buffer.feed(encoded[split_at:])

    assert first == []
    assert second == ['0:"héllo ✓"']


def test_empty_chunk_is_noop():
    buffer = LineBuffer()

    assert buffer.feed(b"") == []
    assert buffer.flush() is None
