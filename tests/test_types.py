from tinymcap.types import Channel, Message, Metadata, Schema


def test_channels_are_hashable_values():
    schema = Schema("Pose", "jsonschema", b"{}")
    first = Channel("/pose", "json", schema, {"frame": "map", "rate": "10"}, id=0)
    second = Channel("/pose", "json", Schema("Pose", "jsonschema", b"{}", id=4), {"rate": "10", "frame": "map"}, id=3)
    assert first == second
    assert hash(first) == hash(second)
    assert len({first, second, Channel("/pose", "json", schema)}) == 2

    counts = {first: 1}
    counts[second] += 1
    assert counts == {first: 2}


def test_messages_are_hashable():
    channel = Channel("/log", "text", metadata={"level": "info"})
    message = Message(channel, 0, 1, 2, b"hello")
    assert hash(message) == hash(Message(Channel("/log", "text", metadata={"level": "info"}), 0, 1, 2, b"hello"))
    assert message in {message}


def test_metadata_is_hashable():
    assert hash(Metadata("run", {"a": "1", "b": "2"})) == hash(Metadata("run", {"b": "2", "a": "1"}))
    assert len({Metadata("run"), Metadata("run", {"a": "1"})}) == 2
