from __future__ import annotations

from attachment_lite.features.attachments import Attachment, as_attachment_list, serialize_attachment_value


def test_from_bytes_starts_unpersisted_with_source():
    attachment = Attachment.from_bytes(b"\x89PNG-data", filename="Cat.PNG")

    assert attachment.is_persisted is False
    assert attachment.has_pending_source is True
    assert attachment.source == b"\x89PNG-data"
    assert attachment.size == 9
    assert attachment.extension == "png"
    assert attachment.mime_type == "image/png"
    assert attachment.original_name == "Cat.PNG"
    assert attachment.name.endswith(".png")
    assert attachment.name != "Cat.PNG"


def test_from_bytes_generates_unique_names():
    names = {Attachment.from_bytes(b"x", filename="a.txt").name for _ in range(50)}
    assert len(names) == 50


def test_from_bytes_falls_back_to_content_type_for_extension():
    attachment = Attachment.from_bytes(b"%PDF", content_type="application/pdf")

    assert attachment.extension == "pdf"
    assert attachment.mime_type == "application/pdf"
    assert attachment.original_name is None


def test_from_db_is_persisted_without_source():
    attachment = Attachment.from_db(
        {"name": "abc.jpeg", "size": 10, "mimeType": "image/jpeg", "extension": "jpeg"}
    )

    assert attachment.is_persisted is True
    assert attachment.source is None
    assert attachment.has_pending_source is False
    assert attachment.url is None


def test_to_object_never_includes_url():
    attachment = Attachment.from_bytes(b"abc", filename="notes.txt")
    attachment.url = "/uploads/notes.txt"

    stored = attachment.to_object()

    assert "url" not in stored
    assert "is_persisted" not in stored
    assert stored["mimeType"] == "text/plain"
    assert stored["originalName"] == "notes.txt"
    assert set(stored) == {"name", "originalName", "size", "mimeType", "extension"}


def test_to_json_includes_url_only_when_set():
    attachment = Attachment.from_bytes(b"abc", filename="notes.txt")
    assert "url" not in attachment.to_json()

    attachment.url = "/uploads/x.txt"
    assert attachment.to_json()["url"] == "/uploads/x.txt"


def test_round_trip_drops_source_and_url():
    original = Attachment.from_bytes(b"hello", filename="hello.txt")
    original.url = "/uploads/hello.txt"

    restored = Attachment.from_db(original.to_object())

    assert restored.name == original.name
    assert restored.size == original.size
    assert restored.mime_type == original.mime_type
    assert restored.extension == original.extension
    assert restored.original_name == original.original_name
    assert restored.url is None
    assert restored.source is None


def test_mark_pending_only_applies_to_values_with_source():
    written = Attachment.from_bytes(b"data", filename="a.bin")
    written.mark_written()
    assert written.has_pending_source is False

    written.mark_pending()
    assert written.has_pending_source is True

    loaded = Attachment.from_db({"name": "b.bin", "size": 1})
    loaded.mark_pending()
    assert loaded.is_persisted is True


def test_release_source_after_write():
    attachment = Attachment.from_bytes(b"data", filename="a.bin")
    attachment.release_source()
    assert attachment.source == b"data"

    attachment.mark_written()
    attachment.release_source()
    assert attachment.source is None


def test_value_helpers_handle_empty_single_and_list():
    first = Attachment.from_db({"name": "a.txt", "size": 1})
    second = Attachment.from_db({"name": "b.txt", "size": 2})

    assert as_attachment_list(None) == []
    assert as_attachment_list(first) == [first]
    assert as_attachment_list([first, None, second]) == [first, second]

    assert serialize_attachment_value(None) is None
    assert serialize_attachment_value(first) == {
        "name": "a.txt",
        "size": 1,
        "mimeType": "application/octet-stream",
        "extension": "",
    }
    assert [item["name"] for item in serialize_attachment_value([first, second])] == ["a.txt", "b.txt"]
