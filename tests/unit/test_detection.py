import magic

from filevault.detection import TypeDetector, is_meaningful


def test_content_wins_over_extension():
    detector = TypeDetector()
    assert detector.detect(b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n", "notes.txt") == "application/pdf"
    assert detector.detect(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR", None) == "image/png"
    assert detector.detect(b"GIF89a\x01\x00\x01\x00", "x.bin") == "image/gif"


def test_extension_refines_generic_text():
    detector = TypeDetector()
    assert detector.detect(b"plain words", None) == "text/plain"
    assert detector.detect(b"a,b\n1,2\n", "table.csv") == "text/csv"
    assert detector.detect(b"hello", "a.txt") == "text/plain"


def test_unknown_binary_is_none():
    assert TypeDetector().detect(b"\x00\x01\x02\x03", "blob") is None
    assert TypeDetector().detect(b"", None) is None


def test_empty_head_uses_extension():
    assert TypeDetector().detect(b"", "photo.png") == "image/png"


def test_libmagic_failure_falls_back_to_extension(monkeypatch):
    def broken(buffer, mime=False):
        raise magic.MagicException("corrupt magic database")

    monkeypatch.setattr(magic, "from_buffer", broken)
    assert TypeDetector().detect(b"%PDF-1.7", "doc.pdf") == "application/pdf"
    assert TypeDetector().detect(b"%PDF-1.7", None) is None


def test_is_meaningful():
    assert is_meaningful("text/plain")
    assert not is_meaningful(None)
    assert not is_meaningful("  ")
    assert not is_meaningful("Application/Octet-Stream")
