from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from filevault.models import DownloadLink, FileEntry, Visibility
from filevault.repository import CONTENT, FILENAME, TOKEN, StaleVersion, UniquenessViolation, utcnow, violated_constraint


def make_entry(owner="u1", name="a.txt", sha="0" * 64, key="aa/bb/key"):
    entry = FileEntry(
        owner_id=owner,
        content_type="text/plain",
        size=5,
        visibility=Visibility.PRIVATE,
        tags=[],
        blob_key=key,
        content_sha256=sha,
    )
    entry.set_filename(name)
    return entry


@pytest.mark.parametrize(
    "message, expected",
    [
        ("UNIQUE constraint failed: files.owner_id, files.content_sha256", CONTENT),
        ("UNIQUE constraint failed: files.owner_id, files.filename_lc", FILENAME),
        ("UNIQUE constraint failed: download_links.token", TOKEN),
        ('duplicate key value violates unique constraint "uniq_owner_sha256"', CONTENT),
        ("Duplicate entry 'u1-a.txt' for key 'uniq_owner_filename'", FILENAME),
        (
            'duplicate key value violates unique constraint "uniq_owner_filename"\n'
            "DETAIL:  Key (owner_id, filename_lc)=(u1, content_sha256.txt) already exists.",
            FILENAME,
        ),
        ("Duplicate entry 'u1-uniq_owner_sha256.txt' for key 'files.uniq_owner_filename'", FILENAME),
        ("NOT NULL constraint failed: files.filename_lc", None),
    ],
)
def test_violated_constraint(message, expected):
    exc = IntegrityError("INSERT ...", {}, Exception(message))
    assert violated_constraint(exc) == expected


class _Diag:
    constraint_name = "uniq_owner_sha256"


class _PgError(Exception):
    diag = _Diag()


def test_violated_constraint_prefers_reported_constraint_name():
    exc = IntegrityError("INSERT ...", {}, _PgError("duplicate key value violates unique constraint"))
    assert violated_constraint(exc) == CONTENT


def test_filename_clash_named_like_a_column_is_still_a_filename_clash(service):
    service.files.insert(make_entry(name="content_sha256.txt", sha="1" * 64))
    with pytest.raises(UniquenessViolation) as clash:
        service.files.insert(make_entry(name="Content_SHA256.txt", sha="2" * 64))
    assert clash.value.constraint == FILENAME


def test_insert_assigns_id_and_defaults(service):
    entry = service.files.insert(make_entry())
    assert len(entry.id) == 32
    assert entry.version == 1
    assert entry.created_at is not None
    assert service.files.get(entry.id).filename == "a.txt"


def test_insert_enforces_owner_scoped_uniqueness(service):
    service.files.insert(make_entry(name="A.txt", sha="1" * 64))

    with pytest.raises(UniquenessViolation) as name_clash:
        service.files.insert(make_entry(name="a.TXT", sha="2" * 64))
    assert name_clash.value.constraint == FILENAME

    with pytest.raises(UniquenessViolation) as content_clash:
        service.files.insert(make_entry(name="b.txt", sha="1" * 64))
    assert content_clash.value.constraint == CONTENT

    service.files.insert(make_entry(owner="u2", name="a.txt", sha="1" * 64))


def test_advisory_finders(service):
    entry = service.files.insert(make_entry(name="Doc.md", sha="3" * 64))
    assert service.files.find_by_owner_and_name_lower("u1", "doc.md").id == entry.id
    assert service.files.find_by_owner_and_digest("u1", "3" * 64).id == entry.id
    assert service.files.find_by_owner_and_digest("u2", "3" * 64) is None


def test_update_with_version_check(service):
    entry = service.files.insert(make_entry())
    updated = service.files.update_with_version_check(entry, filename="b.txt", filename_lc="b.txt")
    assert updated.version == 2
    assert updated.filename == "b.txt"

    with pytest.raises(StaleVersion):
        service.files.update_with_version_check(entry, filename="c.txt", filename_lc="c.txt")


def test_update_rejects_name_collision(service):
    service.files.insert(make_entry(name="taken.txt", sha="4" * 64))
    entry = service.files.insert(make_entry(name="free.txt", sha="5" * 64))
    with pytest.raises(UniquenessViolation) as exc_info:
        service.files.update_with_version_check(entry, filename="Taken.txt", filename_lc="taken.txt")
    assert exc_info.value.constraint == FILENAME
    assert service.files.get(entry.id).version == 1


def test_link_token_unique_and_counter(service):
    service.links.insert(DownloadLink(token="t" * 32, file_id="f1", created_by="u1"))
    with pytest.raises(UniquenessViolation) as exc_info:
        service.links.insert(DownloadLink(token="t" * 32, file_id="f2", created_by="u1"))
    assert exc_info.value.constraint == TOKEN

    service.links.increment_access_count("t" * 32)
    service.links.increment_access_count("t" * 32)
    assert service.links.find_by_token("t" * 32).access_count == 2


def test_purge_expired_links(service):
    now = utcnow()
    service.links.insert(DownloadLink(token="old", file_id="f1", created_by="u1", expires_at=now - timedelta(minutes=1)))
    service.links.insert(DownloadLink(token="new", file_id="f1", created_by="u1", expires_at=now + timedelta(hours=1)))
    service.links.insert(DownloadLink(token="forever", file_id="f1", created_by="u1"))

    assert service.links.purge_expired(now) == 1
    assert service.links.find_by_token("old") is None
    assert service.links.find_by_token("new") is not None
    assert service.links.find_by_token("forever") is not None


def test_delete_by_file_id_and_delete_by_id(service):
    entry = service.files.insert(make_entry())
    service.links.insert(DownloadLink(token="x1", file_id=entry.id, created_by="u1"))
    service.links.insert(DownloadLink(token="x2", file_id=entry.id, created_by="u1"))

    assert service.links.delete_by_file_id(entry.id) == 2
    assert service.files.delete_by_id(entry.id) is True
    assert service.files.delete_by_id(entry.id) is False
