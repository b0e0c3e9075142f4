import io

import pytest

from filevault.errors import DuplicateFilenameError, NotFoundError, StaleUpdateError, ValidationError


def upload(service, owner, name, data):
    return service.upload(owner, name, None, None, None, io.BytesIO(data))


def test_rename_updates_name_and_version(service):
    result = upload(service, "u1", "a.txt", b"1")
    updated = service.rename("u1", result.file_id, "  b.txt ")
    assert updated.filename == "b.txt"
    assert updated.filename_lc == "b.txt"
    assert updated.version == 2
    assert updated.updated_at is not None


def test_case_only_change_skips_lookup(service, monkeypatch):
    result = upload(service, "u1", "A.txt", b"1")

    def forbidden(*args):
        raise AssertionError("case-only rename must not look up other names")

    monkeypatch.setattr(service.files, "find_by_owner_and_name_lower", forbidden)
    updated = service.rename("u1", result.file_id, "a.txt")
    assert updated.filename == "a.txt"
    assert updated.version == 2


def test_identical_name_is_noop(service):
    result = upload(service, "u1", "a.txt", b"1")
    same = service.rename("u1", result.file_id, "a.txt")
    assert same.version == 1


def test_rename_to_taken_name(service):
    upload(service, "u1", "taken.txt", b"1")
    result = upload(service, "u1", "mine.txt", b"2")
    with pytest.raises(DuplicateFilenameError):
        service.rename("u1", result.file_id, "TAKEN.txt")


def test_name_taken_by_other_owner_is_fine(service):
    upload(service, "u2", "shared.txt", b"1")
    result = upload(service, "u1", "mine.txt", b"2")
    assert service.rename("u1", result.file_id, "shared.txt").filename == "shared.txt"


@pytest.mark.parametrize("name", ["", "  ", "a/b.txt", "a\\b.txt"])
def test_invalid_names(service, name):
    result = upload(service, "u1", "a.txt", b"1")
    with pytest.raises(ValidationError):
        service.rename("u1", result.file_id, name)


def test_other_owner_and_missing_file(service):
    result = upload(service, "u1", "a.txt", b"1")
    with pytest.raises(NotFoundError):
        service.rename("u2", result.file_id, "b.txt")
    with pytest.raises(NotFoundError):
        service.rename("u1", "missing", "b.txt")


def test_stale_snapshot_is_rejected(service, monkeypatch):
    result = upload(service, "u1", "a.txt", b"1")
    snapshot = service.files.get(result.file_id)
    service.rename("u1", result.file_id, "b.txt")

    monkeypatch.setattr(service.files, "get", lambda file_id: snapshot)
    with pytest.raises(StaleUpdateError):
        service.rename("u1", result.file_id, "c.txt")

    monkeypatch.undo()
    assert service.files.get(result.file_id).filename == "b.txt"


def test_rename_of_concurrently_deleted_file(service, monkeypatch):
    result = upload(service, "u1", "a.txt", b"1")
    snapshot = service.files.get(result.file_id)
    service.delete("u1", result.file_id)

    calls = iter([snapshot, None])
    monkeypatch.setattr(service.files, "get", lambda file_id: next(calls))
    with pytest.raises(NotFoundError):
        service.rename("u1", result.file_id, "c.txt")
