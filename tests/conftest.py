import json

import pytest

import bookmarkBackup


class FakeRequest:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def execute(self):
        if self.error is not None:
            raise self.error
        return self.result


class FakeFiles:
    def __init__(self, drive):
        self.drive = drive

    def list(self, **kwargs):
        self.drive.calls.append(("list", kwargs))
        return FakeRequest({"files": self.drive.existing}, self.drive.list_error)

    def create(self, body, media_body, fields):
        self.drive.calls.append(("create", {"body": body, "fields": fields}))
        self.drive.media.append(media_body)
        self.drive.uploads.append(_read_media(media_body))
        return FakeRequest(
            {"id": "new-id", "name": body["name"], "webContentLink": "https://drive.example/new-id"},
            self.drive.upload_error,
        )

    def update(self, fileId, body, media_body, fields):
        self.drive.calls.append(("update", {"fileId": fileId, "body": body, "fields": fields}))
        self.drive.media.append(media_body)
        self.drive.uploads.append(_read_media(media_body))
        return FakeRequest(
            {"id": fileId, "name": "my_bookmarks_backup.json", "modifiedTime": "2026-01-01T00:00:00Z"},
            self.drive.upload_error,
        )


def _read_media(media):
    return media.getbytes(0, media.size())


class FakeDrive:
    """Records the Drive v3 calls the backup makes."""

    def __init__(self, existing=None, list_error=None, upload_error=None):
        self.existing = existing or []
        self.list_error = list_error
        self.upload_error = upload_error
        self.calls = []
        self.uploads = []
        self.media = []

    def files(self):
        return FakeFiles(self)

    def called(self, name):
        return [kwargs for call, kwargs in self.calls if call == name]

    def uploaded_json(self, index=-1):
        return json.loads(self.uploads[index].decode("utf-8"))


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def three_bookmarks():
    return [
        bookmarkBackup.Bookmark("Python", "https://python.org", "Dev"),
        bookmarkBackup.Bookmark("News", "https://news.example.com", "Personal"),
        bookmarkBackup.Bookmark("Docs", "https://docs.example.com", "Work"),
    ]


@pytest.fixture
def make_drive():
    return FakeDrive
