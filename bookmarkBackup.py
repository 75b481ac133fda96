"""
Back up bookmarks to Google Drive

Gathers bookmarks, writes them to a temporary JSON file and uploads it to
Google Drive, updating the previous backup in place when one exists.

Before the first run:
    Create an OAuth client ID ("Desktop app") in the Google Cloud console,
    download it and save it as credentials.json next to this script.

    The first run opens a browser to authorize access. The resulting token
    is cached in tokens/token.json and reused afterwards.

Required pip packages:
    pip install google-api-python-client google-auth google-auth-oauthlib
"""

import os
import sys
import json
import logging
import argparse
import tempfile
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, NamedTuple

try:
    import resource
except ImportError:  # Windows
    resource = None

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload
from httplib2 import HttpLib2Error
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

# ------------------- CONFIGURATION -------------------

APPLICATION_NAME = 'bookmarkBackup/1.0'

# OAuth client secrets downloaded from the Google Cloud console
CREDENTIALS_FILE_PATH = 'credentials.json'
TOKENS_DIRECTORY_PATH = 'tokens'
TOKEN_FILE_NAME = 'token.json'
OAUTH_CALLBACK_PORT = 8888

BACKUP_FILE_NAME = 'my_bookmarks_backup.json'
BACKUP_MIME_TYPE = 'application/json'
FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'

# Only files created by this app are visible to it
SCOPES = ['https://www.googleapis.com/auth/drive.file']

logging.getLogger('googleapiclient.discovery_cache').setLevel(logging.ERROR)

# ------------------- ERRORS -------------------

class BackupError(Exception):
    """Base class for errors that abort a backup run."""

class ConfigurationError(BackupError):
    """Local setup is missing or invalid (e.g. no credentials.json)."""

class AuthError(BackupError):
    """The OAuth2 flow or a token refresh failed."""

class RemoteError(BackupError):
    """A Google Drive API call failed."""

# ------------------- DATA MODEL -------------------

def _now_millis():
    return int(datetime.now(timezone.utc).timestamp() * 1000)

@dataclass
class Bookmark:
    """A single saved link."""
    title: str
    url: str
    folder: str
    created_at: int = field(default_factory=_now_millis)
    tags: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.title or not self.url:
            raise ValueError("Bookmark needs a non-empty title and url")

    def add_tag(self, tag):
        self.tags.append(tag)

    def to_dict(self):
        return {
            'title': self.title,
            'url': self.url,
            'folder': self.folder,
            'createdAt': self.created_at,
            'tags': list(self.tags),
        }

class BackupFile(NamedTuple):
    path: str
    size: int

# ------------------- BOOKMARK SOURCE -------------------

def get_local_bookmarks():
    """
    Return the sample bookmark set.

    Stands in for a real browser reader: anything with the same shape
    (no arguments, returns a list of Bookmark) can be passed to run_backup().
    """
    bookmarks = []
    for i in range(1, 51):
        folder = "Work" if i % 5 == 0 else "Personal"
        bm = Bookmark(
            f"Useful Site #{i}",
            f"https://www.example.com/resource/{i}",
            folder,
        )
        if i % 2 == 0:
            bm.add_tag("Technology")
        if i % 3 == 0:
            bm.add_tag("News")
        bookmarks.append(bm)

    bookmarks.append(Bookmark("Google Drive API Docs", "https://developers.google.com/drive", "Dev"))
    return bookmarks

# ------------------- SERIALIZATION -------------------

@contextmanager
def create_backup_file(bookmarks):
    """
    Write the bookmarks to a temporary JSON file and yield a BackupFile.

    The file is removed when the block exits, whether or not it raised.
    """
    fd, path = tempfile.mkstemp(prefix="bookmark_backup_", suffix=".json")
    try:
        with open(fd, "w", encoding="utf-8") as f:
            json.dump([bm.to_dict() for bm in bookmarks], f, indent=2, ensure_ascii=False)
        size = os.path.getsize(path)
        print(f"[IO] Temporary backup file created at: {path}")
        print(f"[IO] File size: {size} bytes")
        yield BackupFile(path, size)
    finally:
        if os.path.exists(path):
            os.remove(path)

# ------------------- VALIDATION -------------------

def validate_backup(path):
    """
    Cheap sanity check before upload: non-empty and starts like a JSON array.
    This is not a JSON parse.
    """
    try:
        if os.path.getsize(path) == 0:
            return False
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except (OSError, UnicodeDecodeError):
        return False
    return content.lstrip().startswith("[")

def log_backup_stats(count):
    print(f"[INFO] Stats: {count} items processed.")
    if resource is not None:
        peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # ru_maxrss is bytes on macOS, kilobytes elsewhere
        if sys.platform == "darwin":
            peak //= 1024
        print(f"[INFO] Peak memory usage: {peak} KB")

# ------------------- AUTHENTICATION -------------------

def _load_cached_credentials(token_path, scopes):
    if not os.path.exists(token_path):
        return None
    try:
        creds = Credentials.from_authorized_user_file(token_path)
    except (OSError, ValueError) as e:
        print(f"[AUTH] Ignoring unreadable token cache {token_path}: {e}")
        return None
    # A token granted for other scopes needs a new grant, not a refresh
    if not creds.has_scopes(scopes):
        print(f"[AUTH] Cached token in {token_path} does not cover the requested scopes")
        return None
    return creds

def get_drive_service(credentials_path=CREDENTIALS_FILE_PATH,
                      token_dir=TOKENS_DIRECTORY_PATH,
                      port=OAUTH_CALLBACK_PORT,
                      scopes=SCOPES):
    """
    Authorize the user and build a Drive v3 service.

    A cached token is reused (and refreshed if expired). Otherwise the
    installed-app flow is run with a local callback server on `port`, and
    the new token is written to `token_dir`.
    """
    if not os.path.isfile(credentials_path):
        raise ConfigurationError(f"Resource not found: {credentials_path}")

    token_path = os.path.join(token_dir, TOKEN_FILE_NAME)
    creds = _load_cached_credentials(token_path, scopes)

    if creds and creds.valid:
        print(f"[AUTH] Using cached credentials from {token_path}")
    else:
        try:
            if creds and creds.expired and creds.refresh_token:
                print("[AUTH] Refreshing expired credentials...")
                creds.refresh(Request())
            else:
                try:
                    flow = InstalledAppFlow.from_client_secrets_file(credentials_path, scopes)
                except ValueError as e:
                    raise ConfigurationError(f"Invalid client secrets file: {credentials_path}") from e
                creds = flow.run_local_server(port=port, access_type="offline")
        except (OSError, GoogleAuthError, OAuth2Error) as e:
            raise AuthError(f"Authorization failed: {e}") from e

        os.makedirs(token_dir, exist_ok=True)
        with open(token_path, "w", encoding="utf-8") as f:
            f.write(creds.to_json())
        print(f"[AUTH] Credentials saved to {token_dir}")

    return build("drive", "v3", credentials=creds, cache_discovery=False)

# ------------------- GOOGLE DRIVE -------------------

REMOTE_ERRORS = (HttpError, HttpLib2Error, GoogleAuthError, OSError)

def _quote(value):
    return value.replace("\\", "\\\\").replace("'", "\\'")

def search_for_existing_backup(service, backup_name=BACKUP_FILE_NAME):
    """
    Return the id of a non-trashed, non-folder file named `backup_name`, or None.

    When several match, the first one Drive returns wins. Drive does not
    guarantee that order.
    """
    query = (
        f"name = '{_quote(backup_name)}' and trashed = false "
        f"and mimeType != '{FOLDER_MIME_TYPE}'"
    )
    try:
        result = service.files().list(
            q=query,
            spaces="drive",
            fields="nextPageToken, files(id, name, createdTime)",
        ).execute()
    except REMOTE_ERRORS as e:
        raise RemoteError(f"Searching for '{backup_name}' failed: {e}") from e

    files = result.get("files") or []
    if not files:
        return None

    found = files[0]
    print(f"[DRIVE] Located file: {found.get('name')} (Created: {found.get('createdTime')})")
    return found["id"]

def _execute_upload(request_factory, media, action):
    try:
        return request_factory(media).execute()
    except REMOTE_ERRORS as e:
        raise RemoteError(f"{action} failed: {e}") from e
    finally:
        media.stream().close()

def create_new_file(service, local_path, backup_name=BACKUP_FILE_NAME):
    """Upload `local_path` as a new file in the root of the Drive."""
    metadata = {
        'name': backup_name,
        'mimeType': BACKUP_MIME_TYPE,
        'description': "Backup of user bookmarks generated by bookmarkBackup",
    }
    media = MediaFileUpload(local_path, mimetype=BACKUP_MIME_TYPE)
    created = _execute_upload(
        lambda m: service.files().create(body=metadata, media_body=m, fields="id, name, webContentLink"),
        media,
        "Creating the backup file",
    )
    print(f"[DRIVE] New file created. ID: {created.get('id')}")
    print(f"[DRIVE] Download Link: {created.get('webContentLink')}")
    return created

def update_file(service, file_id, local_path):
    """Replace the content of `file_id` with `local_path`."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    metadata = {'description': f"Updated on {stamp}"}
    media = MediaFileUpload(local_path, mimetype=BACKUP_MIME_TYPE)
    updated = _execute_upload(
        lambda m: service.files().update(fileId=file_id, body=metadata, media_body=m,
                                         fields="id, name, modifiedTime"),
        media,
        f"Updating backup file {file_id}",
    )
    print("[DRIVE] File updated successfully.")
    print(f"[DRIVE] New Modified Time: {updated.get('modifiedTime')}")
    return updated

def perform_backup(service, local_path, backup_name=BACKUP_FILE_NAME):
    """Update the existing backup if there is one, create it otherwise."""
    existing_id = search_for_existing_backup(service, backup_name)
    if existing_id is not None:
        print(f"[DRIVE] Found existing backup (ID: {existing_id}). Updating...")
        return update_file(service, existing_id, local_path)
    print("[DRIVE] No existing backup found. Creating new file...")
    return create_new_file(service, local_path, backup_name)

# ------------------- MAIN EXECUTION -------------------

def run_backup(service, list_bookmarks=get_local_bookmarks, backup_name=BACKUP_FILE_NAME):
    print("\n[INFO] Scanning local bookmarks...")
    bookmarks = list_bookmarks()
    print(f"[INFO] Found {len(bookmarks)} bookmarks to backup.")

    print("[INFO] Preparing backup file...")
    with create_backup_file(bookmarks) as backup:
        if not validate_backup(backup.path):
            raise OSError(f"Backup file failed validation: {backup.path}")
        log_backup_stats(len(bookmarks))
        return perform_backup(service, backup.path, backup_name)

ERROR_LABELS = [
    (ConfigurationError, "Configuration problem (is credentials.json in place?)"),
    (AuthError, "Authorization with Google failed"),
    (RemoteError, "Google Drive request failed"),
    (OSError, "An IO error occurred during the backup process"),
]

def error_label(error):
    for kind, label in ERROR_LABELS:
        if isinstance(error, kind):
            return label
    return "An unexpected error occurred"

def parse_args(argv=None):
    p = argparse.ArgumentParser(prog="bookmark-backup",
                                description="Back up bookmarks to Google Drive.")
    p.add_argument("--credentials", default=CREDENTIALS_FILE_PATH,
                   help="OAuth client secrets file (default: %(default)s)")
    p.add_argument("--tokens-dir", default=TOKENS_DIRECTORY_PATH,
                   help="Directory for the cached token (default: %(default)s)")
    p.add_argument("--port", type=int, default=OAUTH_CALLBACK_PORT,
                   help="Local OAuth callback port (default: %(default)s)")
    p.add_argument("--backup-name", default=BACKUP_FILE_NAME,
                   help="Name of the backup file in Drive (default: %(default)s)")
    return p.parse_args(argv)

def main(argv=None):
    args = parse_args(argv)

    print("=" * 42)
    print("   Starting Google Drive Bookmark Backup  ")
    print("=" * 42)

    try:
        service = get_drive_service(args.credentials, args.tokens_dir, args.port)
        run_backup(service, backup_name=args.backup_name)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except Exception as e:
        print(f"[ERROR] {error_label(e)}: {e}", file=sys.stderr)
        traceback.print_exc()
        return 1

    print("\n[SUCCESS] Backup operation completed successfully.")
    return 0

if __name__ == "__main__":
    sys.exit(main())
