"""Filesystem-backed blob store for uploaded files."""

import logging
import mimetypes
import os
import re
import secrets
import time

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = 'application/octet-stream'
_UNSAFE_NAME_CHARS = re.compile(r'[^a-zA-Z0-9.-]')


class InvalidBlobKey(ValueError):
    """Raised for keys that are empty or would resolve outside the store."""


def safe_file_name(name):
    return _UNSAFE_NAME_CHARS.sub('_', name or '')


def _epoch_ms():
    return int(time.time() * 1000)


def resource_key(filename):
    return f"resources/{_epoch_ms()}-{safe_file_name(filename)}"


def question_key(kind, filename=''):
    """Key for a past-paper image; ``kind`` is 'q' (question) or 'a' (answer)."""
    ext = os.path.splitext(safe_file_name(filename))[1].lower()
    return f"questions/{_epoch_ms()}-{kind}-{secrets.token_hex(5)}{ext}"


class BlobStore:
    def __init__(self, root):
        self.root = os.path.abspath(root)

    def path_for(self, key):
        key = (key or '').strip()
        if not key or key.startswith(('/', '\\')) or '\x00' in key:
            raise InvalidBlobKey(key)
        path = os.path.abspath(os.path.join(self.root, key))
        if os.path.commonpath([self.root, path]) != self.root or path == self.root:
            raise InvalidBlobKey(key)
        return path

    def put(self, key, stream):
        """Write ``stream`` (a file-like object) under ``key``; returns bytes written."""
        path = self.path_for(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp_path = f"{path}.part"
        written = 0
        try:
            with open(tmp_path, 'wb') as out:
                while True:
                    chunk = stream.read(64 * 1024)
                    if not chunk:
                        break
                    out.write(chunk)
                    written += len(chunk)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.info("Stored blob %s (%d bytes)", key, written)
        return written

    def exists(self, key):
        return os.path.isfile(self.path_for(key))

    def open(self, key):
        """Return (path, content_type) for a stored blob, or None when missing."""
        path = self.path_for(key)
        if not os.path.isfile(path):
            return None
        content_type, _ = mimetypes.guess_type(path)
        return path, content_type or DEFAULT_CONTENT_TYPE

    def delete(self, key):
        path = self.path_for(key)
        if os.path.isfile(path):
            os.remove(path)
            return True
        return False
