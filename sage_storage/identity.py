"""
File identity parsing and storage key mapping.

Request paths have the form {job}/{task}/{node}/{timestamp}-{filename} where
timestamp is an integer count of nanoseconds since the Unix epoch. The fourth
segment is kept whole as the filename and is only inspected to extract the
timestamp prefix.
"""
from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .error_handling import InvalidTimestamp, MalformedFilename, MalformedPath

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1
_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class FileIdentity:
    job: str
    task: str
    node: str
    filename: str
    timestamp_ns: int

    @property
    def timestamp(self) -> datetime:
        return EPOCH + timedelta(microseconds=self.timestamp_ns // 1000)


def datetime_to_ns(dt: datetime) -> int:
    """Nanoseconds since the epoch. Naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return ((dt - EPOCH) // timedelta(microseconds=1)) * 1000


def parse_nanosecond_timestamp(s: str) -> int:
    if not _INTEGER_RE.fullmatch(s):
        raise InvalidTimestamp(f"invalid nanosecond timestamp {s!r}")
    nsec = int(s)
    if not _INT64_MIN <= nsec <= _INT64_MAX:
        raise InvalidTimestamp(f"nanosecond timestamp {s!r} out of range")
    return nsec


def extract_timestamp_from_filename(filename: str) -> int:
    prefix, sep, _ = filename.partition("-")
    if not sep:
        raise MalformedFilename(f"failed to extract timestamp from filename string {filename!r}")
    return parse_nanosecond_timestamp(prefix)


def parse_file_path(path: str) -> FileIdentity:
    parts = path.split("/", 3)
    if len(parts) != 4:
        raise MalformedPath("invalid path format")
    job, task, node, filename = parts
    if not (job and task and node and filename):
        raise MalformedPath("invalid path format")
    return FileIdentity(
        job=job,
        task=task,
        node=node,
        filename=filename,
        timestamp_ns=extract_timestamp_from_filename(filename),
    )


def storage_key(identity: FileIdentity, root_folder: str = "") -> str:
    return posixpath.join(root_folder or "", identity.job, identity.task, identity.node, identity.filename)
