"""
Storage Module - Durable key-value slot for the personal-record ledger.

Storage faults never raise out of this module. Every read and write returns
a StorageResult, and the caller decides how to degrade on StorageErr.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Union


logger = logging.getLogger(__name__)


DEFAULT_STORAGE_KEY = 'gpx-user-prs'
DEFAULT_DATA_DIR = os.path.join(os.path.expanduser('~'), '.runtrack')


@dataclass
class StorageConfig:
    """Location of the persisted record slot."""
    data_dir: str = DEFAULT_DATA_DIR
    key: str = DEFAULT_STORAGE_KEY

    @property
    def path(self) -> str:
        return os.path.join(self.data_dir, f"{self.key}.json")

    @classmethod
    def from_env(cls) -> 'StorageConfig':
        """Build from RUNTRACK_DATA_DIR / RUNTRACK_STORAGE_KEY, falling back to defaults."""
        return cls(
            data_dir=os.environ.get('RUNTRACK_DATA_DIR', DEFAULT_DATA_DIR),
            key=os.environ.get('RUNTRACK_STORAGE_KEY', DEFAULT_STORAGE_KEY)
        )


@dataclass
class StorageOk:
    """Successful storage operation. For reads, value holds the decoded mapping."""
    value: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True


@dataclass
class StorageErr:
    """Failed storage operation."""
    reason: str

    @property
    def ok(self) -> bool:
        return False


StorageResult = Union[StorageOk, StorageErr]


class RecordStorage(Protocol):
    """Read-one / write-one port over a single durable slot."""

    def read(self) -> StorageResult:
        ...

    def write(self, mapping: Dict[str, Any]) -> StorageResult:
        ...


def decode_mapping(text: Optional[str]) -> StorageResult:
    """Decode slot contents. An empty or missing slot is an empty mapping."""
    if not text:
        return StorageOk({})
    try:
        data = json.loads(text)
    except ValueError as e:
        return StorageErr(f"malformed JSON: {e}")
    if not isinstance(data, dict):
        return StorageErr(f"expected a JSON object, got {type(data).__name__}")
    return StorageOk(data)


def encode_mapping(mapping: Dict[str, Any]) -> str:
    return json.dumps(mapping, indent=2, sort_keys=True)


class JsonFileStorage:
    """
    One JSON file per storage key.

    Writes go to a temporary file in the same directory which is then
    renamed over the target, so readers never see a half-written slot.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config if config is not None else StorageConfig.from_env()

    @property
    def path(self) -> str:
        return self.config.path

    def read(self) -> StorageResult:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                text = f.read()
        except FileNotFoundError:
            return StorageOk({})
        except OSError as e:
            return StorageErr(f"cannot read {self.path}: {e}")
        except UnicodeDecodeError as e:
            return StorageErr(f"{self.path} is not valid UTF-8: {e}")
        return decode_mapping(text)

    def write(self, mapping: Dict[str, Any]) -> StorageResult:
        try:
            text = encode_mapping(mapping)
        except (TypeError, ValueError) as e:
            return StorageErr(f"cannot serialize records: {e}")

        tmp_path = None
        try:
            os.makedirs(self.config.data_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.config.key}-", suffix='.tmp', dir=self.config.data_dir
            )
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(text)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            return StorageErr(f"cannot write {self.path}: {e}")
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)

        logger.debug("Wrote %d records to %s", len(mapping), self.path)
        return StorageOk(mapping)


class InMemoryStorage:
    """
    Slot held in memory as serialized JSON text.

    Useful for tests and for sessions without a data directory. Set
    fail_writes to simulate a full or read-only store.
    """

    def __init__(self, initial: Optional[str] = None, fail_writes: bool = False):
        self.raw = initial
        self.fail_writes = fail_writes
        self.write_count = 0

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any]) -> 'InMemoryStorage':
        return cls(encode_mapping(mapping))

    def read(self) -> StorageResult:
        return decode_mapping(self.raw)

    def write(self, mapping: Dict[str, Any]) -> StorageResult:
        self.write_count += 1
        if self.fail_writes:
            return StorageErr("write quota exceeded")
        try:
            self.raw = encode_mapping(mapping)
        except (TypeError, ValueError) as e:
            return StorageErr(f"cannot serialize records: {e}")
        return StorageOk(mapping)
