"""
Persistence collaborators: a key/value blob store and the policy config store.

Layout
- ``{key_name}``          JSON seed record {fingerprint, mnemonic, xprv, xpub}
- ``{key_name}-wallet``   JSON wallet export {descriptor, change_descriptor, label, wallet_identity}
- config store            wallet_identity -> {max_spend_per_tx, halted}

Backend failures are logged with their cause and re-raised as StorageError
with a generic message.
"""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol

from .errors import StorageError
from .policy import PolicyConfig

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def wallet_export_key(key_name: str) -> str:
    return f"{key_name}-wallet"


def validate_key_name(key_name: str) -> str:
    if not _KEY_RE.fullmatch(key_name or "") or key_name in ('.', '..'):
        raise ValueError(f"invalid key name {key_name!r} (letters, digits, '_', '.', '-')")
    return key_name


@dataclass(frozen=True)
class KeyRecord:
    """Custodial seed record. Never log ``mnemonic`` or ``xprv``."""
    fingerprint: str
    mnemonic: str
    xprv: str
    xpub: str

    def to_json(self) -> bytes:
        return json.dumps(asdict(self)).encode()

    @classmethod
    def from_json(cls, data: bytes) -> "KeyRecord":
        try:
            obj = json.loads(data)
            return cls(
                fingerprint=str(obj['fingerprint']).lower(),
                mnemonic=obj['mnemonic'],
                xprv=obj['xprv'],
                xpub=obj['xpub'],
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Could not parse stored seed record: %s", exc)
            raise StorageError("Could not read saved key") from exc

    def __repr__(self) -> str:
        return f"KeyRecord(fingerprint={self.fingerprint!r}, xpub={self.xpub!r})"


@dataclass(frozen=True)
class WalletExport:
    descriptor: str
    change_descriptor: str
    label: str
    wallet_identity: str

    def to_json(self) -> bytes:
        return json.dumps(asdict(self)).encode()

    @classmethod
    def from_json(cls, data: bytes) -> "WalletExport":
        try:
            obj = json.loads(data)
            return cls(
                descriptor=obj['descriptor'],
                change_descriptor=obj['change_descriptor'],
                label=obj['label'],
                wallet_identity=obj['wallet_identity'],
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Could not parse stored wallet export: %s", exc)
            raise StorageError("Could not read saved wallet") from exc


class BlobStore(Protocol):
    def get(self, key: str) -> Optional[bytes]:
        ...

    def put(self, key: str, data: bytes) -> None:
        ...


class ConfigStore(Protocol):
    def get_policy_config(self, wallet_identity: str) -> Optional[PolicyConfig]:
        ...

    def put_policy_config(self, config: PolicyConfig) -> None:
        ...

    def set_halted(self, wallet_identity: str, halted: bool) -> PolicyConfig:
        ...


class MemoryBlobStore:
    def __init__(self, initial: Optional[Dict[str, bytes]] = None) -> None:
        self._data: Dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(validate_key_name(key))

    def put(self, key: str, data: bytes) -> None:
        self._data[validate_key_name(key)] = bytes(data)


class FileBlobStore:
    """One file per key under ``root``."""

    def __init__(self, root: str) -> None:
        self.root = root

    def _path(self, key: str) -> str:
        return os.path.join(self.root, validate_key_name(key))

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            with open(path, 'rb') as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error("Could not read %s from blob store: %s", key, exc)
            raise StorageError("Could not read from storage") from exc

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            os.makedirs(self.root, exist_ok=True)
            _atomic_write(path, data)
        except OSError as exc:
            logger.error("Could not write %s to blob store: %s", key, exc)
            raise StorageError("Could not save to storage") from exc


def _atomic_write(path: str, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=os.path.dirname(path) or '.', prefix='.tmp-')
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


class MemoryConfigStore:
    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}

    def get_policy_config(self, wallet_identity: str) -> Optional[PolicyConfig]:
        record = self._records.get(wallet_identity)
        return None if record is None else PolicyConfig.from_record(wallet_identity, record)

    def put_policy_config(self, config: PolicyConfig) -> None:
        self._records[config.wallet_identity] = config.to_record()

    def put_record(self, wallet_identity: str, record: Dict[str, Any]) -> None:
        """Store a raw record as-is (lets callers exercise partial records)."""
        self._records[wallet_identity] = dict(record)

    def set_halted(self, wallet_identity: str, halted: bool) -> PolicyConfig:
        record = dict(self._records.get(wallet_identity, PolicyConfig.locked(wallet_identity).to_record()))
        record['halted'] = bool(halted)
        self._records[wallet_identity] = record
        return PolicyConfig.from_record(wallet_identity, record)


class FileConfigStore:
    """JSON document mapping wallet identity to its policy record.

    Every read goes to disk; writes replace the file atomically, so a halt
    is visible to the very next request.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._write_lock = threading.Lock()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        try:
            with open(self.path, 'rt') as f:
                doc = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.error("Could not read policy config store %s: %s", self.path, exc)
            raise StorageError("Could not read policy configuration") from exc
        if not isinstance(doc, dict):
            logger.error("Policy config store %s is not a JSON object", self.path)
            raise StorageError("Could not read policy configuration")
        return doc

    def _save(self, doc: Dict[str, Dict[str, Any]]) -> None:
        try:
            os.makedirs(os.path.dirname(self.path) or '.', exist_ok=True)
            _atomic_write(self.path, json.dumps(doc, indent=2, sort_keys=True).encode())
        except OSError as exc:
            logger.error("Could not write policy config store %s: %s", self.path, exc)
            raise StorageError("Could not save policy configuration") from exc

    def get_policy_config(self, wallet_identity: str) -> Optional[PolicyConfig]:
        record = self._load().get(wallet_identity)
        if record is None:
            return None
        if not isinstance(record, dict):
            logger.error("Policy record for %s is not a JSON object", wallet_identity)
            raise StorageError("Could not read policy configuration")
        return PolicyConfig.from_record(wallet_identity, record)

    def put_policy_config(self, config: PolicyConfig) -> None:
        with self._write_lock:
            doc = self._load()
            doc[config.wallet_identity] = config.to_record()
            self._save(doc)

    def set_halted(self, wallet_identity: str, halted: bool) -> PolicyConfig:
        with self._write_lock:
            doc = self._load()
            record = dict(doc.get(wallet_identity) or PolicyConfig.locked(wallet_identity).to_record())
            record['halted'] = bool(halted)
            doc[wallet_identity] = record
            self._save(doc)
        return PolicyConfig.from_record(wallet_identity, record)
