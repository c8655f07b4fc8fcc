"""Durable, encrypted key/value storage.

This is the local persistence service behind the redirect state slot and
the named client configurations. Each store is one JSON object, encrypted
as a whole with Fernet and written to a single file. The key lives in the
OS keyring when one is available; otherwise a key derived from the machine
and user is used. Files are created owner-only and every read or write holds a lock
on a sidecar ``.lock`` file. Updates hold one exclusive lock from read to
write, so concurrent authtool processes never lose each other's keys.
"""

import base64
import getpass
import hashlib
import json
import logging
import os
import stat
import sys
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import keyring
from cryptography.fernet import Fernet, InvalidToken

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "authtool"
KEYRING_USERNAME = "storage-encryption-key"

DEFAULT_STORE_DIR = Path.home() / ".cache" / "authtool"

SESSION_FILE = "session.json"
CONFIGURATIONS_FILE = "configurations.json"

OWNER_ONLY_FILE = stat.S_IRUSR | stat.S_IWUSR  # 0600
OWNER_ONLY_DIR = stat.S_IRWXU  # 0700


class StorageError(Exception):
    """Error in local storage operations."""

    pass


class StorageDecryptionError(StorageError):
    """A storage file exists but cannot be decrypted or decoded.

    Usually the encryption key changed (keyring cleared, different
    machine). Clearing the store fixes it, at the cost of its contents.
    """

    pass


@contextmanager
def _locked(path: Path, exclusive: bool) -> Iterator[None]:
    """Hold a lock on ``<path>.lock`` for the duration of the block.

    msvcrt has no shared locks, so on Windows every lock is exclusive.
    """
    lock_path = path.parent / f"{path.name}.lock"
    lock_path.touch(exist_ok=True)

    with open(lock_path, "r+") as handle:
        if sys.platform == "win32":
            msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
            try:
                yield
            finally:
                msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        else:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _derive_fallback_key() -> bytes:
    """Build a Fernet key from data that is stable for this user on this machine."""
    machine_id = Path("/etc/machine-id")
    try:
        user = getpass.getuser()
    except (OSError, KeyError):
        user = "authtool"

    seed = [
        machine_id.read_text().strip() if machine_id.exists() else f"{uuid.getnode():x}",
        str(Path.home()),
        user,
    ]
    digest = hashlib.sha256("|".join(seed).encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def _load_cipher() -> tuple[Fernet, bool]:
    """Return the store cipher and whether its key came from the keyring."""
    try:
        key = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
        if key is None:
            key = Fernet.generate_key().decode("ascii")
            keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, key)
            logger.debug("Stored a new storage key in the keyring")
        return Fernet(key.encode("ascii")), True
    except Exception as e:
        # keyring backends raise a wide range of errors when no daemon is running
        logger.warning(f"Keyring unavailable ({type(e).__name__}: {e}); using a machine-derived key")
        return Fernet(_derive_fallback_key()), False


class LocalStore:
    """Synchronous key/value store persisted to one encrypted JSON file.

    Values must be JSON-serializable. Every write rewrites the whole file,
    so a value written by one process is visible to the next process that
    opens the same file.

    Args:
        filename: Name of the backing file inside store_dir
        store_dir: Directory holding the file (default ~/.cache/authtool)
    """

    def __init__(self, filename: str, store_dir: Path | None = None):
        self.filename = filename
        self.store_dir = store_dir or DEFAULT_STORE_DIR

        self.store_dir.mkdir(parents=True, exist_ok=True)
        _restrict(self.store_dir, OWNER_ONLY_DIR)

        self._cipher, self._using_keyring = _load_cipher()

    @property
    def path(self) -> Path:
        return self.store_dir / self.filename

    def _load(self) -> dict[str, Any]:
        """Decrypt the whole store; a missing file is an empty store.

        The caller holds the lock.

        Raises:
            StorageDecryptionError: If the file cannot be decrypted or decoded
        """
        if not self.path.exists():
            return {}

        token = self.path.read_bytes()
        try:
            data = json.loads(self._cipher.decrypt(token))
        except InvalidToken as e:
            raise StorageDecryptionError(
                f"Cannot decrypt {self.filename}. The encryption key may have changed."
            ) from e
        except ValueError as e:
            raise StorageDecryptionError(f"Storage file {self.filename} is corrupted") from e

        if not isinstance(data, dict):
            raise StorageDecryptionError(f"Storage file {self.filename} is corrupted")
        return data

    def _store(self, data: dict[str, Any]) -> None:
        """Encrypt and write the whole store. The caller holds the exclusive lock."""
        token = self._cipher.encrypt(json.dumps(data, indent=2).encode("utf-8"))

        if self.path.exists():
            # The mode given to os.open only applies to new files
            _restrict(self.path, OWNER_ONLY_FILE)

        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, OWNER_ONLY_FILE)
        with os.fdopen(fd, "wb") as handle:
            handle.write(token)

    def _read(self) -> dict[str, Any]:
        with _locked(self.path, exclusive=False):
            return self._load()

    @contextmanager
    def _transaction(self) -> Iterator[dict[str, Any]]:
        """Yield the store contents under an exclusive lock and write them back.

        Nothing is written if the block raises.
        """
        with _locked(self.path, exclusive=True):
            data = self._load()
            yield data
            self._store(data)

    def get_item(self, key: str) -> Any:
        """Return the value stored under key, or None."""
        return self._read().get(key)

    def set_item(self, key: str, value: Any) -> None:
        """Store value under key, replacing any previous value."""
        with self._transaction() as data:
            data[key] = value
        logger.debug(f"Stored {key!r} in {self.filename}")

    def remove_item(self, key: str) -> bool:
        """Remove key. Returns True if it was present."""
        with _locked(self.path, exclusive=True):
            data = self._load()
            if key not in data:
                return False

            del data[key]
            self._store(data)
        logger.debug(f"Removed {key!r} from {self.filename}")
        return True

    def get_items(self) -> dict[str, Any]:
        return dict(self._read())

    def clear(self) -> None:
        """Delete the backing file."""
        self.path.unlink(missing_ok=True)
        logger.info(f"Cleared {self.filename}")

    def is_using_keyring(self) -> bool:
        return self._using_keyring


def _restrict(path: Path, mode: int) -> None:
    try:
        path.chmod(mode)
    except OSError as e:
        logger.warning(f"Could not restrict permissions on {path}: {e}")
