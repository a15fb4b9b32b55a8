"""
Identity resolution.

Authenticated users are tracked by their user id. Anonymous clients fall
back to a device id that is generated once per installation and persisted
through an IdentityStore.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

from .errors import DependencyUnavailable, InputError

logger = logging.getLogger(__name__)

IDENTITY_STORE = "identity_store"


class IdentityKind(Enum):
    """Scope of an identity."""
    USER = "user"      # Server-verified account id
    DEVICE = "device"  # Client-generated, unverified


@dataclass(frozen=True)
class Identity:
    """The key every quota lookup is made against."""
    kind: IdentityKind
    value: str

    def __post_init__(self):
        if not self.value or not str(self.value).strip():
            raise InputError("identity value cannot be empty")

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.value}"

    @property
    def is_user(self) -> bool:
        return self.kind == IdentityKind.USER

    @classmethod
    def user(cls, user_id: str) -> "Identity":
        return cls(IdentityKind.USER, user_id)

    @classmethod
    def device(cls, device_id: str) -> "Identity":
        return cls(IdentityKind.DEVICE, device_id)

    @classmethod
    def from_request(cls, user_id: Optional[str], device_id: Optional[str]) -> "Identity":
        """Build an identity from request fields, user id taking precedence.

        Raises:
            InputError: If neither field carries a value
        """
        if user_id and user_id.strip():
            return cls.user(user_id.strip())
        if device_id and device_id.strip():
            return cls.device(device_id.strip())
        raise InputError("Must provide userId or deviceId")


class IdentityStore(Protocol):
    """Persistence for the anonymous device id."""

    def load(self) -> Optional[str]:
        ...

    def save(self, device_id: str) -> None:
        ...


class InMemoryIdentityStore:
    """IdentityStore that lives as long as the object does."""

    def __init__(self, device_id: Optional[str] = None):
        self._device_id = device_id

    def load(self) -> Optional[str]:
        return self._device_id

    def save(self, device_id: str) -> None:
        self._device_id = device_id


class FileIdentityStore:
    """IdentityStore backed by a small JSON file.

    A corrupt or unreadable file is an error, not an empty store, so an
    existing device id is never silently replaced.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        """Read the stored device id.

        Raises:
            DependencyUnavailable: If the file cannot be read or does not
                hold a JSON object with a string device_id
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Cannot read device id from {self.path}: {e}")
            raise DependencyUnavailable(f"identity_store unreadable: {e}", IDENTITY_STORE) from e

        if not isinstance(data, dict):
            raise DependencyUnavailable(
                f"identity_store corrupt: expected a JSON object in {self.path}", IDENTITY_STORE
            )
        device_id = data.get("device_id")
        if device_id is not None and not isinstance(device_id, str):
            raise DependencyUnavailable(
                f"identity_store corrupt: device_id in {self.path} must be a string", IDENTITY_STORE
            )
        return device_id or None

    def save(self, device_id: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump({"device_id": device_id}, f)
            tmp_path.replace(self.path)
        except OSError as e:
            logger.error(f"Cannot write device id to {self.path}: {e}")
            raise DependencyUnavailable(f"identity_store unwritable: {e}", IDENTITY_STORE) from e


def resolve_identity(user_id: Optional[str], store: IdentityStore) -> Identity:
    """Resolve the identity a request should be counted against.

    Args:
        user_id: Authenticated user id, or None for anonymous callers
        store: Where the device id is persisted

    Returns:
        A user identity when ``user_id`` is given, otherwise the
        installation's device identity
    """
    if user_id and user_id.strip():
        return Identity.user(user_id.strip())

    device_id = store.load()
    if not device_id:
        device_id = str(uuid.uuid4())
        store.save(device_id)
        logger.info(f"Generated new device id: {device_id}")

    return Identity.device(device_id)
