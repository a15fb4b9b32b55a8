"""
Tests for identity resolution and device id persistence.
"""
import os
import tempfile
from pathlib import Path

import pytest

from solve_quota.core.errors import DependencyUnavailable, InputError
from solve_quota.core.identity import (
    FileIdentityStore,
    Identity,
    IdentityKind,
    InMemoryIdentityStore,
    resolve_identity
)


class RecordingStore(InMemoryIdentityStore):
    """In-memory store that counts saves."""

    def __init__(self, device_id=None):
        super().__init__(device_id)
        self.saves = 0

    def save(self, device_id):
        self.saves += 1
        super().save(device_id)


class TestResolveIdentity:
    """Test the user/device fallback."""

    def test_user_id_takes_precedence(self):
        """An authenticated id is used even when a device id exists."""
        store = RecordingStore("device-1")
        identity = resolve_identity("user-1", store)

        assert identity == Identity(IdentityKind.USER, "user-1")
        assert store.saves == 0

    def test_generates_device_id_when_absent(self):
        """First anonymous resolution creates and persists a device id."""
        store = RecordingStore()
        identity = resolve_identity(None, store)

        assert identity.kind == IdentityKind.DEVICE
        assert identity.value
        assert store.load() == identity.value
        assert store.saves == 1

    def test_reuses_persisted_device_id(self):
        """Resolving twice yields the same device id and saves once."""
        store = RecordingStore()
        first = resolve_identity(None, store)
        second = resolve_identity(None, store)

        assert first == second
        assert store.saves == 1

    def test_existing_device_id_is_never_replaced(self):
        """A persisted id is returned unchanged."""
        store = RecordingStore("existing-device")
        identity = resolve_identity(None, store)

        assert identity.value == "existing-device"
        assert store.saves == 0

    def test_blank_user_id_falls_back_to_device(self):
        """Whitespace user ids count as anonymous."""
        store = RecordingStore("device-1")
        assert resolve_identity("  ", store) == Identity.device("device-1")


class TestIdentityFromRequest:
    """Test identity construction at the request boundary."""

    def test_user_preferred_over_device(self):
        assert Identity.from_request("u1", "d1") == Identity.user("u1")

    def test_device_used_without_user(self):
        assert Identity.from_request(None, "d1") == Identity.device("d1")

    def test_missing_identity_is_input_error(self):
        """Neither id is a caller contract violation."""
        with pytest.raises(InputError, match="userId or deviceId"):
            Identity.from_request(None, None)

        with pytest.raises(InputError):
            Identity.from_request("", "   ")

    def test_empty_value_rejected(self):
        with pytest.raises(InputError):
            Identity(IdentityKind.DEVICE, "")

    def test_key_includes_kind(self):
        """User and device with the same value are distinct keys."""
        assert Identity.user("abc").key == "user:abc"
        assert Identity.device("abc").key == "device:abc"
        assert Identity.user("abc") != Identity.device("abc")


class TestFileIdentityStore:
    """Test the file-backed device id store."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "nested" / "device.json"

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_load_missing_file(self):
        assert FileIdentityStore(self.path).load() is None

    def test_round_trip_creates_parent(self):
        store = FileIdentityStore(self.path)
        store.save("device-xyz")

        assert self.path.exists()
        assert FileIdentityStore(self.path).load() == "device-xyz"

    def test_stable_across_store_instances(self):
        """A new store over the same file sees the same installation id."""
        first = resolve_identity(None, FileIdentityStore(self.path))
        second = resolve_identity(None, FileIdentityStore(self.path))
        assert first == second

    def test_corrupt_file_raises(self):
        """A corrupt file is not treated as empty."""
        os.makedirs(self.path.parent, exist_ok=True)
        self.path.write_text("{not json", encoding="utf-8")

        with pytest.raises(DependencyUnavailable) as excinfo:
            resolve_identity(None, FileIdentityStore(self.path))

        assert excinfo.value.store == "identity_store"
        assert self.path.read_text(encoding="utf-8") == "{not json"

    @pytest.mark.parametrize("content", ["[]", '"device-xyz"', '{"device_id": 42}'])
    def test_wrong_shape_raises(self, content):
        """Valid JSON of the wrong shape is corrupt too, and is left in place."""
        os.makedirs(self.path.parent, exist_ok=True)
        self.path.write_text(content, encoding="utf-8")

        with pytest.raises(DependencyUnavailable):
            FileIdentityStore(self.path).load()

        assert self.path.read_text(encoding="utf-8") == content
