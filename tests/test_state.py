"""Tests du stockage des artefacts."""

from __future__ import annotations

import os
import stat

import pytest

from wg_provisioner.errors import IllegalName, InterfaceExists, InterfaceNotFound
from wg_provisioner.state import ArtifactStore


def _mode(path):
    return stat.S_IMODE(os.stat(path).st_mode)


class TestInterfaces:
    def test_default_name_without_interfaces(self, store: ArtifactStore):
        assert store.default_interface_name() == "wg1"

    def test_default_name_uses_highest_suffix(self, store: ArtifactStore):
        for name in ("wg1", "wg7", "office"):
            store.write_interface(name, "[Interface]\n")
        assert store.default_interface_name() == "wg8"

    @pytest.mark.parametrize("name", ["", "wg-1", "wg 1", "../wg1", "wg_1"])
    def test_illegal_names(self, store: ArtifactStore, name):
        with pytest.raises(IllegalName):
            store.check_new_interface_name(name)

    def test_existing_name(self, store: ArtifactStore):
        store.write_interface("wg1", "[Interface]\n")
        with pytest.raises(InterfaceExists):
            store.check_new_interface_name("wg1")
        with pytest.raises(InterfaceExists):
            store.write_interface("wg1", "[Interface]\n")

    def test_owner_only_permissions(self, store: ArtifactStore):
        path = store.write_interface("wg1", "[Interface]\n")
        assert _mode(path) == 0o600

    def test_latest_interface(self, store: ArtifactStore):
        a = store.write_interface("wg1", "a\n")
        b = store.write_interface("wg2", "b\n")
        os.utime(a, (2_000_000_000, 2_000_000_000))
        os.utime(b, (1_000_000_000, 1_000_000_000))
        assert store.latest_interface() == "wg1"

    def test_load_unknown_interface(self, store: ArtifactStore):
        with pytest.raises(InterfaceNotFound):
            store.load("wg9")

    def test_append_then_truncate(self, store: ArtifactStore):
        path = store.write_interface("wg1", "[Interface]\n")
        size = store.append_peer("wg1", "\n[Peer]\n")
        assert path.read_text() == "[Interface]\n\n[Peer]\n"
        store.truncate_interface("wg1", size)
        assert path.read_text() == "[Interface]\n"

    def test_pool_files_are_not_interfaces(self, store: ArtifactStore):
        store.write_interface("wg1", "x\n")
        assert store.list_interfaces() == ["wg1"]


class TestClients:
    def test_default_client_name_counts_profiles(self, store: ArtifactStore):
        assert store.default_client_name("wg1") == "client1"
        store.write_client("wg1", "alice", "x\n")
        store.write_client("wg1", "bob", "x\n")
        assert store.default_client_name("wg1") == "client3"

    @pytest.mark.parametrize("name", ["a/b", "a\\b", ""])
    def test_illegal_client_names(self, store: ArtifactStore, name):
        with pytest.raises(IllegalName):
            store.check_new_client_name("wg1", name)

    def test_duplicate_client(self, store: ArtifactStore):
        store.write_client("wg1", "alice", "x\n")
        with pytest.raises(IllegalName, match="already exists"):
            store.check_new_client_name("wg1", "alice")

    def test_client_file_permissions(self, store: ArtifactStore):
        path = store.write_client("wg1", "alice", "x\n")
        assert path == store.client_dir / "wg1" / "alice.conf"
        assert _mode(path) == 0o600
