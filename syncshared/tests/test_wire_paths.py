"""Tests for syncshared.wire_paths.WirePathCodec."""

import os

import pytest

from syncshared.wire_paths import (
    EXTERNAL_NODE_MODULES,
    EXTERNAL_OTHER,
    WirePathCodec,
    is_virtual,
    virtual_hash,
)


@pytest.fixture
def codec():
    return WirePathCodec()


@pytest.fixture
def root(tmp_path):
    project = tmp_path / "project"
    project.mkdir()
    return str(project)


class TestInRoot:
    def test_relative_with_leading_slash(self, codec, root):
        abs_path = os.path.join(root, "flows", "app.ts")
        assert codec.to_wire(abs_path, root) == "/flows/app.ts"

    def test_root_itself(self, codec, root):
        assert codec.to_wire(root, root) == "/"

    def test_round_trip(self, codec, root):
        abs_path = os.path.join(root, "flows", "nested", "x.tsx")
        wire = codec.to_wire(abs_path, root)
        assert codec.from_wire(wire, root) == abs_path

    def test_in_root_node_modules_stays_relative(self, codec, root):
        abs_path = os.path.join(root, "node_modules", "zod", "index.d.ts")
        assert codec.to_wire(abs_path, root) == "/node_modules/zod/index.d.ts"
        assert codec.virtual_count == 0


class TestVirtual:
    def test_external_node_modules(self, codec, root, tmp_path):
        abs_path = str(tmp_path / "node_modules" / "@scope" / "pkg" / "index.d.ts")
        wire = codec.to_wire(abs_path, root)
        assert wire == EXTERNAL_NODE_MODULES + "@scope/pkg/index.d.ts"
        assert codec.from_wire(wire, root) == abs_path

    def test_pnpm_uses_innermost_node_modules(self, codec, root, tmp_path):
        abs_path = str(
            tmp_path / "node_modules" / ".pnpm" / "zod@3" / "node_modules" / "zod" / "index.d.ts"
        )
        assert codec.to_wire(abs_path, root) == EXTERNAL_NODE_MODULES + "zod/index.d.ts"

    def test_other_external(self, codec, root, tmp_path):
        abs_path = str(tmp_path / "shared" / "types.d.ts")
        wire = codec.to_wire(abs_path, root)
        assert wire.startswith(EXTERNAL_OTHER)
        assert wire.endswith("_types.d.ts")
        tag = wire[len(EXTERNAL_OTHER):].split("_", 1)[0]
        assert len(tag) == 16 and tag.isalnum()
        assert codec.from_wire(wire, root) == abs_path

    def test_same_basename_different_dirs_do_not_collide(self, codec, root, tmp_path):
        a = codec.to_wire(str(tmp_path / "a" / "index.d.ts"), root)
        b = codec.to_wire(str(tmp_path / "b" / "index.d.ts"), root)
        assert a != b

    def test_virtual_hash_deterministic(self):
        assert virtual_hash("/x/y.d.ts") == virtual_hash("/x/y.d.ts")
        assert virtual_hash("/x/y.d.ts") != virtual_hash("/x/z.d.ts")

    def test_is_virtual(self):
        assert is_virtual("/.external/other/abc_x.ts")
        assert not is_virtual("/flows/a.ts")


class TestReverseIndex:
    def test_unknown_virtual_falls_back_to_join(self, codec, root):
        result = codec.from_wire("/.external/other/zzz_x.d.ts", root)
        assert result == os.path.join(root, ".external", "other", "zzz_x.d.ts")

    def test_rebuild_restores_mappings(self, codec, root, tmp_path):
        ext = str(tmp_path / "elsewhere" / "lib.d.ts")
        wire = codec.to_wire(ext, root)
        codec.clear()
        assert codec.virtual_count == 0

        count = codec.rebuild([ext, os.path.join(root, "a.ts")], root)

        assert count == 1
        assert codec.from_wire(wire, root) == ext

    def test_rebuild_drops_stale_mappings(self, codec, root, tmp_path):
        old = str(tmp_path / "old" / "x.d.ts")
        codec.to_wire(old, root)
        assert codec.rebuild([], root) == 0
