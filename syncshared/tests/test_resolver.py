"""Tests for syncshared.discovery.resolver.DesiredSetResolver."""

import pytest

from syncshared.discovery import (
    DesiredSetResolver,
    DiscoveryResult,
    dedupe_declarations_by_package,
    discover_source_files,
)
from syncshared.discovery.resolver import flatten_paths
from syncshared.utils.ignore import IgnoreMatcher


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def project(tmp_path):
    """project/
         flows/app.ts        imports zod and @scope/util
         flows/lib/helper.js
         flows/data.json
         flows/README.md     (untracked extension)
         flows/node_modules/ (ignored)
         node_modules/zod/index.d.ts
         node_modules/@types/scope__util/index.d.ts
    """
    root = tmp_path / "project"
    flows = root / "flows"
    (flows / "lib").mkdir(parents=True)
    (flows / "app.ts").write_text(
        "import { z } from 'zod'\nimport { u } from '@scope/util/deep'\nimport './lib/helper'\n"
    )
    (flows / "lib" / "helper.js").write_text("module.exports = {}\n")
    (flows / "data.json").write_text("{}")
    (flows / "README.md").write_text("# flows")
    (flows / "node_modules" / "junk").mkdir(parents=True)
    (flows / "node_modules" / "junk" / "index.ts").write_text("")

    zod = root / "node_modules" / "zod"
    zod.mkdir(parents=True)
    (zod / "index.d.ts").write_text("export {}")
    util_types = root / "node_modules" / "@types" / "scope__util"
    util_types.mkdir(parents=True)
    (util_types / "index.d.ts").write_text("export {}")
    return root


# ---------------------------------------------------------------------------
# Tests: building blocks
# ---------------------------------------------------------------------------

class TestDiscoverSourceFiles:
    def test_tracked_extensions_only_and_sorted(self, project):
        flows = project / "flows"
        files = discover_source_files(str(flows), ignore=IgnoreMatcher(str(flows)))
        assert files == sorted([
            str(flows / "app.ts"),
            str(flows / "data.json"),
            str(flows / "lib" / "helper.js"),
        ])

    def test_without_ignore_walks_everything(self, project):
        flows = project / "flows"
        files = discover_source_files(str(flows), extensions=(".ts",))
        assert str(flows / "node_modules" / "junk" / "index.ts") in files

    def test_missing_dir_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            discover_source_files(str(tmp_path / "missing"))


class TestDedupe:
    def test_one_declaration_per_package(self):
        paths = [
            "/r/node_modules/.pnpm/zod@3/node_modules/zod/index.d.ts",
            "/r/node_modules/zod/index.d.ts",
            "/r/node_modules/@types/node/index.d.ts",
            "/r/types/globals/index.d.ts",
            "/r/node_modules/zod/index.d.ts",
        ]
        assert dedupe_declarations_by_package(paths) == sorted([
            "/r/node_modules/zod/index.d.ts",
            "/r/node_modules/@types/node/index.d.ts",
            "/r/types/globals/index.d.ts",
        ])

    def test_local_declarations_kept_separately(self):
        paths = ["/r/types/foo.d.ts", "/r/types/bar.d.ts", "/r/node_modules/zod/index.d.ts"]
        assert dedupe_declarations_by_package(paths) == sorted(paths)

    def test_server_root_preferred(self):
        paths = [
            "/r/node_modules/zod/index.d.ts",
            "/r/server/node_modules/zod/index.d.ts",
        ]
        assert dedupe_declarations_by_package(paths) == ["/r/server/node_modules/zod/index.d.ts"]

    def test_flatten_paths(self):
        assert flatten_paths(None) == []
        assert flatten_paths(["a"]) == ["a"]
        assert sorted(flatten_paths({"x": ["a", "b"], "y": ["c"]})) == ["a", "b", "c"]


# ---------------------------------------------------------------------------
# Tests: full resolution
# ---------------------------------------------------------------------------

class TestDesiredSetResolver:
    def test_sources_plus_entry_declarations(self, project):
        flows = project / "flows"
        desired = DesiredSetResolver().compute_sync(str(flows), str(project))
        assert desired == {
            str(flows / "app.ts"),
            str(flows / "data.json"),
            str(flows / "lib" / "helper.js"),
            str(project / "node_modules" / "zod" / "index.d.ts"),
            str(project / "node_modules" / "@types" / "scope__util" / "index.d.ts"),
        }

    def test_extra_ignore_patterns(self, project):
        flows = project / "flows"
        resolver = DesiredSetResolver(ignore_patterns=["*.json"])
        desired = resolver.compute_sync(str(flows), str(project))
        assert str(flows / "data.json") not in desired

    def test_missing_watch_dir_yields_empty_set(self, tmp_path):
        assert DesiredSetResolver().compute_sync(str(tmp_path / "gone"), str(tmp_path)) == set()

    def test_collaborator_results_merged(self, project):
        flows = project / "flows"
        extra_src = project / "shared" / "util.ts"
        extra_src.parent.mkdir()
        extra_src.write_text("export const x = 1\n")
        axios = project / "node_modules" / "axios"
        axios.mkdir()
        (axios / "index.d.ts").write_text("export {}")
        graph_dts = project / "types" / "globals" / "index.d.ts"
        graph_dts.parent.mkdir(parents=True)
        graph_dts.write_text("declare const g: 1")

        def discovery(watch_dir):
            assert watch_dir == str(flows)
            return DiscoveryResult(
                files=[str(extra_src)],
                externals=["axios"],
                typings={"globals": [str(graph_dts)]},
            )

        desired = DesiredSetResolver(discovery=discovery).compute_sync(str(flows), str(project))

        assert str(extra_src) in desired
        assert str(axios / "index.d.ts") in desired
        assert str(graph_dts) in desired

    def test_failing_collaborator_treated_as_absent(self, project):
        flows = project / "flows"

        def discovery(watch_dir):
            raise RuntimeError("graph tool crashed")

        with_graph = DesiredSetResolver(discovery=discovery).compute_sync(str(flows), str(project))
        without = DesiredSetResolver().compute_sync(str(flows), str(project))
        assert with_graph == without

    def test_unexpected_error_degrades_to_empty(self, project, monkeypatch):
        resolver = DesiredSetResolver()

        def boom(watch_dir, project_root):
            raise RuntimeError("walk exploded")

        monkeypatch.setattr(resolver, "_resolve", boom)
        assert resolver.compute_sync(str(project / "flows"), str(project)) == set()

    @pytest.mark.asyncio
    async def test_compute_async(self, project):
        flows = project / "flows"
        resolver = DesiredSetResolver(extensions=(".ts",))
        desired = await resolver.compute(str(flows), str(project))
        assert str(flows / "app.ts") in desired
        assert str(flows / "lib" / "helper.js") not in desired
