import pytest
from unittest.mock import Mock
from buildredwg import (
    ArtifactNotFoundError,
    BuildConfig,
    DirectExecutor,
    LibreDwgBuilder,
    PlatformInfo,
    resolve_context,
    select_static_lib,
    logging,
)


@pytest.fixture
def builder(tmp_path):
    config = BuildConfig()
    ctx = resolve_context(config, PlatformInfo("Linux", "x86_64"), cwd=tmp_path)
    b = LibreDwgBuilder(config, ctx=ctx, executor=Mock(spec=DirectExecutor))
    b.log = Mock(spec=logging.Logger)
    return b


def populate_install(ctx, libdir="lib", libs=("libredwg.a",)):
    include = ctx.install_dir / "include"
    include.mkdir(parents=True)
    (include / "dwg.h").write_text("/* dwg */")
    (include / "dwg_api.h").write_text("/* api */")
    lib = ctx.install_dir / libdir
    lib.mkdir(parents=True)
    for name in libs:
        (lib / name).write_bytes(b"!<arch>\n" + name.encode())
    return lib


class TestSelectStaticLib:
    def test_prefers_conventional_name(self):
        assert select_static_lib(["libfoo.a", "libredwg-0.a", "libredwg.a"]) == "libredwg.a"

    def test_substring_match_case_insensitive(self):
        assert select_static_lib(["libdwg-extra.a"]) == "libdwg-extra.a"
        assert select_static_lib(["libLibreDWG.a"]) == "libLibreDWG.a"

    def test_smallest_candidate(self):
        assert select_static_lib(["libredwg-1.a", "libredwg-0.a"]) == "libredwg-0.a"

    def test_ignores_non_archives(self):
        assert select_static_lib(["libredwg.la", "libredwg.so", "libfoo.a"]) is None

    def test_empty(self):
        assert select_static_lib([]) is None


class TestStageArtifacts:
    def test_stages_headers_and_archive(self, builder):
        ctx = builder.ctx
        populate_install(ctx, libs=("libredwg.a", "libredwg.la", "libfoo.a"))

        staged = builder.stage_artifacts()

        assert staged.final_lib == ctx.final_lib_dir / "libredwg.a"
        assert builder.ctx is staged
        assert (ctx.final_include / "dwg.h").read_text() == "/* dwg */"
        assert (ctx.final_include / "dwg_api.h").exists()
        assert sorted(p.name for p in ctx.final_lib_dir.iterdir()) == ["libredwg.a"]
        # siblings stay behind in the install dir
        assert (ctx.install_dir / "lib" / "libfoo.a").exists()
        assert (ctx.install_dir / "lib" / "libredwg.la").exists()

    def test_header_dir_fully_replaced(self, builder):
        ctx = builder.ctx
        ctx.final_include.mkdir(parents=True)
        (ctx.final_include / "stale.h").write_text("old")
        populate_install(ctx)

        builder.stage_artifacts()

        assert not (ctx.final_include / "stale.h").exists()
        assert (ctx.final_include / "dwg.h").exists()

    def test_lib64(self, builder):
        populate_install(builder.ctx, libdir="lib64")
        staged = builder.stage_artifacts()
        assert staged.final_lib.name == "libredwg.a"

    def test_lib_preferred_over_lib64(self, builder):
        ctx = builder.ctx
        populate_install(ctx, libdir="lib", libs=("libdwg-a.a",))
        (ctx.install_dir / "lib64").mkdir()
        (ctx.install_dir / "lib64" / "libredwg.a").write_bytes(b"x")
        assert builder.stage_artifacts().final_lib.name == "libdwg-a.a"

    def test_other_targets_untouched(self, builder, tmp_path):
        ctx = builder.ctx
        other_lib = ctx.final_root / "darwin-arm64" / "lib"
        other_lib.mkdir(parents=True)
        (other_lib / "libredwg.a").write_bytes(b"darwin")
        populate_install(ctx)

        builder.stage_artifacts()

        assert (other_lib / "libredwg.a").read_bytes() == b"darwin"

    def test_missing_include(self, builder):
        ctx = builder.ctx
        (ctx.install_dir / "lib").mkdir(parents=True)
        with pytest.raises(ArtifactNotFoundError, match="include"):
            builder.stage_artifacts()

    def test_missing_lib_dir(self, builder):
        (builder.ctx.install_dir / "include").mkdir(parents=True)
        with pytest.raises(ArtifactNotFoundError, match="lib64"):
            builder.stage_artifacts()

    def test_missing_archive(self, builder):
        lib = populate_install(builder.ctx, libs=("libz.a",))
        with pytest.raises(ArtifactNotFoundError, match=str(lib)):
            builder.stage_artifacts()
        assert not builder.ctx.final_include.exists()
