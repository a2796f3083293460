"""Tests for autoreconf and the configure/make/install stage"""

import pytest
from unittest.mock import Mock, patch
from buildredwg import (
    BuildConfig,
    BuildStepError,
    BuildSystemMissingError,
    CommandError,
    DirectExecutor,
    LibreDwgBuilder,
    PlatformInfo,
    ShellExecutor,
    ToolMissingError,
    resolve_context,
    logging,
)


def make_builder(tmp_path, system="Linux", machine="x86_64", executor=None, **options):
    config = BuildConfig(**options)
    ctx = resolve_context(config, PlatformInfo(system, machine), cwd=tmp_path)
    if executor is None:
        executor = Mock(spec=DirectExecutor)
        executor.native_path.side_effect = lambda p: p.as_posix()
        executor.has_tool.return_value = True
    builder = LibreDwgBuilder(config, ctx=ctx, executor=executor)
    builder.log = Mock(spec=logging.Logger)
    return builder


@pytest.fixture
def builder(tmp_path):
    b = make_builder(tmp_path)
    b.ctx.src_dir.mkdir(parents=True)
    return b


class TestEnsureAutotools:
    def test_configured_source_is_left_alone(self, builder):
        builder.configure_script.write_text("#!/bin/sh\n")
        builder.ensure_autotools()
        builder.executor.run.assert_not_called()

    def test_autoreconf_generates_configure(self, builder):
        builder.executor.run.side_effect = lambda *a, **k: builder.configure_script.write_text("x")
        builder.ensure_autotools()
        builder.executor.run.assert_called_once_with(["autoreconf", "-fi"], cwd=builder.ctx.src_dir)

    def test_still_unconfigured_names_alternatives(self, builder):
        with pytest.raises(BuildSystemMissingError) as excinfo:
            builder.ensure_autotools()
        assert "meson" in str(excinfo.value)
        assert "cmake" in str(excinfo.value)

    def test_missing_autoreconf(self, builder):
        builder.executor.has_tool.return_value = False
        with pytest.raises(ToolMissingError, match="autoreconf"):
            builder.ensure_autotools()
        builder.executor.run.assert_not_called()

    def test_autoreconf_failure(self, builder):
        builder.executor.run.side_effect = CommandError("autoreconf exited 1")
        with pytest.raises(BuildStepError):
            builder.ensure_autotools()

    def test_windows_goes_through_shell(self, tmp_path):
        executor = ShellExecutor("bash")
        executor.log = Mock(spec=logging.Logger)
        b = make_builder(tmp_path, system="Windows", machine="AMD64", executor=executor)
        b.ctx.src_dir.mkdir(parents=True)
        with patch.object(executor, "has_tool", return_value=True), \
             patch("subprocess.check_call") as mock_call:
            mock_call.side_effect = lambda *a, **k: b.configure_script.write_text("x")
            b.ensure_autotools()
        mock_call.assert_called_once_with(
            ["bash", "-lc", "autoreconf -fi"], cwd=str(b.ctx.src_dir), env=None
        )


class TestBuild:
    def test_configure_options(self, builder):
        assert builder.configure_options == [
            f"--prefix={builder.ctx.install_dir.as_posix()}",
            "--disable-shared",
            "--enable-static",
        ]

    def test_build_steps(self, builder):
        steps = builder.build_steps()
        assert steps[0][0] == (builder.ctx.src_dir / "configure").as_posix()
        assert steps[0][1:] == builder.configure_options
        assert steps[1] == ["make", "-j"]
        assert steps[2] == ["make", "install"]

    def test_jobs(self, tmp_path):
        b = make_builder(tmp_path, jobs=6)
        assert b.build_steps()[1] == ["make", "-j6"]

    def test_build_wipes_target_dirs(self, builder):
        ctx = builder.ctx
        (ctx.build_dir / "stale.o").parent.mkdir(parents=True)
        (ctx.build_dir / "stale.o").write_text("x")
        (ctx.install_dir / "lib").mkdir(parents=True)
        (ctx.install_dir / "lib" / "libold.a").write_text("x")

        builder.build()

        assert ctx.build_dir.is_dir() and not any(ctx.build_dir.iterdir())
        assert ctx.install_dir.is_dir() and not any(ctx.install_dir.iterdir())
        builder.executor.run_steps.assert_called_once_with(builder.build_steps(), cwd=ctx.build_dir)

    def test_build_leaves_other_targets(self, tmp_path):
        other = make_builder(tmp_path, target_triple="linux-arm64")
        other.ctx.install_dir.mkdir(parents=True)
        (other.ctx.install_dir / "keep").write_text("x")

        make_builder(tmp_path).build()

        assert (other.ctx.install_dir / "keep").exists()

    def test_step_failure(self, builder):
        builder.executor.run_steps.side_effect = CommandError("make exited 2")
        with pytest.raises(BuildStepError, match="make exited 2"):
            builder.build()

    def test_windows_single_script_with_msys_paths(self, tmp_path):
        executor = ShellExecutor("bash")
        executor.log = Mock(spec=logging.Logger)
        b = make_builder(tmp_path, system="Windows", machine="AMD64", executor=executor)
        with patch("subprocess.check_call") as mock_call, \
             patch("buildredwg.to_msys_path", side_effect=lambda p: "/c" + str(p)):
            b.build()
        mock_call.assert_called_once()
        shell, flag, script = mock_call.call_args.args[0]
        assert (shell, flag) == ("bash", "-lc")
        lines = script.splitlines()
        assert lines[0] == "set -e"
        assert lines[1].startswith("cd ")
        assert lines[2].startswith("/c" + str(b.ctx.src_dir / "configure"))
        assert "--disable-shared --enable-static" in lines[2]
        assert lines[3:] == ["make -j", "make install"]
