#!/usr/bin/env python3
"""buildredwg.py - builds libredwg from source and generates cgo bindings

features:

- Single script which clones, builds and stages a static libredwg
- Out-of-tree autotools build, isolated per target triple
- Compiler/linker flags recovered from pkg-config and rewritten to
  ${SRCDIR}-relative paths so the generated files stay relocatable
- Emits one build-constrained cgo file per os/arch pair
- Windows hosts run the autotools steps through an MSYS2/Git-Bash shell

class structure:

BuildConfig
BuildContext
DiscoveredFlags

ShellCmd
    Executor
        DirectExecutor
        ShellExecutor
    LibreDwgBuilder

"""

import abc
import argparse
import datetime
import logging
import os
import platform
import re
import shlex
import shutil
import stat
import subprocess
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

__version__ = "0.1.0"

# ----------------------------------------------------------------------------
# type aliases

Pathlike = Union[str, Path]
Rewrite = tuple[str, str]


# ----------------------------------------------------------------------------
# constants

PLATFORM = platform.system()
ARCH = platform.machine()

DEFAULT_REPO_URL = "https://github.com/LibreDWG/libredwg.git"
DEFAULT_REPO_REF = "master"
DEFAULT_PKG_NAMES = "libredwg,redwg,libreDWG,libredwg-0,libredwg-0.1"

STATIC_LIB_NAME = "libredwg.a"
STATIC_LIB_KEY = "dwg"

CONFIGURE_OPTIONS = ["--disable-shared", "--enable-static"]
BUILD_SYSTEM_ALTERNATIVES = ["meson", "cmake"]

LARGEFILE_DEFINES = [
    "-D_LARGEFILE_SOURCE",
    "-D_LARGEFILE64_SOURCE",
    "-D_FILE_OFFSET_BITS=64",
]

# Best guess at libredwg's transitive deps when pkg-config gives us nothing.
# Not derived from the build; platforms with extra deps will fail at link time.
FALLBACK_LDFLAGS = ["-lm", "-lz", "-liconv"]

SRCDIR = "${SRCDIR}"
GENERATED_HEADER = "// Code generated by buildredwg; DO NOT EDIT."

TRUTHY = ("1", "true")

# go-style os / arch identifiers
OS_IDS = {
    "Linux": "linux",
    "Darwin": "darwin",
    "Windows": "windows",
    "FreeBSD": "freebsd",
    "OpenBSD": "openbsd",
    "NetBSD": "netbsd",
    "DragonFly": "dragonfly",
    "SunOS": "solaris",
    "AIX": "aix",
}

# posix layers on windows report e.g. MSYS_NT-10.0-19045
WINDOWS_SYSTEM_PREFIXES = ("MSYS_NT", "MINGW", "CYGWIN_NT")

# values accepted by a go:build os constraint
KNOWN_GOOS = frozenset(
    [
        "aix", "android", "darwin", "dragonfly", "freebsd", "hurd", "illumos",
        "ios", "js", "linux", "netbsd", "openbsd", "plan9", "solaris",
        "wasip1", "windows", "zos",
    ]
)

ARCH_IDS = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv6l": "arm",
    "armv7l": "arm",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


# ----------------------------------------------------------------------------
# env helpers


def getenv(
    key: str, default: bool = False, environ: Optional[Mapping[str, str]] = None
) -> bool:
    """convert '1','true' env values to bool {True, False}"""
    value = (os.environ if environ is None else environ).get(key, "")
    if not value:
        return default
    return value.strip().lower() in TRUTHY


def env_or_default(environ: Mapping[str, str], key: str, default: str) -> str:
    """return env value if set and non-empty else default"""
    return environ.get(key) or default


def parse_pkg_names(value: str) -> tuple[str, ...]:
    """split comma-separated candidate names, dropping blanks"""
    return tuple(name.strip() for name in value.split(",") if name.strip())


# ----------------------------------------------------------------------------
# platform detection utilities


class PlatformInfo:
    """Centralized platform detection"""

    def __init__(
        self, system: Optional[str] = None, machine: Optional[str] = None
    ) -> None:
        self.system = system or PLATFORM
        self.machine = machine or ARCH

    @property
    def is_darwin(self) -> bool:
        """Check if running on macOS"""
        return self.system == "Darwin"

    @property
    def is_linux(self) -> bool:
        """Check if running on Linux"""
        return self.system == "Linux"

    @property
    def is_windows(self) -> bool:
        """Check if running on Windows, including MSYS2 and Cygwin"""
        return self.system == "Windows" or self.system.upper().startswith(
            WINDOWS_SYSTEM_PREFIXES
        )

    @property
    def os_id(self) -> str:
        """go-style os name: linux, darwin, windows

        Raises:
            ValidationError: If the host os has no go equivalent
        """
        if self.is_windows:
            return "windows"
        os_id = OS_IDS.get(self.system, self.system.lower())
        if os_id not in KNOWN_GOOS:
            raise ValidationError(f"Unsupported host os for cgo: {self.system!r}")
        return os_id

    @property
    def arch_id(self) -> str:
        """go-style arch name: amd64, arm64, 386"""
        return ARCH_IDS.get(self.machine.lower(), self.machine.lower())


# ----------------------------------------------------------------------------
# logging config


class CustomFormatter(logging.Formatter):
    """custom logging formatting class"""

    white = "\x1b[97;20m"
    grey = "\x1b[38;20m"
    green = "\x1b[32;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    fmt = "%(delta)s - %(levelname)s - %(name)s.%(funcName)s - %(message)s"
    cfmt = (
        f"{white}%(delta)s{reset} - "
        f"{{}}%(levelname)s{{}} - "
        f"{white}%(name)s.%(funcName)s{reset} - "
        f"{grey}%(message)s{reset}"
    )

    FORMATS = {
        logging.DEBUG: cfmt.format(grey, reset),
        logging.INFO: cfmt.format(green, reset),
        logging.WARNING: cfmt.format(yellow, reset),
        logging.ERROR: cfmt.format(red, reset),
        logging.CRITICAL: cfmt.format(bold_red, reset),
    }

    def __init__(self, use_color: bool = True) -> None:
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        """custom logger formatting method"""
        if not self.use_color:
            log_fmt: str = self.fmt
        else:
            log_fmt = self.FORMATS.get(record.levelno, self.fmt)
        duration = datetime.datetime.fromtimestamp(
            record.relativeCreated / 1000, datetime.timezone.utc
        )
        record.delta = duration.strftime("%H:%M:%S")
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


def setup_logging(debug: bool = True, color: bool = True) -> None:
    """install the colored stream handler on the root logger"""
    strm_handler = logging.StreamHandler()
    strm_handler.setFormatter(CustomFormatter(use_color=color))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        handlers=[strm_handler],
        force=True,
    )


# ----------------------------------------------------------------------------
# custom exceptions


class BuildError(Exception):
    """Base exception for build errors"""

    pass


class ToolMissingError(BuildError):
    """Exception for required executables missing from PATH"""

    pass


class CommandError(BuildError):
    """Exception for command execution errors"""

    pass


class SourceAcquisitionError(CommandError):
    """Exception for git clone/fetch/checkout/submodule errors"""

    pass


class BuildStepError(CommandError):
    """Exception for autoreconf/configure/make/install errors"""

    pass


class BuildSystemMissingError(BuildError):
    """Exception for sources without a usable configure script"""

    pass


class ArtifactNotFoundError(BuildError):
    """Exception for missing install products"""

    pass


class FilesystemError(BuildError):
    """Exception for failed directory create/remove/copy"""

    pass


class ValidationError(BuildError):
    """Exception for unusable configuration"""

    pass


# ----------------------------------------------------------------------------
# dataclasses


@dataclass(frozen=True)
class BuildConfig:
    """Build settings, read once from the environment and passed around."""

    build_root: str = os.path.join("dwg_service", "build")
    install_root: str = os.path.join("dwg_service", "build", "_install")
    final_root: str = os.path.join("dwg_service", "libs", "libredwg")
    src_dirname: str = "libredwg"
    repo_url: str = DEFAULT_REPO_URL
    repo_ref: str = DEFAULT_REPO_REF
    clean: bool = False
    binding_out_dir: str = "dwg_service"
    binding_package: str = "main"
    target_triple: Optional[str] = None
    shell: str = "bash"
    pkg_names: tuple[str, ...] = field(
        default_factory=lambda: parse_pkg_names(DEFAULT_PKG_NAMES)
    )
    jobs: Optional[int] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BuildConfig":
        """Build a configuration from DWG_* environment variables.

        Unset or empty variables fall back to the field defaults.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        jobs = env.get("DWG_JOBS")
        try:
            njobs = int(jobs) if jobs else None
        except ValueError as e:
            raise ValidationError(f"DWG_JOBS must be an integer, got {jobs!r}") from e
        return cls(
            build_root=env_or_default(env, "DWG_BUILD_ROOT", defaults.build_root),
            install_root=env_or_default(env, "DWG_INSTALL_ROOT", defaults.install_root),
            final_root=env_or_default(env, "DWG_FINAL_ROOT", defaults.final_root),
            src_dirname=env_or_default(env, "DWG_SRC_DIRNAME", defaults.src_dirname),
            repo_url=env_or_default(env, "DWG_REPO_URL", defaults.repo_url),
            repo_ref=env_or_default(env, "DWG_REPO_REF", defaults.repo_ref),
            clean=getenv("DWG_CLEAN", environ=env),
            binding_out_dir=env_or_default(
                env, "DWG_CGO_OUT_DIR", defaults.binding_out_dir
            ),
            binding_package=env_or_default(
                env, "DWG_CGO_PACKAGE", defaults.binding_package
            ),
            target_triple=env.get("DWG_TARGET_TRIPLE") or None,
            shell=env_or_default(env, "DWG_WINDOWS_BASH", defaults.shell),
            pkg_names=parse_pkg_names(
                env_or_default(env, "DWG_PKG_NAMES", DEFAULT_PKG_NAMES)
            ),
            jobs=njobs,
        )


@dataclass(frozen=True)
class BuildContext:
    """Absolute directory layout of one run for one target triple."""

    os_id: str
    arch_id: str
    target: str
    cwd: Path
    build_root: Path
    src_root: Path
    src_dir: Path
    build_dir: Path
    install_dir: Path
    final_root: Path
    final_include: Path
    final_lib_dir: Path
    binding_dir: Path
    final_lib: Optional[Path] = None

    @property
    def is_windows(self) -> bool:
        """true if building on a windows host"""
        return self.os_id == "windows"

    @property
    def binding_name(self) -> str:
        """cgo_<os>_<arch>.go"""
        return f"cgo_{self.os_id}_{self.arch_id}.go"

    @property
    def binding_file(self) -> Path:
        """path of the generated cgo file"""
        return self.binding_dir / self.binding_name

    @property
    def prefix(self) -> str:
        """absolute forward-slash install prefix passed to configure"""
        return self.install_dir.as_posix()

    def pkg_config_path(self) -> list[str]:
        """pkgconfig dirs under the install prefix"""
        return [
            f"{self.prefix}/lib/pkgconfig",
            f"{self.prefix}/lib64/pkgconfig",
            f"{self.prefix}/share/pkgconfig",
        ]


@dataclass(frozen=True)
class DiscoveredFlags:
    """pkg-config output for the freshly installed library"""

    cflags: str = ""
    libs: str = ""
    found: bool = False


def resolve_context(
    config: BuildConfig,
    platform_info: Optional[PlatformInfo] = None,
    cwd: Optional[Pathlike] = None,
) -> BuildContext:
    """Compute the per-run layout from config and the host platform.

    Args:
        config: build settings
        platform_info: host platform, detected when omitted
        cwd: invocation directory, ``os.getcwd()`` when omitted

    Returns:
        A BuildContext with every path absolute

    Raises:
        BuildError: If the working directory cannot be determined
    """
    info = platform_info or PlatformInfo()
    if cwd is None:
        try:
            cwd = os.getcwd()
        except OSError as e:
            raise BuildError(f"Cannot get current directory: {e}") from e
    wd = Path(cwd)

    def _abs(path: Pathlike) -> Path:
        return Path(os.path.normpath(wd / path))

    target = config.target_triple or f"{info.os_id}-{info.arch_id}"

    build_root = _abs(config.build_root)
    src_root = build_root / "_src"
    final_root = _abs(config.final_root)

    return BuildContext(
        os_id=info.os_id,
        arch_id=info.arch_id,
        target=target,
        cwd=wd,
        build_root=build_root,
        src_root=src_root,
        src_dir=src_root / config.src_dirname,
        build_dir=build_root / f"_build_{target}",
        install_dir=_abs(config.install_root) / target,
        final_root=final_root,
        final_include=final_root / "include",
        final_lib_dir=final_root / target / "lib",
        binding_dir=_abs(config.binding_out_dir),
    )


# ----------------------------------------------------------------------------
# pure helpers


def to_msys_path(path: Pathlike) -> str:
    """rewrite C:/x/y (or C:\\x\\y) to /c/x/y for msys-style shells"""
    p = str(path).replace("\\", "/")
    if len(p) >= 3 and p[1] == ":" and p[2] == "/":
        return "/" + p[0].lower() + p[2:]
    return p


def select_static_lib(names: Iterable[str]) -> Optional[str]:
    """Pick the libredwg archive out of a directory listing.

    ``lib*.a`` names containing 'dwg' (any case) are candidates, with a
    fallback to the exact conventional name. ``libredwg.a`` wins over other
    candidates, otherwise the lexicographically smallest is returned.
    """
    names = list(names)
    candidates = sorted(
        n
        for n in names
        if n.startswith("lib") and n.endswith(".a") and STATIC_LIB_KEY in n.lower()
    )
    if not candidates:
        candidates = [n for n in names if n == STATIC_LIB_NAME]
    if not candidates:
        return None
    if STATIC_LIB_NAME in candidates:
        return STATIC_LIB_NAME
    return candidates[0]


def rewrite_flags(flags: str, rewrites: Sequence[Rewrite]) -> str:
    """Replace absolute path prefixes in a flag string with symbolic ones.

    Backslashes are normalized first. Each ``(src, dst)`` pair is applied in
    order and only matches a whole path: it must start a token (optionally
    after ``-I``/``-L``, ``=`` or ``,``) and end at a path-component boundary,
    so a rewrite for ``/p/lib`` leaves ``/p/lib64`` and ``/x/p/lib`` alone.
    """
    if not flags.strip():
        return ""
    out = flags.replace("\\", "/")
    for src, dst in rewrites:
        src = src.replace("\\", "/").rstrip("/")
        if not src:
            continue
        pattern = r"(?<![^\s=,])(-[IL])?" + re.escape(src) + r"(?=/|\s|$)"
        out = re.sub(pattern, lambda m, d=dst: (m.group(1) or "") + d, out)
    return out.strip()


def dedup_tokens(flags: str) -> str:
    """drop repeated whitespace-separated tokens, keeping first occurrence"""
    seen: set[str] = set()
    out: list[str] = []
    for token in flags.split():
        if token not in seen:
            seen.add(token)
            out.append(token)
    return " ".join(out)


def render_binding(
    os_id: str, arch_id: str, package: str, cppflags: str, ldflags: str
) -> str:
    """render the text of a cgo file gated to one os/arch"""
    return "\n".join(
        [
            f"//go:build {os_id} && {arch_id}",
            "",
            GENERATED_HEADER,
            "",
            f"package {package}",
            "",
            f"// #cgo CPPFLAGS: {cppflags}",
            f"// #cgo LDFLAGS: {ldflags}",
            'import "C"',
            "",
        ]
    )


# ----------------------------------------------------------------------------
# utility classes


class ShellCmd:
    """Provides platform agnostic file/folder handling."""

    log: logging.Logger

    def cmd(
        self,
        shellcmd: list[str],
        cwd: Pathlike = ".",
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Run command within working directory

        Args:
            shellcmd: Command as a list of args
            cwd: Working directory for command execution
            env: Full environment for the child, inherited when None

        Raises:
            ToolMissingError: If the executable cannot be spawned
            CommandError: If command exits non-zero
        """
        self.log.info(" ".join(shellcmd))
        try:
            subprocess.check_call(shellcmd, cwd=str(cwd), env=env)
        except FileNotFoundError as e:
            self.log.critical("Cannot run %s: %s", shellcmd[0], e)
            raise ToolMissingError(f"Cannot find required tool {shellcmd[0]!r}") from e
        except subprocess.CalledProcessError as e:
            self.log.critical("Command failed: %s", e)
            raise CommandError(
                f"Command failed: {' '.join(shellcmd)} (dir={cwd}): exit {e.returncode}"
            ) from e

    def get(
        self,
        shellcmd: list[str],
        cwd: Pathlike = ".",
        env: Optional[Mapping[str, str]] = None,
        check: bool = True,
    ) -> str:
        """get stripped stdout of shellcmd

        With ``check=False`` a non-zero exit yields an empty string and
        stderr is discarded.
        """
        self.log.debug(" ".join(shellcmd))
        try:
            if check:
                return subprocess.check_output(
                    shellcmd, encoding="utf8", cwd=str(cwd), env=env
                ).strip()
            proc = subprocess.run(
                shellcmd,
                encoding="utf8",
                cwd=str(cwd),
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise ToolMissingError(f"Cannot find required tool {shellcmd[0]!r}") from e
        except subprocess.CalledProcessError as e:
            self.log.critical("Command failed: %s", e)
            raise CommandError(
                f"Command failed: {' '.join(shellcmd)} (dir={cwd}): exit {e.returncode}"
            ) from e
        if proc.returncode != 0:
            return ""
        return (proc.stdout or "").strip()

    def fail(self, msg: str, *args: str, exc: type[BuildError] = BuildError) -> str:
        """Raise a BuildError (or subclass) with formatted message

        Returns:
            Never returns (always raises), typed as str for property compatibility
        """
        formatted_msg = msg % args if args else msg
        self.log.critical(formatted_msg)
        raise exc(formatted_msg)

    def which(self, tool: str) -> Optional[str]:
        """locate tool on PATH"""
        return shutil.which(tool)

    def require_tool(self, tool: str) -> None:
        """raise ToolMissingError if tool is not on PATH"""
        if not self.which(tool):
            self.fail("Cannot find required tool %r in PATH", tool, exc=ToolMissingError)

    def makedirs(self, path: Pathlike, mode: int = 0o750, exist_ok: bool = True) -> None:
        """Recursive directory creation function"""
        self.log.debug("Making directory: %s", path)
        try:
            os.makedirs(path, mode, exist_ok)
        except OSError as e:
            raise FilesystemError(f"Could not create directory {path}: {e}") from e

    def copy(self, src: Pathlike, dst: Pathlike) -> None:
        """copy file or folders -- tries to be behave like `cp -rf`"""
        self.log.info("copy %s to %s", src, dst)
        src, dst = Path(src), Path(dst)
        try:
            if src.is_dir():
                shutil.copytree(src, dst, dirs_exist_ok=True)
            else:
                dst.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(src, dst)
        except (OSError, shutil.Error) as e:
            raise FilesystemError(f"Error copying {src} -> {dst}: {e}") from e

    def remove(self, path: Pathlike, silent: bool = False) -> None:
        """Remove file or folder, missing paths are ignored."""

        # handle windows error on read-only files (git objects)
        def remove_readonly(func: Callable[..., Any], path: str, exc: Any) -> None:
            "Clear the readonly bit and reattempt the removal"
            if isinstance(exc, tuple):
                exc = exc[1]
            if func not in (os.unlink, os.rmdir) or getattr(exc, "winerror", None) != 5:
                raise exc
            os.chmod(path, stat.S_IWRITE)
            func(path)

        path = Path(path)
        try:
            if path.is_dir() and not path.is_symlink():
                if not silent:
                    self.log.debug("Removing folder: %s", path)
                if sys.version_info >= (3, 12):
                    shutil.rmtree(path, onexc=remove_readonly)
                else:
                    shutil.rmtree(path, onerror=remove_readonly)
            elif path.exists() or path.is_symlink():
                if not silent:
                    self.log.debug("Removing file: %s", path)
                path.unlink()
        except OSError as e:
            raise FilesystemError(f"Could not remove {path}: {e}") from e


# ----------------------------------------------------------------------------
# executors


class Executor(ShellCmd, abc.ABC):
    """Runs build tooling in a host-appropriate way."""

    def __init__(self) -> None:
        self.log = logging.getLogger(self.__class__.__name__)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"

    @staticmethod
    def merged_env(
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> Optional[dict[str, str]]:
        """inherited environment plus extra_env, or None to inherit as is"""
        if not extra_env:
            return None
        env = dict(os.environ)
        env.update(extra_env)
        return env

    @abc.abstractmethod
    def run(
        self,
        args: list[str],
        cwd: Pathlike,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> None:
        """run a single command, streaming its output"""

    @abc.abstractmethod
    def output(
        self,
        args: list[str],
        cwd: Pathlike,
        extra_env: Optional[Mapping[str, str]] = None,
        check: bool = True,
    ) -> str:
        """run a single command and return its stdout"""

    @abc.abstractmethod
    def run_steps(
        self,
        steps: list[list[str]],
        cwd: Pathlike,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> None:
        """run several commands in cwd, stopping at the first failure"""

    @abc.abstractmethod
    def native_path(self, path: Pathlike) -> str:
        """absolute path as the executing shell spells it"""

    @abc.abstractmethod
    def has_tool(self, tool: str) -> bool:
        """true if tool is reachable by this executor"""

    @abc.abstractmethod
    def required_tools(self) -> list[str]:
        """host executables checked before the build starts"""


class DirectExecutor(Executor):
    """Spawns each tool directly (POSIX hosts)."""

    def run(
        self,
        args: list[str],
        cwd: Pathlike,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.cmd(args, cwd=cwd, env=self.merged_env(extra_env))

    def output(
        self,
        args: list[str],
        cwd: Pathlike,
        extra_env: Optional[Mapping[str, str]] = None,
        check: bool = True,
    ) -> str:
        return self.get(args, cwd=cwd, env=self.merged_env(extra_env), check=check)

    def run_steps(
        self,
        steps: list[list[str]],
        cwd: Pathlike,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> None:
        for step in steps:
            self.run(step, cwd, extra_env)

    def native_path(self, path: Pathlike) -> str:
        return Path(os.path.abspath(path)).as_posix()

    def has_tool(self, tool: str) -> bool:
        return self.which(tool) is not None

    def required_tools(self) -> list[str]:
        return ["git", "make", "cc"]


class ShellExecutor(Executor):
    """Runs tools as `<shell> -lc <script>` (MSYS2 / Git-Bash on Windows)."""

    def __init__(self, shell: str = "bash") -> None:
        super().__init__()
        self.shell = shell

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} '{self.shell}'>"

    def run_script(
        self,
        script: str,
        cwd: Pathlike,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> None:
        """run a multi-line script through the shell"""
        try:
            self.cmd([self.shell, "-lc", script], cwd=cwd, env=self.merged_env(extra_env))
        except CommandError as e:
            raise CommandError(f"{e}\nScript:\n{script}") from e

    def run(
        self,
        args: list[str],
        cwd: Pathlike,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.run_script(shlex.join(args), cwd, extra_env)

    def output(
        self,
        args: list[str],
        cwd: Pathlike,
        extra_env: Optional[Mapping[str, str]] = None,
        check: bool = True,
    ) -> str:
        script = shlex.join(args)
        if not check:
            script += " 2>/dev/null || true"
        return self.get(
            [self.shell, "-lc", script],
            cwd=cwd,
            env=self.merged_env(extra_env),
            check=check,
        )

    def run_steps(
        self,
        steps: list[list[str]],
        cwd: Pathlike,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> None:
        lines = ["set -e", f"cd {shlex.quote(self.native_path(cwd))}"]
        lines.extend(shlex.join(step) for step in steps)
        self.run_script("\n".join(lines), cwd, extra_env)

    def native_path(self, path: Pathlike) -> str:
        return to_msys_path(os.path.abspath(path))

    def has_tool(self, tool: str) -> bool:
        return bool(self.output(["command", "-v", tool], cwd=".", check=False))

    def required_tools(self) -> list[str]:
        # the autotools live inside the shell environment and surface lazily
        return ["git", self.shell]


def make_executor(ctx: BuildContext, config: BuildConfig) -> Executor:
    """pick the executor for the host platform"""
    if ctx.is_windows:
        return ShellExecutor(config.shell)
    return DirectExecutor()


# ----------------------------------------------------------------------------
# main classes


class LibreDwgBuilder(ShellCmd):
    """Builds a static libredwg and generates its cgo binding."""

    name = "libredwg"

    def __init__(
        self,
        config: BuildConfig,
        ctx: Optional[BuildContext] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.config = config
        self.ctx = ctx or resolve_context(config)
        self.executor = executor or make_executor(self.ctx, config)
        self.log = logging.getLogger(self.__class__.__name__)

    def __repr__(self) -> str:
        ref = self.config.repo_ref
        return f"<{self.__class__.__name__} '{self.name}@{ref}' {self.ctx.target}>"

    @property
    def configure_script(self) -> Path:
        """path to the autotools configure script"""
        return self.ctx.src_dir / "configure"

    @property
    def make_jobs(self) -> str:
        """-j or -jN"""
        return f"-j{self.config.jobs}" if self.config.jobs else "-j"

    @property
    def configure_options(self) -> list[str]:
        """static-only configure options with the install prefix"""
        return [f"--prefix={self.ctx.prefix}"] + CONFIGURE_OPTIONS

    @property
    def symbolic_root(self) -> str:
        """final root as seen from the binding dir: ${SRCDIR}/libs/libredwg"""
        try:
            rel = os.path.relpath(self.ctx.final_root, self.ctx.binding_dir)
        except ValueError as e:
            raise ValidationError(
                f"final root {self.ctx.final_root} is not reachable from "
                f"binding dir {self.ctx.binding_dir} by a relative path"
            ) from e
        rel = Path(rel).as_posix()
        return SRCDIR if rel == "." else f"{SRCDIR}/{rel}"

    @property
    def symbolic_lib_dir(self) -> str:
        """per-target lib dir as seen from the binding dir"""
        return f"{self.symbolic_root}/{self.ctx.target}/lib"

    def path_rewrites(self) -> list[Rewrite]:
        """absolute prefixes to replace in pkg-config output, most specific first"""
        prefix = self.ctx.prefix
        return [
            (f"{prefix}/lib64", self.symbolic_lib_dir),
            (f"{prefix}/lib", self.symbolic_lib_dir),
            (prefix, self.symbolic_root),
            (self.ctx.final_root.as_posix(), self.symbolic_root),
        ]

    # ------------------------------------------------------------------
    # setup

    def prepare_dirs(self) -> None:
        """create the cache, install and final roots"""
        for path in [
            self.ctx.build_root,
            self.ctx.src_root,
            self.ctx.install_dir,
            self.ctx.final_root,
        ]:
            self.makedirs(path)

    def check_tools(self) -> None:
        """pre-flight check of the core toolchain"""
        for tool in self.executor.required_tools():
            self.require_tool(tool)
        if not self.ctx.is_windows and not self.which("autoreconf"):
            self.log.warning(
                "autoreconf not found. If the source lacks ./configure, build will fail."
            )

    def git_clone(self, url: str, directory: Pathlike, cwd: Pathlike = ".") -> None:
        """git clone a repository source tree from a url

        Any location git understands is accepted, including scp-style
        ``user@host:path`` and relative mirror paths.

        Raises:
            ValidationError: If URL is empty
            CommandError: If git clone fails
        """
        if not url.strip():
            raise ValidationError("Empty git URL")
        self.cmd(["git", "clone", url, str(directory)], cwd=cwd)

    def ensure_source(self) -> None:
        """clone or fetch libredwg, checkout the pinned ref, sync submodules"""
        ctx = self.ctx
        self.makedirs(ctx.src_root)

        if self.config.clean:
            self.log.info("clean requested: removing build cache %s", ctx.build_root)
            self.remove(ctx.build_root)
            self.makedirs(ctx.src_root)

        try:
            if not ctx.src_dir.exists():
                self.log.info("Cloning %s repository...", self.name)
                self.git_clone(
                    self.config.repo_url, self.config.src_dirname, cwd=ctx.src_root
                )
            else:
                self.log.info("Found existing %s source", self.name)
                self.cmd(["git", "fetch", "--all", "--tags"], cwd=ctx.src_dir)

            self.cmd(["git", "checkout", self.config.repo_ref], cwd=ctx.src_dir)
            self.cmd(
                ["git", "submodule", "update", "--init", "--recursive"],
                cwd=ctx.src_dir,
            )
        except CommandError as e:
            raise SourceAcquisitionError(str(e)) from e

    def ensure_autotools(self) -> None:
        """regenerate ./configure with autoreconf when it is missing"""
        if self.configure_script.exists():
            return

        self.log.info("No ./configure found, trying autoreconf -fi ...")
        if not self.executor.has_tool("autoreconf"):
            self.fail("Cannot find required tool 'autoreconf'", exc=ToolMissingError)
        try:
            self.executor.run(["autoreconf", "-fi"], cwd=self.ctx.src_dir)
        except CommandError as e:
            raise BuildStepError(str(e)) from e

        if not self.configure_script.exists():
            alternatives = "/".join(BUILD_SYSTEM_ALTERNATIVES)
            self.fail(
                "Still no ./configure after autoreconf in %s. The source may not use "
                "autotools; if it uses %s, the build steps need adjusting.",
                str(self.ctx.src_dir),
                alternatives,
                exc=BuildSystemMissingError,
            )

    # ------------------------------------------------------------------
    # build

    def build_steps(self) -> list[list[str]]:
        """configure, make and make install, in that order"""
        configure = self.executor.native_path(self.configure_script)
        return [
            [configure] + self.configure_options,
            ["make", self.make_jobs],
            ["make", "install"],
        ]

    def build(self) -> None:
        """clean out-of-tree configure/make/install for the current target"""
        ctx = self.ctx
        for path in [ctx.build_dir, ctx.install_dir]:
            self.remove(path)
            self.makedirs(path)

        self.log.info("Configuring %s (prefix=%s)", self.name, ctx.prefix)
        try:
            self.executor.run_steps(self.build_steps(), cwd=ctx.build_dir)
        except CommandError as e:
            raise BuildStepError(str(e)) from e
        self.log.info("%s build complete", self.name)

    # ------------------------------------------------------------------
    # staging

    def install_lib_dir(self) -> Path:
        """lib or lib64 under the install prefix"""
        for name in ["lib", "lib64"]:
            candidate = self.ctx.install_dir / name
            if candidate.is_dir():
                return candidate
        return Path(
            self.fail(
                "install lib dir not found: %s (or lib64)",
                str(self.ctx.install_dir / "lib"),
                exc=ArtifactNotFoundError,
            )
        )

    def find_static_lib(self, lib_dir: Path) -> Path:
        """locate the libredwg archive inside lib_dir"""
        try:
            names = [p.name for p in lib_dir.iterdir() if p.is_file()]
        except OSError as e:
            raise FilesystemError(f"Cannot read dir {lib_dir}: {e}") from e
        name = select_static_lib(names)
        if name is None:
            self.fail(
                "No static lib found under %s", str(lib_dir), exc=ArtifactNotFoundError
            )
        return lib_dir / name

    def stage_artifacts(self) -> BuildContext:
        """copy headers and the static archive to the final root

        The final include dir is replaced wholesale; only the resolved archive
        is copied into the per-target lib dir.

        Returns:
            the context with ``final_lib`` set
        """
        ctx = self.ctx
        install_include = ctx.install_dir / "include"
        if not install_include.is_dir():
            self.fail(
                "install include dir not found: %s",
                str(install_include),
                exc=ArtifactNotFoundError,
            )
        lib = self.find_static_lib(self.install_lib_dir())

        self.makedirs(ctx.final_root)
        self.makedirs(ctx.final_lib_dir)

        self.remove(ctx.final_include)
        self.copy(install_include, ctx.final_include)

        final_lib = ctx.final_lib_dir / lib.name
        self.copy(lib, final_lib)

        self.ctx = replace(ctx, final_lib=final_lib)
        self.log.info("Synced include -> %s", ctx.final_include)
        self.log.info("Synced static lib -> %s", final_lib)
        return self.ctx

    # ------------------------------------------------------------------
    # bindings

    def discover_flags(self) -> DiscoveredFlags:
        """query pkg-config for each candidate name against the install prefix"""
        if not self.executor.has_tool("pkg-config"):
            self.log.info("pkg-config not available, using fallback link flags")
            return DiscoveredFlags()

        extra_env = {"PKG_CONFIG_PATH": os.pathsep.join(self.ctx.pkg_config_path())}
        for pkg in self.config.pkg_names:
            cflags = self.executor.output(
                ["pkg-config", "--cflags", pkg],
                cwd=self.ctx.cwd,
                extra_env=extra_env,
                check=False,
            )
            libs = self.executor.output(
                ["pkg-config", "--libs", "--static", pkg],
                cwd=self.ctx.cwd,
                extra_env=extra_env,
                check=False,
            )
            if cflags or libs:
                self.log.info("pkg-config resolved %s", pkg)
                return DiscoveredFlags(cflags=cflags, libs=libs, found=True)

        self.log.info(
            "no pkg-config entry among %s, using fallback link flags",
            ",".join(self.config.pkg_names),
        )
        return DiscoveredFlags()

    def binding_flags(self, flags: DiscoveredFlags) -> tuple[str, str]:
        """return (CPPFLAGS, LDFLAGS) lines for the cgo file"""
        if self.ctx.final_lib is None:
            self.fail("static lib not staged yet", exc=ArtifactNotFoundError)
        rewrites = self.path_rewrites()
        cflags = rewrite_flags(flags.cflags, rewrites)
        libs = rewrite_flags(flags.libs, rewrites)

        cpp = " ".join(
            [f"-I{self.symbolic_root}/include"] + LARGEFILE_DEFINES + [cflags]
        )
        lib_path = f"{self.symbolic_lib_dir}/{self.ctx.final_lib.name}"
        if flags.found and libs:
            ld = " ".join([lib_path, libs])
        else:
            ld = " ".join([lib_path] + FALLBACK_LDFLAGS)
        return dedup_tokens(cpp), dedup_tokens(ld)

    def generate_binding(self, flags: DiscoveredFlags) -> Path:
        """write cgo_<os>_<arch>.go into the binding dir"""
        cpp, ld = self.binding_flags(flags)
        text = render_binding(
            self.ctx.os_id,
            self.ctx.arch_id,
            self.config.binding_package,
            cpp,
            ld,
        )
        self.makedirs(self.ctx.binding_dir)
        out = self.ctx.binding_file
        try:
            with open(out, "w", encoding="utf8", newline="\n") as f:
                f.write(text)
        except OSError as e:
            raise FilesystemError(f"Error writing {out}: {e}") from e
        self.log.info("Generated cgo file: %s", out)
        return out

    # ------------------------------------------------------------------
    # driver

    def dry_run(self) -> None:
        """Display build plan without actually building."""
        ctx = self.ctx
        print("\n" + "=" * 60)
        print("BUILD PLAN (dry-run)")
        print("=" * 60)

        print("\n[Build Target]")
        print(f"  Repository:        {self.config.repo_url}")
        print(f"  Ref:               {self.config.repo_ref}")
        print(f"  Target:            {ctx.target}")
        print(f"  Platform:          {ctx.os_id} ({ctx.arch_id})")
        print(f"  Executor:          {self.executor!r}")
        print(f"  Clean:             {self.config.clean}")

        print("\n[Directories]")
        print(f"  Source directory:  {ctx.src_dir}")
        print(f"  Build directory:   {ctx.build_dir}")
        print(f"  Install prefix:    {ctx.prefix}")
        print(f"  Final include:     {ctx.final_include}")
        print(f"  Final lib dir:     {ctx.final_lib_dir}")

        print("\n[Configure Options]")
        for opt in self.configure_options:
            print(f"  {opt}")

        print("\n[pkg-config Candidates]")
        for pkg in self.config.pkg_names:
            print(f"  {pkg}")

        print("\n[Binding]")
        print(f"  File:              {ctx.binding_file}")
        print(f"  Package:           {self.config.binding_package}")
        print(f"  Root:              {self.symbolic_root}")

        print("\n" + "=" * 60)
        print("End of build plan. No changes were made.")
        print("=" * 60 + "\n")

    def process(self) -> Path:
        """main builder process, returns the generated cgo file"""
        self.log.info(
            "Building %s for %s/%s (target=%s)",
            self.name,
            self.ctx.os_id,
            self.ctx.arch_id,
            self.ctx.target,
        )
        self.prepare_dirs()
        self.check_tools()
        self.ensure_source()
        self.ensure_autotools()
        self.build()
        self.stage_artifacts()
        flags = self.discover_flags()
        return self.generate_binding(flags)


def main(argv: Optional[list[str]] = None) -> None:
    """commandline api entrypoint"""

    parser = argparse.ArgumentParser(
        prog="buildredwg.py",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Builds a static libredwg and generates cgo bindings",
        epilog="Defaults come from DWG_* environment variables.",
    )
    opt = parser.add_argument

    # fmt: off
    opt("-c", "--clean", help="remove the build cache before building", action="store_true")
    opt("-j", "--jobs", help="# of make jobs (default: unlimited)", type=int)
    opt("-n", "--dry-run", help="show build plan without building", action="store_true")
    opt("-r", "--ref", help="git tag, branch or commit to build")
    opt("-t", "--target", help="target triple naming the output dirs (default: <os>-<arch>)")
    opt("-u", "--repo-url", help="libredwg repository url")
    opt("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    # fmt: on

    args = parser.parse_args(argv)
    setup_logging(debug=getenv("DEBUG", default=True), color=getenv("COLOR", default=True))

    try:
        config = BuildConfig.from_env()
        overrides: dict[str, Any] = {}
        if args.clean:
            overrides["clean"] = True
        if args.jobs:
            overrides["jobs"] = args.jobs
        if args.ref:
            overrides["repo_ref"] = args.ref
        if args.target:
            overrides["target_triple"] = args.target
        if args.repo_url:
            overrides["repo_url"] = args.repo_url
        config = replace(config, **overrides)

        builder = LibreDwgBuilder(config)
        if args.dry_run:
            builder.dry_run()
            sys.exit(0)
        binding = builder.process()
    except BuildError as e:
        print(f"error: {e}")
        sys.exit(1)

    print("Done.")
    print(
        f"Final artifacts:\n  include: {builder.ctx.final_include}\n"
        f"  lib:     {builder.ctx.final_lib}\n  cgo:     {binding}"
    )
    sys.exit(0)


if __name__ == "__main__":
    main()
