"""
Recipe steps — one executor per step type.

Every executor receives a ``StepContext`` (the step directory, the
downloaded artifacts and the environment shared by the run) and raises
``RecipeStepError`` on failure. Subprocess steps run with the step
directory as cwd and the recipe variables in their environment.
"""

from __future__ import annotations

import logging
import os
import stat
import tarfile
import threading
import zipfile
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from hostpolicy.adapters.packages.apt import DPKG
from hostpolicy.adapters.packages.rpm import RPM
from hostpolicy.adapters.shell.command import Runner, run_command
from hostpolicy.core.models.policy import (
    ArchiveFormat,
    CopyFile,
    ExecFile,
    ExtractArchive,
    InstallDpkg,
    InstallMsi,
    InstallRpm,
    Interpreter,
    RecipeStep,
    RunScript,
)
from hostpolicy.core.persistence.files import atomic_write
from hostpolicy.core.services.recipes.errors import RecipeStepError

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"

DEFAULT_PERMISSIONS = 0o755

MSIEXEC = "C:\\Windows\\System32\\msiexec.exe"
POWERSHELL = "C:\\Windows\\System32\\WindowsPowerShell\\v1.0\\PowerShell.exe"
SHELL = "/bin/sh"

MSI_DEFAULT_FLAGS = ("/i", "/qn", "/norestart")
# 1641 and 3010: success, reboot initiated / required
MSI_DEFAULT_EXIT_CODES = (0, 1641, 3010)

SCRIPT_NAME = "recipe_script_source"
_SCRIPT_EXTENSIONS = {
    Interpreter.INTERPRETER_UNSPECIFIED: ".bat",
    Interpreter.SHELL: ".bat",
    Interpreter.POWERSHELL: ".ps1",
}

_TAR_MODES = {
    ArchiveFormat.TAR: "r:",
    ArchiveFormat.TAR_GZIP: "r:gz",
    ArchiveFormat.TAR_BZIP: "r:bz2",
    ArchiveFormat.TAR_XZ: "r:xz",
}


@dataclass
class StepContext:
    """Everything a step needs from the surrounding run."""

    step_dir: Path
    artifacts: Mapping[str, Path] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    runner: Runner = run_command
    timeout: float = 3600
    cancel: threading.Event | None = None

    def artifact(self, artifact_id: str) -> Path:
        try:
            return self.artifacts[artifact_id]
        except KeyError:
            raise RecipeStepError(f"{artifact_id!r} not found in artifact map") from None

    def step_env(self) -> dict[str, str]:
        env = dict(self.env)
        env["PWD"] = str(self.step_dir)
        return env


# ── Helpers ─────────────────────────────────────────────────────


def parse_permissions(value: str) -> int:
    """Octal permission string → mode bits. Empty means 0755."""
    if not value:
        return DEFAULT_PERMISSIONS
    try:
        mode = int(value, 8)
    except ValueError:
        raise RecipeStepError(f"invalid permissions {value!r}") from None
    if mode < 0 or mode > 0o7777:
        raise RecipeStepError(f"invalid permissions {value!r}")
    return mode


def _normalize(path: str) -> Path:
    return Path(os.path.abspath(os.path.expanduser(os.path.expandvars(path))))


def _execute(
    ctx: StepContext,
    cmd: list[str],
    allowed_exit_codes: Iterable[int] = (),
) -> None:
    """Run ``cmd`` in the step directory. Exit 0 and any allowed code pass."""
    result = ctx.runner(
        cmd, env=ctx.step_env(), cwd=str(ctx.step_dir), timeout=ctx.timeout, cancel=ctx.cancel
    )
    logger.info("Combined output for %r command:\n%s", cmd[0], result.output)
    if result.error:
        raise RecipeStepError(f"{cmd[0]}: {result.error}")
    allowed = {0, *allowed_exit_codes}
    if result.returncode not in allowed:
        raise RecipeStepError(result.describe())


def _inside(root: Path, name: str) -> Path:
    root = root.resolve()
    target = (root / name).resolve()
    if target != root and root not in target.parents:
        raise RecipeStepError(f"archive entry {name!r} escapes {root}")
    return target


def _check_conflicts(root: Path, entries: Iterable[tuple[str, bool]]) -> None:
    """Refuse to extract over existing files; existing directories are fine."""
    for name, is_dir in entries:
        target = _inside(root, name)
        if not target.exists() and not target.is_symlink():
            continue
        if is_dir and target.is_dir():
            continue
        raise RecipeStepError(f"file exists: {target}")


# ── Step executors ──────────────────────────────────────────────


def _execute_copy_step(step: CopyFile, ctx: StepContext) -> None:
    dest = _normalize(step.destination)
    mode = parse_permissions(step.permissions)
    if dest.exists() and not step.overwrite:
        raise RecipeStepError(f"file already exists at path {step.destination!r} and overwrite is false")
    src = ctx.artifact(step.artifact_id)
    try:
        atomic_write(dest, src.read_bytes(), mode=mode)
    except OSError as e:
        raise RecipeStepError(f"copying {src} to {dest}: {e}") from e


def _extract_zip(archive: Path, dest: Path) -> None:
    with zipfile.ZipFile(archive) as zf:
        infos = zf.infolist()
        _check_conflicts(dest, ((i.filename, i.is_dir()) for i in infos))
        for info in infos:
            target = _inside(dest, info.filename)
            mode = (info.external_attr >> 16) & 0o7777 or DEFAULT_PERMISSIONS
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                target.chmod(mode)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info) as src, open(target, "wb") as out:
                while chunk := src.read(64 * 1024):
                    out.write(chunk)
            target.chmod(mode)


def _extract_tar(archive: Path, dest: Path, fmt: ArchiveFormat) -> None:
    with tarfile.open(archive, _TAR_MODES[fmt]) as tf:
        members = tf.getmembers()
        _check_conflicts(dest, ((m.name, m.isdir()) for m in members))
        dest.mkdir(parents=True, exist_ok=True)
        tf.extractall(dest, filter="tar")


def _execute_extract_step(step: ExtractArchive, ctx: StepContext) -> None:
    archive = ctx.artifact(step.artifact_id)
    dest = _normalize(step.destination)
    try:
        if step.type == ArchiveFormat.ZIP:
            _extract_zip(archive, dest)
        elif step.type in _TAR_MODES:
            _extract_tar(archive, dest, step.type)
        else:
            raise RecipeStepError(f"unrecognized archive type {step.type!r}")
    except (OSError, zipfile.BadZipFile, tarfile.TarError) as e:
        raise RecipeStepError(f"extracting {archive.name}: {e}") from e


def _execute_msi_step(step: InstallMsi, ctx: StepContext) -> None:
    if not IS_WINDOWS:
        raise RecipeStepError("msi installation is only applicable on Windows")
    path = ctx.artifact(step.artifact_id)
    flags = list(step.flags) or list(MSI_DEFAULT_FLAGS)
    codes = step.allowed_exit_codes or MSI_DEFAULT_EXIT_CODES
    _execute(ctx, [MSIEXEC, *flags, str(path)], codes)


def _execute_dpkg_step(step: InstallDpkg, ctx: StepContext) -> None:
    if not Path(DPKG).exists():
        raise RecipeStepError("dpkg does not exist on system")
    _execute(ctx, [DPKG, "--install", str(ctx.artifact(step.artifact_id))])


def _execute_rpm_step(step: InstallRpm, ctx: StepContext) -> None:
    if not Path(RPM).exists():
        raise RecipeStepError("rpm does not exist on system")
    _execute(ctx, [RPM, "--upgrade", "--replacepkgs", "-v", str(ctx.artifact(step.artifact_id))])


def _execute_exec_step(step: ExecFile, ctx: StepContext) -> None:
    if step.artifact_id:
        path = ctx.artifact(step.artifact_id)
        # downloaded artifacts are not executable
        try:
            path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as e:
            raise RecipeStepError(f"making {path.name} executable: {e}") from e
    elif step.local_path:
        path = Path(step.local_path)
    else:
        raise RecipeStepError("exec step has neither artifact_id nor local_path")
    _execute(ctx, [str(path), *step.args], step.allowed_exit_codes)


def _execute_script_step(step: RunScript, ctx: StepContext) -> None:
    extension = _SCRIPT_EXTENSIONS.get(step.interpreter, "") if IS_WINDOWS else ""
    script = ctx.step_dir / f"{SCRIPT_NAME}{extension}"
    try:
        atomic_write(script, step.script.encode("utf-8"), mode=0o755)
    except OSError as e:
        raise RecipeStepError(f"writing script {script}: {e}") from e

    if step.interpreter == Interpreter.POWERSHELL:
        if not IS_WINDOWS:
            raise RecipeStepError("interpreter POWERSHELL can only be used on Windows systems")
        cmd = [POWERSHELL, "-File", str(script)]
    elif step.interpreter == Interpreter.SHELL and not IS_WINDOWS:
        cmd = [SHELL, str(script)]
    else:
        cmd = [str(script)]
    _execute(ctx, cmd, step.allowed_exit_codes)


_EXECUTORS: dict[str, tuple[str, Callable]] = {
    "file_copy": ("CopyFile", _execute_copy_step),
    "archive_extraction": ("ExtractArchive", _execute_extract_step),
    "msi_installation": ("InstallMsi", _execute_msi_step),
    "dpkg_installation": ("InstallDpkg", _execute_dpkg_step),
    "rpm_installation": ("InstallRpm", _execute_rpm_step),
    "file_exec": ("ExecFile", _execute_exec_step),
    "script_run": ("RunScript", _execute_script_step),
}


def step_type(step: RecipeStep) -> str:
    return _EXECUTORS[step.kind][0]


def run_step(step: RecipeStep, ctx: StepContext) -> None:
    """Execute one recipe step.

    Raises:
        RecipeStepError: The step failed.
    """
    _, executor = _EXECUTORS[step.kind]
    try:
        executor(step.action, ctx)
    except OSError as e:
        raise RecipeStepError(str(e)) from e
