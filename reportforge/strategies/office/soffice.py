"""Headless LibreOffice runner.

Every invocation gets its own disposable user-installation profile so
concurrent requests never contend for the same profile lock. Commands
are always executed as an argument vector, never through a shell.
"""

import asyncio
import contextlib
import logging
import re
import shutil
import sys
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from reportforge.core.config import Settings
from reportforge.interfaces.errors import (
    ConversionError,
    ExternalRendererError,
    ExternalRendererNotFound,
    ExternalRendererTimeout,
)
from reportforge.interfaces.office import BaseDocumentRenderer
from reportforge.pipeline.artifacts import remove_path, unique_name

logger = logging.getLogger(__name__)

PDF_FILTERS = ("pdf:writer_pdf_Export", "pdf")

BASE_FLAGS = (
    "--headless",
    "--nocrashreport",
    "--nolockcheck",
    "--nodefault",
    "--nologo",
    "--norestore",
)

ROUTINE_NAME = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*){0,3}$")

PREFLIGHT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class FileUrlArgument:
    """A filesystem path passed to a routine as a percent-encoded file URL."""

    path: Path

    def render(self) -> str:
        return Path(self.path).resolve().as_uri()


@dataclass(frozen=True)
class TextArgument:
    """Literal text passed to a routine as a Basic string literal."""

    text: str

    def render(self) -> str:
        if "\x00" in self.text:
            raise ValueError("Macro text arguments cannot contain NUL")
        return '"' + self.text.replace('"', '""') + '"'


MacroArgument = FileUrlArgument | TextArgument


@dataclass(frozen=True)
class MacroCommand:
    """An automation routine invocation: routine name plus typed arguments.

    Example:
        ```python
        command = MacroCommand(
            "Standard.Insert.InsertPhotoReplaceText_FitToPage",
            (FileUrlArgument(image), FileUrlArgument(docx), TextArgument("Site photo")),
        )
        command.to_url()
        # 'macro:///Standard.Insert.InsertPhotoReplaceText_FitToPage(file:///...,file:///...,"Site photo")'
        ```
    """

    routine: str
    args: tuple[MacroArgument, ...] = ()

    def to_url(self) -> str:
        """Single command-line token understood by soffice.

        Raises:
            ValueError: If the routine name or an argument is not representable.
        """
        if not ROUTINE_NAME.match(self.routine):
            raise ValueError(f"Invalid routine name: {self.routine!r}")
        rendered = ",".join(arg.render() for arg in self.args)
        return f"macro:///{self.routine}({rendered})"


def resolve_executable(
    explicit: str | None,
    windows_candidates: Sequence[str] = (),
    platform: str = sys.platform,
) -> str:
    """Pick the soffice executable: explicit setting, Windows install, then PATH."""
    if explicit:
        return explicit
    if platform == "win32":
        for candidate in windows_candidates:
            if Path(candidate).exists():
                return candidate
    return "soffice"


def alternate_windows_executable(primary: str, windows_candidates: Sequence[str]) -> str | None:
    """An existing ``soffice.com`` other than ``primary``, if any."""
    for candidate in windows_candidates:
        if candidate.lower().endswith("soffice.com") and candidate != primary and Path(candidate).exists():
            return candidate
    return None


def _failure_detail(stdout: bytes, stderr: bytes, returncode: int | None) -> str:
    err = stderr.decode("utf-8", errors="replace").strip()
    if err:
        return err
    out = stdout.decode("utf-8", errors="replace").strip()
    if out:
        return out
    return f"exit code {returncode}"


async def terminate_process(process: asyncio.subprocess.Process) -> None:
    """Kill ``process`` if it is still running and reap it."""
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()


async def communicate_within(process: asyncio.subprocess.Process, timeout: float) -> tuple[bytes, bytes]:
    """Wait for ``process`` output; it never outlives the call.

    The process is killed on timeout and on cancellation of the caller.

    Raises:
        TimeoutError: If ``timeout`` elapses first.
    """
    try:
        async with asyncio.timeout(timeout):
            return await process.communicate()
    except BaseException:
        await terminate_process(process)
        raise


class LibreOfficeRunner(BaseDocumentRenderer):
    """Drives soffice for conversions and automation routines.

    Args:
        executable: Explicit soffice path (None resolves via platform candidates).
        work_dir: Where disposable session profiles are created.
        windows_candidates: Install locations probed on Windows.
        profile_seed: Directory copied into every session profile (macro library).
        timeout: Seconds before an invocation is killed.
        max_concurrency: Simultaneous invocations allowed (0 = unlimited).
        platform: Platform tag, ``sys.platform`` by default.
    """

    def __init__(
        self,
        executable: str | None,
        work_dir: Path,
        windows_candidates: Sequence[str] = (),
        profile_seed: Path | None = None,
        timeout: float = 180.0,
        max_concurrency: int = 0,
        platform: str = sys.platform,
    ) -> None:
        self.windows_candidates = tuple(windows_candidates)
        self.platform = platform
        self.executable = resolve_executable(executable, self.windows_candidates, platform)
        self.work_dir = Path(work_dir)
        self.profile_seed = Path(profile_seed) if profile_seed else None
        self.timeout = timeout
        self._limiter = asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None

    @classmethod
    def from_settings(cls, settings: Settings) -> "LibreOfficeRunner":
        return cls(
            executable=settings.libreoffice_path,
            work_dir=settings.storage.work,
            windows_candidates=settings.libreoffice_windows_candidates,
            profile_seed=settings.libreoffice_profile_seed,
            timeout=settings.libreoffice_timeout_seconds,
            max_concurrency=settings.libreoffice_max_concurrency,
        )

    @contextlib.asynccontextmanager
    async def session_profile(self) -> AsyncIterator[str]:
        """Create a disposable profile and yield its ``-env:UserInstallation`` URL."""
        profile_dir = self.work_dir / unique_name("lo-profile")
        try:
            if self.profile_seed and self.profile_seed.is_dir():
                shutil.copytree(self.profile_seed, profile_dir, dirs_exist_ok=True)
            else:
                profile_dir.mkdir(parents=True, exist_ok=True)
            yield profile_dir.resolve().as_uri()
        finally:
            remove_path(profile_dir)

    async def _execute(self, argv: list[str], timeout: float) -> tuple[bytes, bytes]:
        """Run one process to completion.

        Raises:
            ExternalRendererNotFound: If the executable cannot be started.
            ExternalRendererTimeout: If it exceeds ``timeout`` (the process is killed).
            ExternalRendererError: On a non-zero exit status.
        """
        logger.debug(f"Executing: {' '.join(argv)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ExternalRendererNotFound(
                "LibreOffice not found or not accessible. Install LibreOffice or set "
                "LIBREOFFICE_PATH to soffice(.com)",
                detail=str(e),
            ) from e

        try:
            stdout, stderr = await communicate_within(process, timeout)
        except TimeoutError as e:
            raise ExternalRendererTimeout(
                "LibreOffice invocation timed out",
                detail=f"{argv[0]} exceeded {timeout:g}s",
            ) from e

        if process.returncode != 0:
            raise ExternalRendererError(
                "LibreOffice invocation failed",
                detail=_failure_detail(stdout, stderr, process.returncode),
            )
        return stdout, stderr

    async def _invoke(self, tail: list[str], executable: str | None = None) -> None:
        async with self._limiter or contextlib.nullcontext():
            async with self.session_profile() as profile_url:
                argv = [
                    executable or self.executable,
                    *BASE_FLAGS,
                    f"-env:UserInstallation={profile_url}",
                    *tail,
                ]
                await self._execute(argv, self.timeout)

    async def convert(
        self,
        input_path: Path,
        target_filter: str,
        output_dir: Path,
        executable: str | None = None,
    ) -> Path:
        """Convert ``input_path`` with ``target_filter`` into ``output_dir``."""
        output_dir.mkdir(parents=True, exist_ok=True)
        extension = target_filter.split(":", 1)[0]
        await self._invoke(
            ["--convert-to", target_filter, "--outdir", str(output_dir), str(input_path)],
            executable=executable,
        )
        produced = output_dir / f"{input_path.stem}.{extension}"
        if not produced.exists():
            raise ExternalRendererError(
                "LibreOffice produced no output",
                detail=f"Expected {produced.name} after {target_filter} conversion",
            )
        return produced

    async def convert_docx_to_pdf(self, input_path: Path, output_dir: Path) -> Path:
        """Convert to PDF, falling back to the generic filter and, on Windows, ``soffice.com``.

        Raises:
            ConversionError: If every attempt fails.
        """
        executables = [self.executable]
        if self.platform == "win32":
            alternate = alternate_windows_executable(self.executable, self.windows_candidates)
            if alternate:
                executables.append(alternate)

        last_error: ExternalRendererError | None = None
        for executable in executables:
            for target_filter in PDF_FILTERS:
                try:
                    pdf = await self.convert(input_path, target_filter, output_dir, executable)
                    logger.info(f"PDF converted with {target_filter} via {executable}")
                    return pdf
                except ExternalRendererError as e:
                    logger.warning(f"PDF conversion attempt failed ({target_filter}, {executable}): {e.detail}")
                    last_error = e

        raise ConversionError(
            "PDF conversion failed",
            detail=last_error.detail if last_error else "No conversion attempted",
        )

    async def run_macro(self, command: MacroCommand) -> None:
        """Invoke an automation routine with a seeded, disposable profile."""
        url = command.to_url()
        logger.info(f"Running macro {command.routine}")
        await self._invoke(["--invisible", url])

    async def check_available(self) -> None:
        """Probe the executable with ``--version``."""
        try:
            await self._execute([self.executable, "--headless", "--version"], PREFLIGHT_TIMEOUT_SECONDS)
        except ExternalRendererNotFound:
            raise
        except ExternalRendererError as e:
            raise ExternalRendererNotFound(
                "LibreOffice not found or not accessible. Install LibreOffice or set "
                "LIBREOFFICE_PATH to soffice(.com)",
                detail=e.detail,
            ) from e
