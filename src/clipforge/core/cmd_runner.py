"""Subprocess helpers for the ffmpeg calls made by the placeholder generator."""

import shlex
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..exceptions import CommandError
from ..logger import log_debug, log_error


def build_ffmpeg_cmd(
    args: Sequence[str],
    *,
    binary: str = "ffmpeg",
    overwrite: bool = True,
    loglevel: Optional[str] = "error",
) -> List[str]:
    """Prefix ``args`` with the binary and the quiet/overwrite flags unless already present."""
    args = list(args)
    cmd = [binary, "-hide_banner"]
    if overwrite and "-y" not in args and "-n" not in args:
        cmd.append("-y")
    if loglevel and "-loglevel" not in args:
        cmd += ["-loglevel", loglevel]
    return cmd + args


def run_command(
    cmd: Sequence[str],
    *,
    timeout: Optional[float] = None,
    check: bool = True,
    cwd: Optional[Union[str, Path]] = None,
) -> subprocess.CompletedProcess:
    """
    Run ``cmd`` with captured text output.

    Raises:
        CommandError: non-zero exit status and ``check`` is set
        subprocess.TimeoutExpired: ``timeout`` elapsed
        OSError: the executable could not be started
    """
    printable = shlex.join(str(part) for part in cmd)
    log_debug(f"$ {printable}")
    try:
        result = subprocess.run(list(cmd), cwd=cwd, timeout=timeout, capture_output=True, text=True)
    except subprocess.TimeoutExpired:
        log_error(f"Timed out after {timeout}s: {printable}")
        raise
    except OSError as e:
        log_error(f"Cannot start {cmd[0]}: {e}")
        raise

    if check and result.returncode != 0:
        raise CommandError(cmd, result.returncode, result.stdout or "", result.stderr or "")
    return result
