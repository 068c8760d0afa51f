"""File management with atomic writes, backups and templating."""

import logging
import os
import shutil
import stat
import subprocess
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from jinja2 import Template

from .errors import FileOperationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def read_file(path: PathLike) -> str:
    """
    Read file content as text.

    Returns an empty string when the file does not exist; any other read
    failure raises FileOperationError.
    """
    path = Path(path)
    try:
        return path.read_text()
    except FileNotFoundError:
        return ""
    except OSError as e:
        raise FileOperationError(path, "read", e) from e


def read_lines(path: PathLike) -> List[str]:
    """Read a line-oriented file into a list of lines without terminators."""
    return read_file(path).splitlines()


def get_mode(path: PathLike, default: int) -> int:
    """Return the permission bits of ``path``, or ``default`` if it is absent."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        return default


def ensure_dir(
    path: PathLike,
    mode: Optional[int] = None,
    uid: Optional[int] = None,
    gid: Optional[int] = None,
) -> bool:
    """
    Idempotently ensure a directory exists with correct permissions.

    Returns:
        True if any changes were made
    """
    path = Path(path)
    changed = False

    try:
        if not path.exists():
            logger.info(f"Creating directory: {path}")
            path.mkdir(parents=True, exist_ok=True)
            changed = True

        if mode is not None and stat.S_IMODE(path.stat().st_mode) != mode:
            path.chmod(mode)
            changed = True

        if uid is not None and gid is not None:
            st = path.stat()
            if (st.st_uid, st.st_gid) != (uid, gid):
                os.chown(path, uid, gid)
                changed = True
    except OSError as e:
        raise FileOperationError(path, "ensure directory", e) from e

    return changed


def stage_file(
    directory: PathLike,
    data: Union[bytes, str],
    mode: int = 0o644,
    prefix: str = ".srvkit.",
) -> str:
    """
    Write ``data`` to a new temp file inside ``directory``.

    The file is fully written, fsynced and chmodded before this returns, so
    a rename of the returned path is the only step left to publish it.

    Returns:
        Path of the staged temp file
    """
    if isinstance(data, str):
        data = data.encode()

    stage = "create temp file"
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(dir=str(directory), prefix=prefix, suffix=".tmp")
        stage = "write temp file"
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        stage = "chmod temp file"
        os.chmod(tmp_path, mode)
        staged, tmp_path = tmp_path, None
        return staged
    except OSError as e:
        raise FileOperationError(Path(directory) / prefix, stage, e) from e
    finally:
        # Clean up temp file if it still exists (operation failed)
        if tmp_path and os.path.exists(tmp_path):
            try:
                os.unlink(tmp_path)
            except OSError:
                logger.warning(f"Could not remove temp file {tmp_path}")


def atomic_write(path: PathLike, data: Union[bytes, str], mode: int = 0o644) -> None:
    """
    Replace ``path`` with ``data`` so readers never see a partial file.

    The temp file lives in the target's directory, which keeps the final
    ``os.replace`` on one filesystem. On any failure the temp file is removed
    and the target is left exactly as it was.

    Raises:
        FileOperationError: with the failing stage
    """
    path = Path(path)
    tmp_path = stage_file(path.parent, data, mode=mode, prefix=f".{path.name}.")
    try:
        os.replace(tmp_path, path)
    except OSError as e:
        try:
            os.unlink(tmp_path)
        except OSError:
            logger.warning(f"Could not remove temp file {tmp_path}")
        raise FileOperationError(path, "rename", e) from e
    logger.debug(f"Wrote {path} ({len(data)} bytes, mode {oct(mode)})")


def backup_file(path: PathLike) -> str:
    """
    Snapshot ``path`` next to itself before it is modified.

    The copy keeps the original's permission bits and is named
    ``<path>.bak.<timestamp>``; a counter is appended if that name is taken,
    so repeated snapshots never overwrite each other.

    Returns:
        The backup path, or "" when ``path`` does not exist

    Raises:
        FileOperationError: if the source is unreadable or the copy fails
    """
    path = Path(path)
    if not path.exists():
        return ""
    if path.is_dir():
        raise FileOperationError(path, "backup", "path is a directory")

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    backup_path = path.with_name(f"{path.name}.bak.{timestamp}")
    counter = 0
    while backup_path.exists():
        counter += 1
        backup_path = path.with_name(f"{path.name}.bak.{timestamp}-{counter}")

    try:
        shutil.copy2(path, backup_path)
    except OSError as e:
        raise FileOperationError(path, "backup", e) from e

    logger.info(f"Backed up: {path} -> {backup_path}")
    return str(backup_path)


def restore_from_backup(path: PathLike, backup_path: PathLike, mode: int) -> None:
    """Atomically put the bytes of ``backup_path`` back at ``path``."""
    try:
        data = Path(backup_path).read_bytes()
    except OSError as e:
        raise FileOperationError(backup_path, "read backup", e) from e
    atomic_write(path, data, mode=mode)
    logger.info(f"Restored {path} from {backup_path}")


def ensure_file(
    path: PathLike,
    content: str,
    mode: int = 0o644,
    backup: bool = True,
) -> bool:
    """
    Idempotently ensure a file exists with specific content.

    Args:
        path: Target file path
        content: Desired file content
        mode: File permissions for a new file (existing files keep theirs)
        backup: Create timestamped backup if file changes

    Returns:
        True if the file was written
    """
    path = Path(path)
    if path.exists() and read_file(path) == content:
        logger.info(f"File {path} already up to date")
        return False

    if backup:
        backup_file(path)
    logger.info(f"Writing file: {path}")
    atomic_write(path, content, mode=get_mode(path, mode))
    restore_selinux_context(path)
    return True


def restore_selinux_context(path: PathLike) -> bool:
    """
    Restore the SELinux label of a rewritten file.

    Best effort: a missing ``restorecon`` or a failing run is not an error.

    Returns:
        True if restorecon ran successfully
    """
    restorecon = shutil.which("restorecon")
    if not restorecon:
        return False
    result = subprocess.run(
        [restorecon, str(path)],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        logger.debug(f"restorecon {path} failed: {result.stderr.strip()}")
        return False
    return True


def render_template(
    template_path: PathLike,
    context: dict,
) -> str:
    """
    Render a Jinja2 template file.

    Args:
        template_path: Path to template file
        context: Dictionary of variables to substitute

    Returns:
        Rendered template content
    """
    template_path = Path(template_path)
    template = Template(template_path.read_text(), keep_trailing_newline=True)
    return template.render(**context)
