"""
File helpers shared by the file-backed stores.
"""

import os
import stat
import tempfile
from pathlib import Path
from typing import Union


def atomic_write_text(path: Union[str, Path], data: str, mode: int = 0o600) -> None:
    """
    Replace ``path`` with ``data`` atomically.

    Writes to a temp file in the same directory, fsyncs it and renames it
    over the target. Refuses to replace a symlink or a non-regular file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        st = os.lstat(path)
        if stat.S_ISLNK(st.st_mode) or not stat.S_ISREG(st.st_mode):
            raise OSError(f"Refusing to overwrite non-regular file: {path}")
    except FileNotFoundError:
        pass

    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise
