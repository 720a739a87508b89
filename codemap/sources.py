from __future__ import annotations

import subprocess
import sys
from pathlib import Path

from .model import FileSource


def run_git(root: Path, *args: str) -> bytes:
    """Run git in ``root`` and return stdout; failures raise ``OSError``."""
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=root,
            capture_output=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise OSError("git executable not found") from e
    if proc.returncode != 0:
        detail = proc.stderr.decode("utf-8", errors="replace").strip()
        raise OSError(f"git {args[0]} failed: {detail}")
    return proc.stdout


class FileStore:
    """Reads candidate files from the working tree or the staged git index."""

    def __init__(self, root: Path, *, verbose: bool = False) -> None:
        self.root = root.resolve()
        self.verbose = verbose

    def _trace(self, msg: str) -> None:
        if self.verbose:
            print(msg, file=sys.stderr)

    def path_for(self, source: FileSource) -> Path:
        return self.root / source.path

    def read(self, source: FileSource) -> bytes:
        if source.from_git_index:
            self._trace(f'git index: reading "{source.path}"')
            try:
                return run_git(self.root, "show", f":{source.path}")
            except OSError as e:
                raise OSError(f"git show :{source.path} failed: {e}") from e

        self._trace(f'working dir: reading "{source.path}"')
        try:
            return self.path_for(source).read_bytes()
        except OSError as e:
            raise OSError(f'failed to read "{source.path}": {e}') from e

    def write(self, source: FileSource, data: bytes) -> None:
        if source.from_git_index:
            raise OSError(f'refusing to write git index snapshot "{source.path}"')
        try:
            self.path_for(source).write_bytes(data)
        except OSError as e:
            raise OSError(f'failed to write "{source.path}": {e}') from e
