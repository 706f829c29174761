"""Make the ``vulnmanage`` package importable from scripts under ``backend/tools``."""

from pathlib import Path
import os
import sys
from typing import Iterable, Optional, Union

PathInput = Union[str, os.PathLike]

def _unique_paths(paths: Iterable[Path]) -> Iterable[Path]:
    """Yield each resolved path once, keeping order."""
    seen = set()
    for path in paths:
        normalized = path.resolve()
        if normalized not in seen:
            seen.add(normalized)
            yield normalized

def _script_directory(script_location: Optional[PathInput]) -> Path:
    if script_location is None:
        return Path.cwd().resolve()
    script_path = Path(script_location).resolve()
    return script_path if script_path.is_dir() else script_path.parent

def bootstrap(script_location: Optional[PathInput] = None, *, prepend: bool = True) -> Path:
    """Put the repository root, ``backend/`` and the script's folder on ``sys.path``.

    Parameters
    ----------
    script_location:
        ``__file__`` of the calling script.  Python only puts the script's own
        folder on ``sys.path``; ``vulnmanage`` lives one level up in ``backend/``.
    prepend:
        Insert ahead of installed packages (default) so a checkout wins over an
        installed copy of ``vulnmanage``.

    Returns
    -------
    Path
        The repository root.
    """
    backend_directory = Path(__file__).resolve().parent
    repository_root = backend_directory.parent

    for candidate in _unique_paths([repository_root, backend_directory, _script_directory(script_location)]):
        candidate_text = str(candidate)
        if candidate_text in sys.path:
            continue
        if prepend:
            sys.path.insert(0, candidate_text)
        else:
            sys.path.append(candidate_text)

    return repository_root

__all__ = ["bootstrap"]
