"""Path validation for encoder inputs and outputs.

Every path handed to the encoder goes through :class:`PathGuard` first. The
guard resolves symlinks, records advisory warnings for traversal segments and
redirection, and rejects write targets that land in protected system
directories or on special files. Fatality is decided only by where the path
really resolves to; ``..`` segments alone are never fatal.
"""
import logging
import os
import stat
from pathlib import Path, PurePath
from typing import Iterable, List, Optional, Tuple

from compresso.domain.errors import OverwriteError, SecurityError, ValidationError
from compresso.domain.models import PathRole, ValidatedPath

logger = logging.getLogger(__name__)

UNIX_PROTECTED_DIRS = (
    "/bin", "/boot", "/dev", "/etc", "/lib", "/lib32", "/lib64", "/libx32",
    "/proc", "/sbin", "/sys", "/usr", "/System", "/private/etc",
)


def default_protected_dirs() -> Tuple[List[Path], List[Path]]:
    """Returns ``(tree_protected, root_only)`` for the running OS.

    Tree-protected directories reject anything nested below them. Root-only
    entries (filesystem and drive roots) reject files placed directly in them.
    """
    if os.name == "nt":
        trees = []
        for var, fallback in (
            ("SystemRoot", r"C:\Windows"),
            ("ProgramFiles", r"C:\Program Files"),
            ("ProgramFiles(x86)", r"C:\Program Files (x86)"),
            ("ProgramData", r"C:\ProgramData"),
        ):
            trees.append(Path(os.environ.get(var, fallback)))
        drive = os.environ.get("SystemDrive", "C:")
        roots = [Path(f"{drive}\\")]
        roots.extend(Path(f"{letter}:\\") for letter in "ABCDEFGHIJKLMNOPQRSTUVWXYZ" if f"{letter}:" != drive)
        return trees, roots
    return [Path(p) for p in UNIX_PROTECTED_DIRS], [Path("/")]


def _is_within(path: Path, directory: Path) -> bool:
    try:
        path.relative_to(directory)
        return True
    except ValueError:
        return False


def sanitize(raw: str) -> str:
    """Strips whitespace and the quotes a drag and drop leaves behind."""
    cleaned = raw.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in ("'", '"'):
        cleaned = cleaned[1:-1].strip()
    return cleaned


class PathGuard:
    """Validates and normalizes input and output paths."""

    def __init__(
        self,
        protected_dirs: Optional[Iterable[Path]] = None,
        root_dirs: Optional[Iterable[Path]] = None,
        extra_protected_dirs: Optional[Iterable[Path]] = None,
    ):
        default_trees, default_roots = default_protected_dirs()
        trees = list(protected_dirs) if protected_dirs is not None else default_trees
        trees.extend(extra_protected_dirs or [])
        roots = list(root_dirs) if root_dirs is not None else default_roots
        # Compare against both the literal and the resolved form, /etc is /private/etc on macOS.
        self.protected_dirs = self._expand(trees)
        self.root_dirs = self._expand(roots)

    @staticmethod
    def _expand(dirs: Iterable[Path]) -> List[Path]:
        expanded: List[Path] = []
        for d in dirs:
            d = Path(d)
            for candidate in (d, d.resolve()):
                if candidate not in expanded:
                    expanded.append(candidate)
        return expanded

    def protected_match(self, real_path: Path) -> Optional[Path]:
        """Returns the protected directory ``real_path`` falls under, if any."""
        for directory in self.protected_dirs:
            if _is_within(real_path, directory):
                return directory
        for root in self.root_dirs:
            if real_path == root or real_path.parent == root:
                return root
        return None

    def validate(self, path, role: PathRole, overwrite_allowed: bool = False) -> ValidatedPath:
        """Validates ``path`` for ``role``.

        Raises:
            SecurityError: NUL byte, protected directory or special file.
            OverwriteError: output exists and ``overwrite_allowed`` is false.
            ValidationError: missing input, missing output directory, or a directory given as file.
        """
        original = str(path)
        cleaned = sanitize(original)
        if "\x00" in cleaned:
            raise SecurityError(f"Path contains a NUL byte: {original!r}")
        if not cleaned:
            raise ValidationError(f"Empty {role.value} path")

        warnings: List[str] = []
        candidate = Path(os.path.expanduser(cleaned))
        if ".." in PurePath(cleaned).parts:
            msg = f"Path traversal sequence in {role.value} path: {cleaned}"
            warnings.append(msg)
            logger.warning(f"PATH_TRAVERSAL: {msg}")

        absolute = Path(os.path.abspath(candidate))
        real_path = candidate.resolve()
        redirected = real_path != absolute
        if redirected:
            msg = f"{role.value.capitalize()} path {cleaned} resolves to {real_path}"
            warnings.append(msg)
            logger.warning(f"PATH_REDIRECT: {msg}")

        if role == PathRole.INPUT:
            self._check_input(real_path)
        else:
            self._check_output(real_path, overwrite_allowed)

        return ValidatedPath(
            original=original,
            real_path=real_path,
            role=role,
            redirected=redirected,
            warnings=tuple(warnings),
        )

    def _check_input(self, real_path: Path):
        if not real_path.exists():
            raise ValidationError(f"Input file not found: {real_path}", path=real_path)
        mode = real_path.stat().st_mode
        if stat.S_ISDIR(mode):
            raise ValidationError(f"Input is a directory, not a file: {real_path}", path=real_path)
        if not stat.S_ISREG(mode):
            raise SecurityError(f"Input is not a regular file: {real_path}", path=real_path)

    def _check_output(self, real_path: Path, overwrite_allowed: bool):
        protected = self.protected_match(real_path)
        if protected is not None:
            raise SecurityError(
                f"Refusing to write into protected directory {protected}: {real_path}",
                path=protected,
            )

        if real_path.exists():
            mode = real_path.stat().st_mode
            if stat.S_ISDIR(mode):
                raise ValidationError(f"Output path is a directory: {real_path}", path=real_path)
            if not stat.S_ISREG(mode):
                raise SecurityError(f"Output is a device or special file: {real_path}", path=real_path)
            if not overwrite_allowed:
                raise OverwriteError(
                    f"Output file already exists and would be overwritten: {real_path}. Use -y to overwrite.",
                    path=real_path,
                )

        if not real_path.parent.is_dir():
            raise ValidationError(f"Output directory does not exist: {real_path.parent}", path=real_path.parent)
