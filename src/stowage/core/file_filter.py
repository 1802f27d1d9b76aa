"""Selects the files that go into a backup and which of them get encrypted"""

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

# KEY = value assignments whose values are blanked in scrubbed files
_CREDENTIAL_PATTERNS = [
    (name, re.compile(rf"{name}\s*=\s*['\"]?[^'\"\s]+['\"]?"))
    for name in ("GITHUB_TOKEN", "API_KEY", "SECRET", "PASSWORD", "TOKEN")
]


@dataclass
class FileSelection:
    """Files chosen for a backup, relative to the project root"""

    regular: list[Path] = field(default_factory=list)
    encrypted: list[Path] = field(default_factory=list)


def matches(rel_path: str, pattern: str) -> bool:
    """Match a POSIX relative path against a glob or plain path pattern

    Plain patterns match the exact path, the file name, or a directory
    prefix. Glob patterns without a slash also match the file name alone,
    and a leading '**/' may match zero directories.
    """
    name = rel_path.rsplit("/", 1)[-1]
    if not any(c in pattern for c in "*?["):
        pattern = pattern.rstrip("/")
        return rel_path == pattern or name == pattern or rel_path.startswith(pattern + "/")

    if fnmatch.fnmatchcase(rel_path, pattern):
        return True
    if pattern.startswith("**/") and fnmatch.fnmatchcase(rel_path, pattern[3:]):
        return True
    if pattern.endswith("/**") and rel_path.startswith(pattern[:-3] + "/"):
        return True
    return "/" not in pattern and fnmatch.fnmatchcase(name, pattern)


def scrub_credentials(content: str) -> str:
    """Blank credential values while keeping the assignments in place"""
    for name, regex in _CREDENTIAL_PATTERNS:
        content = regex.sub(f'{name}=""', content)
    return content


class FileFilter:
    """Applies include, exclude and encrypt patterns to a project tree"""

    def __init__(
        self,
        project_root: Path,
        include: list[str],
        exclude: list[str],
        encrypt: list[str],
        scrub: list[str] | None = None,
        skip_dirs: list[Path] | None = None,
    ):
        self.project_root = Path(project_root)
        self.include = include
        self.exclude = exclude
        self.encrypt = encrypt
        self.scrub = scrub or []
        self.skip_dirs = {p.resolve() for p in (skip_dirs or [])}
        self.logger = logging.getLogger("FileFilter")

    def _walk(self) -> list[Path]:
        files = []
        stack = [self.project_root]
        while stack:
            current = stack.pop()
            try:
                entries = list(current.iterdir())
            except OSError as e:
                self.logger.warning(f"Could not read directory {current}: {e}")
                continue
            for entry in entries:
                if entry.is_symlink():
                    continue
                if entry.is_dir():
                    if entry.name == ".git" or entry.resolve() in self.skip_dirs:
                        continue
                    stack.append(entry)
                elif entry.is_file():
                    files.append(entry.relative_to(self.project_root))
        return sorted(files)

    def build_file_list(self) -> FileSelection:
        """Split the project into regular and to-be-encrypted files"""
        selection = FileSelection()
        for rel_path in self._walk():
            posix = rel_path.as_posix()
            if not any(matches(posix, p) for p in self.include):
                continue
            if any(matches(posix, p) for p in self.exclude):
                continue
            if any(matches(posix, p) for p in self.encrypt):
                selection.encrypted.append(rel_path)
            else:
                selection.regular.append(rel_path)

        self.logger.info(
            f"Selected {len(selection.regular)} regular and {len(selection.encrypted)} sensitive files"
        )
        return selection

    def needs_scrub(self, rel_path: Path) -> bool:
        posix = rel_path.as_posix()
        return any(matches(posix, p) for p in self.scrub)
