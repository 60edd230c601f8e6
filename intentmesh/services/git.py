"""
Git Integration — Changed files and per-file diffs for drift analysis

Read-only: intentmesh never writes to the repository.

Degrades instead of failing:
- not a git repository      -> no changed files, empty diffs
- no HEAD yet (fresh repo)  -> every tracked file, empty diffs
An empty diff makes the detector fall back to full-file analysis.
"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class GitIntegration:
    """Git repository access through the git CLI."""

    def __init__(self, repo_path: Optional[Path] = None):
        """
        Initialize git integration.

        Args:
            repo_path: Path to the working tree. If None, uses current directory.
        """
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()

    @property
    def is_git_repo(self) -> bool:
        """Check if repo_path is inside a git working tree."""
        output = self._run_git(["rev-parse", "--is-inside-work-tree"])
        return output is not None and output.strip() == "true"

    def _run_git(self, args: List[str], check: bool = True) -> Optional[str]:
        """Run a git command and return stdout, or None on failure."""
        try:
            result = subprocess.run(
                ["git"] + args,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=check
            )
            return result.stdout
        except subprocess.CalledProcessError as e:
            logger.debug("git %s failed: %s", " ".join(args), (e.stderr or "").strip())
            return None
        except OSError as e:
            logger.warning("Cannot run git: %s", e)
            return None

    def _absolute(self, output: str) -> List[str]:
        return [
            str(self.repo_path / line.strip())
            for line in output.splitlines()
            if line.strip()
        ]

    def get_changed_files(self, since: Optional[str] = None, staged: bool = False) -> List[str]:
        """
        Files changed relative to `since` (default HEAD), as absolute paths.

        Args:
            since: Revision to compare against
            staged: Only changes in the index

        Falls back to every tracked file when the comparison fails
        (for example before the first commit).
        """
        args = ["diff", "--name-only", "--relative", "--diff-filter=d"]
        if staged:
            args.append("--cached")
        else:
            args.append(since or "HEAD")

        output = self._run_git(args)
        if output is None:
            logger.info("git diff unavailable, falling back to all tracked files")
            output = self._run_git(["ls-files"])
        if output is None:
            return []
        return self._absolute(output)

    def get_file_diff(self, path: str, since: Optional[str] = None, context: int = 3) -> str:
        """
        Unified diff of one file against `since` (default HEAD).

        Returns an empty string when there is nothing to compare against.
        """
        output = self._run_git(["diff", f"-U{max(0, int(context))}", since or "HEAD", "--", str(path)])
        return output or ""

    def get_current_revision(self) -> Optional[str]:
        output = self._run_git(["rev-parse", "HEAD"])
        return output.strip() if output else None
