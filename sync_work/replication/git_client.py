"""
Thin git client used by the replication transport.

Wraps the ``git`` executable with subprocess. Every operation returns a
GitOperationResult instead of raising, so the transport decides what is
transient and what is a protocol error.
"""
import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union


logger = logging.getLogger(__name__)

CONFLICT_CODES = {"DD", "AU", "UD", "UA", "DU", "AA", "UU"}
NO_COMMITS_PREFIXES = ("No commits yet on ", "Initial commit on ")
FIELD_SEP = "\x1f"


class GitOperationResult:
    """Result of a git operation."""

    def __init__(self, success: bool, output: str = "", error: str = "", data: Dict[str, Any] = None):
        self.success = success
        self.output = output
        self.error = error
        self.data = data or {}

    def __repr__(self):
        return f"GitOperationResult(success={self.success!r}, error={self.error!r})"


@dataclass
class RepoStatus:
    """Branch position and per-state file lists of a working tree."""
    branch: Optional[str] = None
    tracking: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    staged: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    conflicted: List[str] = field(default_factory=list)
    untracked: List[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.staged or self.modified or self.created or self.deleted
                    or self.conflicted or self.untracked)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.branch,
            "tracking": self.tracking,
            "ahead": self.ahead,
            "behind": self.behind,
            "modified": len(self.modified),
            "created": len(self.created),
            "deleted": len(self.deleted),
            "conflicted": len(self.conflicted),
        }


@dataclass
class CommitEntry:
    """One line of history."""
    hash: str
    message: str
    author: str
    date: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash[:7],
            "message": self.message,
            "author": self.author,
            "date": self.date,
        }


def _parse_branch_line(header: str, status: RepoStatus):
    # main...origin/main [ahead 1, behind 2]
    counts = ""
    if header.endswith("]") and " [" in header:
        header, counts = header[:-1].split(" [", 1)

    for prefix in NO_COMMITS_PREFIXES:
        if header.startswith(prefix):
            header = header[len(prefix):]
            break

    if header.startswith("HEAD (no branch)"):
        return

    branch, _, tracking = header.partition("...")
    status.branch = branch or None
    # An upstream that no longer exists on the remote counts as none
    status.tracking = tracking if tracking and counts != "gone" else None

    ahead = re.search(r"ahead (\d+)", counts)
    behind = re.search(r"behind (\d+)", counts)
    status.ahead = int(ahead.group(1)) if ahead else 0
    status.behind = int(behind.group(1)) if behind else 0


def parse_status(output: str) -> RepoStatus:
    """Parse ``git status --porcelain --branch`` output."""
    status = RepoStatus()

    for line in output.splitlines():
        if not line:
            continue

        if line.startswith("## "):
            _parse_branch_line(line[3:], status)
            continue

        code = line[:2]
        path = line[3:]
        if " -> " in path:
            # Rename: report the new name
            path = path.split(" -> ", 1)[1]
        path = path.strip('"')

        if code == "??":
            status.untracked.append(path)
            continue
        if code in CONFLICT_CODES:
            status.conflicted.append(path)
            continue

        if code[0] not in (" ", "?"):
            status.staged.append(path)
        if "A" in code:
            status.created.append(path)
        elif "D" in code:
            status.deleted.append(path)
        elif "M" in code or "R" in code:
            status.modified.append(path)

    return status


class GitClient:
    """Git operations on one working tree."""

    def __init__(self, repo_path: Union[str, Path] = None, author: Optional[str] = None, timeout: float = 120.0):
        """
        Initialize the client.

        Args:
            repo_path: Working tree root (defaults to the current directory)
            author: Name used for commits; the email becomes <author>@sync-work.local
            timeout: Seconds before a git command is abandoned
        """
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()
        self.author = author
        self.timeout = timeout

    def _env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        if self.author:
            email = f"{self.author}@sync-work.local"
            env.update({
                "GIT_AUTHOR_NAME": self.author,
                "GIT_AUTHOR_EMAIL": email,
                "GIT_COMMITTER_NAME": self.author,
                "GIT_COMMITTER_EMAIL": email,
            })
        return env

    def run(self, command: Sequence[str]) -> GitOperationResult:
        """Run a git command and return the result."""
        try:
            result = subprocess.run(
                ["git", *command],
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=False,
                env=self._env(),
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug("git %s failed to run: %s", " ".join(command), e)
            return GitOperationResult(success=False, error=str(e), data={"exception": str(e)})

        if result.returncode == 0:
            return GitOperationResult(
                success=True,
                output=result.stdout.strip(),
                data={"returncode": result.returncode},
            )

        logger.debug("git %s exited %d: %s", " ".join(command), result.returncode, result.stderr.strip())
        return GitOperationResult(
            success=False,
            output=result.stdout.strip(),
            error=result.stderr.strip(),
            data={"returncode": result.returncode},
        )

    def is_repo(self) -> bool:
        return self.run(["rev-parse", "--git-dir"]).success

    def init(self) -> GitOperationResult:
        result = self.run(["init"])
        if result.success:
            logger.info("Initialized git repository in %s", self.repo_path)
        return result

    def remotes(self) -> List[str]:
        result = self.run(["remote"])
        if not result.success:
            return []
        return [line for line in result.output.splitlines() if line]

    def fetch(self, remote: str = "origin") -> GitOperationResult:
        return self.run(["fetch", remote])

    def status(self) -> GitOperationResult:
        """Status with the parsed RepoStatus under ``data['status']``."""
        result = self.run(["status", "--porcelain", "--branch", "--untracked-files=all"])
        if result.success:
            result.data["status"] = parse_status(result.output)
        return result

    def pull(self, remote: Optional[str] = None, branch: Optional[str] = None) -> GitOperationResult:
        """Merge from the upstream branch, or from remote/branch when given."""
        command = ["pull", "--no-rebase", "--no-edit"]
        if remote:
            command.append(remote)
            if branch:
                command.append(branch)
        return self.run(command)

    def add(self, paths: Optional[Sequence[str]] = None) -> GitOperationResult:
        """Stage paths (including deletions); everything when paths is None."""
        if paths is None:
            return self.run(["add", "-A"])
        return self.run(["add", "-A", "--", *paths])

    def commit(self, message: str) -> GitOperationResult:
        result = self.run(["commit", "-m", message])
        if result.success:
            head = self.run(["rev-parse", "HEAD"])
            if head.success:
                result.data["sha"] = head.output
        return result

    def push(self, remote: str = "origin", branch: Optional[str] = None, set_upstream: bool = False) -> GitOperationResult:
        command = ["push"]
        if set_upstream:
            command.append("-u")
        command.append(remote)
        if branch:
            command.append(branch)
        return self.run(command)

    def log(self, max_count: int = 10) -> GitOperationResult:
        """History with CommitEntry records under ``data['commits']``."""
        fmt = FIELD_SEP.join(["%H", "%s", "%an", "%aI"])
        result = self.run(["log", f"--max-count={max_count}", f"--pretty=format:{fmt}"])
        if result.success:
            commits = []
            for line in result.output.splitlines():
                parts = line.split(FIELD_SEP)
                if len(parts) == 4:
                    commits.append(CommitEntry(*parts))
            result.data["commits"] = commits
        return result

    def checkout_theirs(self, paths: Sequence[str]) -> GitOperationResult:
        return self.run(["checkout", "--theirs", "--", *paths])

    def merge_abort(self) -> GitOperationResult:
        return self.run(["merge", "--abort"])
