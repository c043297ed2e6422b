"""
Workspace context gathering.

Collects the files a skill (or an external worker) needs to see. Explicit
files win: when any are given, glob patterns are ignored. Candidates are
ranked so source files near the root come first, then capped by count, per
file size and total size.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from agentmarket.skills.engine import SandboxViolationError

logger = logging.getLogger(__name__)

IGNORED_DIRS = {"node_modules", ".git", "dist", "build", "__pycache__", ".skill-backups"}


@dataclass(frozen=True)
class ContextLimits:
    max_files: int = 10
    max_file_size: int = 50_000
    max_total_chars: int = 400_000


@dataclass
class ContextFile:
    path: str  # relative, POSIX separators
    content: str
    lines: int


@dataclass
class GatheredContext:
    files: List[ContextFile] = field(default_factory=list)
    total_chars: int = 0
    truncated: bool = False

    def as_job_context(self) -> Dict[str, Any]:
        """``{"files": {path: content}}``, the shape jobs and the scanner use."""
        return {"files": {f.path: f.content for f in self.files}}


def _is_ignored(relative: Path) -> bool:
    return any(part in IGNORED_DIRS for part in relative.parts)


def rank_score(relative: Path, size: Optional[int]) -> float:
    """Higher is better: tests sink, shallow beats deep, small beats large."""
    score = 0.0
    text = relative.as_posix().lower()
    if "test" in text or "spec" in text:
        score -= 100
    score -= len(relative.parts) * 10
    if size is not None:
        score -= size / 10_000
    return score


def gather_context(
    workspace: Union[str, Path],
    patterns: Iterable[str] = (),
    explicit_files: Iterable[str] = (),
    limits: Optional[ContextLimits] = None,
) -> GatheredContext:
    """Read the most relevant workspace files.

    Raises:
        SandboxViolationError: If an explicit file lies outside the workspace
    """
    root = Path(workspace).expanduser().resolve()
    limits = limits or ContextLimits()
    candidates: Dict[Path, None] = {}

    for name in explicit_files:
        resolved = (root / name).resolve()
        if not resolved.is_relative_to(root):
            raise SandboxViolationError(f"Path outside workspace not allowed: {name}")
        candidates[resolved] = None

    if not candidates:
        for pattern in patterns:
            matches = [
                p
                for p in sorted(root.glob(pattern))
                if p.is_file() and not _is_ignored(p.relative_to(root))
            ]
            for match in matches[: limits.max_files]:
                candidates[match.resolve()] = None

    def score(path: Path) -> float:
        try:
            size = path.stat().st_size
        except OSError:
            size = None
        return rank_score(path.relative_to(root), size)

    ranked = sorted(candidates, key=score, reverse=True)[: limits.max_files]

    result = GatheredContext()
    for path in ranked:
        try:
            size = path.stat().st_size
            if size > limits.max_file_size:
                result.truncated = True
                continue
            if result.total_chars + size > limits.max_total_chars:
                result.truncated = True
                break
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping context file {path}: {e}")
            continue

        result.files.append(
            ContextFile(
                path=path.relative_to(root).as_posix(),
                content=content,
                lines=content.count("\n") + 1,
            )
        )
        result.total_chars += len(content)

    logger.debug(
        f"Gathered {len(result.files)} context files ({result.total_chars} chars, "
        f"truncated={result.truncated})"
    )
    return result
