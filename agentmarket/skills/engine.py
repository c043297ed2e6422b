"""
Skill execution engine.

Runs a validated skill against a workspace directory:

1. Validate inputs (applying defaults)
2. Back up every file listed in ``context["files"]``
3. Run the skill's validation checks
4. Run the steps in order

Any failure after step 1 rolls the workspace back from the backups. Files
are also backed up right before a step first mutates them, and files that
did not exist are recorded so rollback removes them; the backup map is the
only record rollback works from.

All paths are rendered from ``${...}`` templates and must resolve inside the
workspace. The backup directory itself is off limits to steps.
"""

import itertools
import logging
import shutil
import threading
import time
import weakref
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from agentmarket.config import CommerceConfig
from agentmarket.logging_config import log_rollback
from agentmarket.skills.models import (
    DeleteFileStep,
    FileExistsCheck,
    ForEachStep,
    InputSpec,
    ReadFileStep,
    RenameFileStep,
    SkillDefinition,
    SkillDocument,
    UpdateFileStep,
    WriteFileStep,
)
from agentmarket.skills.templating import TemplateError, render_value

logger = logging.getLogger(__name__)

BACKUP_DIR_NAME = ".skill-backups"
DEFAULT_LOCK_TIMEOUT = 30.0

ROLLED_BACK_MESSAGE = "Skill execution failed (changes have been rolled back)"
NOTHING_CHANGED_MESSAGE = "Skill execution failed before any files were modified"

_backup_counter = itertools.count()
_registry_lock = threading.Lock()
# Entries vanish once no execution references the lock
_path_locks: "weakref.WeakValueDictionary[Path, threading.Lock]" = weakref.WeakValueDictionary()


class SkillExecutionError(Exception):
    """Base exception for skill execution errors."""

    pass


class SkillInputError(SkillExecutionError):
    """Inputs do not match the skill's declared inputs."""

    pass


class SandboxViolationError(SkillExecutionError):
    """A path resolved outside the workspace (or into the backup area)."""

    pass


class SkillStepError(SkillExecutionError):
    """A step or validation check failed."""

    pass


def _lock_for(path: Path) -> threading.Lock:
    with _registry_lock:
        lock = _path_locks.get(path)
        if lock is None:
            lock = _path_locks[path] = threading.Lock()
        return lock


@dataclass
class FileChange:
    type: str  # create, update, delete
    path: str  # relative to the workspace
    content: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "path": self.path, "content": self.content}


@dataclass
class ExecutionState:
    """Transient state of one execution.

    ``backup_map`` maps each touched file to its backup, or to None when the
    file did not exist before the execution.
    """

    inputs: Dict[str, Any]
    context: Dict[str, Any]
    changes: List[FileChange] = field(default_factory=list)
    backup_map: Dict[Path, Optional[Path]] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    held_locks: List[threading.Lock] = field(default_factory=list)


@dataclass
class ExecutionResult:
    success: bool
    message: str
    changes: List[FileChange] = field(default_factory=list)
    error: Optional[str] = None
    rolled_back: bool = False
    restore_failures: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "changes": [c.to_dict() for c in self.changes],
            "error": self.error,
            "rolled_back": self.rolled_back,
            "restore_failures": self.restore_failures,
        }


class SkillEngine:
    """Executes skills inside one workspace directory.

    Args:
        workspace: Root directory every path must stay inside
        config: Supplies the ``for_each`` bounds
        lock_timeout: Seconds to wait for a file another execution is using
    """

    def __init__(
        self,
        workspace: Union[str, Path],
        config: Optional[CommerceConfig] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        self.root = Path(workspace).expanduser().resolve()
        if not self.root.is_dir():
            raise ValueError(f"Workspace is not a directory: {self.root}")
        self.backup_dir = self.root / BACKUP_DIR_NAME
        self.config = config or CommerceConfig()
        self.lock_timeout = lock_timeout

    # === Public API ===

    def execute(
        self,
        skill: Union[SkillDocument, SkillDefinition],
        inputs: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult:
        """Run a skill. Never raises for skill failures; see ``ExecutionResult``."""
        definition = skill.skill if isinstance(skill, SkillDocument) else skill
        state = ExecutionState(inputs=dict(inputs or {}), context=dict(context or {}))

        try:
            state.inputs = self.validate_inputs(definition.inputs, state.inputs)
        except SkillInputError as e:
            logger.warning(f"Skill {definition.id} rejected inputs: {e}")
            return ExecutionResult(success=False, message=NOTHING_CHANGED_MESSAGE, error=str(e))

        state.variables = {"inputs": state.inputs, "context": state.context}
        logger.info(f"Executing skill {definition.id} in {self.root}")

        try:
            self._backup_context_files(state)
            for check in definition.validation:
                self._run_check(check, state)
            for step in definition.execution:
                self._run_step(step, state, state.variables, depth=0)
        except Exception as e:
            logger.error(f"Skill {definition.id} failed: {e}")
            failures = self.rollback(state)
            if failures:
                message = (
                    "Skill execution failed and rollback was incomplete; "
                    f"manual repair needed for: {', '.join(failures)}"
                )
            elif state.changes:
                message = ROLLED_BACK_MESSAGE
            else:
                message = NOTHING_CHANGED_MESSAGE
            return ExecutionResult(
                success=False,
                message=message,
                changes=state.changes,
                error=str(e),
                rolled_back=bool(state.backup_map) and not failures,
                restore_failures=failures,
            )
        finally:
            for lock in state.held_locks:
                lock.release()
            state.held_locks.clear()

        self.discard_backups(state)
        logger.info(f"Skill {definition.id} completed with {len(state.changes)} changes")
        return ExecutionResult(
            success=True, message=definition.success_message, changes=state.changes
        )

    def validate_inputs(
        self, specs: Mapping[str, InputSpec], inputs: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Check inputs against their declarations and fill in defaults.

        Raises:
            SkillInputError: On a missing required input or a type mismatch
        """
        validated = dict(inputs)
        for key, spec in specs.items():
            value = validated.get(key)
            if value is None:
                if spec.default is not None:
                    validated[key] = spec.default
                elif spec.required:
                    raise SkillInputError(f"Missing required input: {key}")
                continue

            if spec.type == "string" and not isinstance(value, str):
                raise SkillInputError(f"Input {key} must be a string")
            if spec.type == "number" and (
                isinstance(value, bool) or not isinstance(value, (int, float))
            ):
                raise SkillInputError(f"Input {key} must be a number")
            if spec.type == "boolean" and not isinstance(value, bool):
                raise SkillInputError(f"Input {key} must be a boolean")
            if spec.type == "select" and value not in spec.options:
                raise SkillInputError(f"Input {key} must be one of: {', '.join(spec.options)}")
            if spec.type == "multiselect":
                if not isinstance(value, list):
                    raise SkillInputError(f"Input {key} must be a list")
                unknown = [v for v in value if v not in spec.options]
                if unknown:
                    raise SkillInputError(f"Input {key} has unknown options: {unknown}")
        return validated

    # === Paths ===

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return str(path)

    def resolve_path(self, template: Any, scope: Mapping[str, Any]) -> Path:
        """Render a path template and confine it to the workspace.

        Raises:
            SandboxViolationError: If the path leaves the workspace, is the
                workspace itself, or points into the backup directory
        """
        try:
            rendered = render_value(template, scope)
        except TemplateError as e:
            raise SkillStepError(str(e)) from e
        if not isinstance(rendered, str) or not rendered.strip():
            raise SkillStepError(f"Path must render to a non-empty string, got {rendered!r}")

        resolved = (self.root / rendered).resolve()
        if not resolved.is_relative_to(self.root) or resolved == self.root:
            logger.warning(f"Sandbox violation: {rendered!r} resolves to {resolved}")
            raise SandboxViolationError(f"Path outside workspace not allowed: {rendered}")
        if resolved.is_relative_to(self.backup_dir):
            raise SandboxViolationError(f"Path inside the backup area not allowed: {rendered}")
        return resolved

    # === Backups ===

    def _context_paths(self, state: ExecutionState) -> List[Any]:
        files = state.context.get("files") or []
        if isinstance(files, Mapping):
            return list(files.keys())
        if isinstance(files, (list, tuple)):
            return [f["path"] if isinstance(f, Mapping) else f for f in files]
        raise SkillStepError("context.files must be a list or a mapping")

    def _backup_context_files(self, state: ExecutionState) -> None:
        for raw in self._context_paths(state):
            path = self.resolve_path(str(raw), {})
            self.backup(path, state)

    def backup(self, path: Path, state: ExecutionState) -> None:
        """Record ``path``'s current content before it is first touched."""
        if path in state.backup_map:
            return

        lock = _lock_for(path)
        if not lock.acquire(timeout=self.lock_timeout):
            raise SkillStepError(f"File is in use by another execution: {self._relative(path)}")
        state.held_locks.append(lock)

        if path.is_dir():
            raise SkillStepError(f"Not a file: {self._relative(path)}")
        if not path.exists():
            state.backup_map[path] = None
            logger.debug(f"[Backup] {self._relative(path)} does not exist yet")
            return

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        stamp = int(time.time() * 1000)
        backup_file = self.backup_dir / f"{stamp}-{next(_backup_counter)}-{path.name}"
        shutil.copy2(path, backup_file)
        state.backup_map[path] = backup_file
        logger.debug(f"[Backup] {self._relative(path)} -> {backup_file.name}")

    def rollback(self, state: ExecutionState) -> List[str]:
        """Restore every file in the backup map.

        Returns the list of files that could not be restored (with the
        error). Backups are removed only when everything was restored.
        """
        if not state.backup_map:
            logger.error("[Rollback] No backups recorded; nothing can be restored")
            return []

        restored = 0
        failures: List[str] = []
        for original, backup_file in state.backup_map.items():
            rel = self._relative(original)
            try:
                if backup_file is None:
                    # Created during the execution
                    if original.exists():
                        original.unlink()
                else:
                    original.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(backup_file, original)
                restored += 1
                logger.info(f"[Rollback] Restored {rel}")
            except OSError as e:
                failures.append(f"{rel}: {e}")
                logger.error(f"[Rollback] Failed to restore {rel}: {e}")

        logger.info(f"[Rollback] Complete: {restored} restored, {len(failures)} failed")
        log_rollback(str(self.root), restored, len(failures))

        if failures:
            logger.error(f"[Rollback] Keeping backups due to {len(failures)} restoration failures")
            return failures

        self.discard_backups(state)
        return failures

    def discard_backups(self, state: ExecutionState) -> None:
        """Delete the backup copies once they are no longer needed."""
        for backup_file in state.backup_map.values():
            if backup_file is None:
                continue
            try:
                backup_file.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"[Backup] Could not remove backup {backup_file}: {e}")

    # === Checks & steps ===

    def _run_check(self, check: FileExistsCheck, state: ExecutionState) -> None:
        path = self.resolve_path(check.path, state.variables)
        if not path.is_file():
            raise SkillStepError(f"File not found: {self._relative(path)}")

    def _read(self, path: Path) -> str:
        if not path.is_file():
            raise SkillStepError(f"File not found: {self._relative(path)}")
        return path.read_text(encoding="utf-8")

    def _render_content(self, template: Any, scope: Mapping[str, Any]) -> str:
        try:
            value = render_value(template, scope)
        except TemplateError as e:
            raise SkillStepError(str(e)) from e
        return value if isinstance(value, str) else str(value)

    def _run_step(self, step: Any, state: ExecutionState, scope: Dict[str, Any], depth: int) -> None:
        if isinstance(step, ReadFileStep):
            path = self.resolve_path(step.path, scope)
            content = self._read(path)
            if step.save_as:
                scope[step.save_as] = content

        elif isinstance(step, WriteFileStep):
            path = self.resolve_path(step.path, scope)
            content = self._render_content(step.content, scope)
            self.backup(path, state)
            existed = path.exists()
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            state.changes.append(
                FileChange("update" if existed else "create", self._relative(path), content)
            )

        elif isinstance(step, UpdateFileStep):
            path = self.resolve_path(step.path, scope)
            addition = self._render_content(step.content, scope)
            self.backup(path, state)
            content = self._read(path)
            if step.operation == "insert_after":
                target = self._render_content(step.target, scope)
                if target not in content:
                    raise SkillStepError(
                        f"Target not found in {self._relative(path)}: {target!r}"
                    )
                content = content.replace(target, f"{target}\n{addition}", 1)
            elif step.operation == "replace":
                content = addition
            else:
                content = f"{content}\n{addition}"
            path.write_text(content, encoding="utf-8")
            state.changes.append(FileChange("update", self._relative(path), content))

        elif isinstance(step, DeleteFileStep):
            path = self.resolve_path(step.path, scope)
            self.backup(path, state)
            if not path.is_file():
                raise SkillStepError(f"File not found: {self._relative(path)}")
            path.unlink()
            state.changes.append(FileChange("delete", self._relative(path)))

        elif isinstance(step, RenameFileStep):
            source = self.resolve_path(step.from_path, scope)
            target = self.resolve_path(step.to_path, scope)
            self.backup(source, state)
            self.backup(target, state)
            if not source.is_file():
                raise SkillStepError(f"File not found: {self._relative(source)}")
            target.parent.mkdir(parents=True, exist_ok=True)
            source.replace(target)
            state.changes.append(FileChange("delete", self._relative(source)))
            state.changes.append(FileChange("create", self._relative(target)))

        elif isinstance(step, ForEachStep):
            self._run_for_each(step, state, scope, depth)

        else:
            raise SkillStepError(f"Unsupported step: {type(step).__name__}")

    def _run_for_each(
        self, step: ForEachStep, state: ExecutionState, scope: Dict[str, Any], depth: int
    ) -> None:
        if depth + 1 > self.config.max_for_each_depth:
            raise SkillStepError(
                f"for_each nested deeper than {self.config.max_for_each_depth} levels"
            )
        try:
            items = render_value(step.items, scope)
        except TemplateError as e:
            raise SkillStepError(str(e)) from e
        if not isinstance(items, list):
            raise SkillStepError("for_each items must be a list")
        if len(items) > self.config.max_for_each_items:
            raise SkillStepError(
                f"for_each over {len(items)} items exceeds the limit of "
                f"{self.config.max_for_each_items}"
            )

        for item in items:
            loop_scope = {**scope, step.as_: item}
            for sub_step in step.do:
                self._run_step(sub_step, state, loop_scope, depth + 1)


def restore_summary(result: ExecutionResult) -> Tuple[str, str]:
    """Short (status, detail) pair for CLI and log output."""
    if result.success:
        return "ok", result.message
    if result.restore_failures:
        return "rollback-incomplete", result.message
    if result.rolled_back:
        return "rolled-back", result.message
    return "failed", result.message
