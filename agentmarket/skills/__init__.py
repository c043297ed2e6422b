"""Local skill execution for agentmarket.

Modules:
- models.py: YAML skill documents and their closed step vocabulary
- templating.py: ``${...}`` references in step fields
- engine.py: Sandboxed execution with backup and rollback
- context.py: Workspace file gathering for skills and worker jobs
"""

from agentmarket.skills.context import ContextLimits, GatheredContext, gather_context
from agentmarket.skills.engine import (
    ExecutionResult,
    FileChange,
    SandboxViolationError,
    SkillEngine,
    SkillExecutionError,
    SkillInputError,
    SkillStepError,
)
from agentmarket.skills.models import (
    SkillDefinition,
    SkillDefinitionError,
    SkillDocument,
    load_skill,
    parse_skill,
)

__all__ = [
    # Models
    "SkillDocument",
    "SkillDefinition",
    "SkillDefinitionError",
    "load_skill",
    "parse_skill",
    # Engine
    "SkillEngine",
    "ExecutionResult",
    "FileChange",
    "SkillExecutionError",
    "SkillInputError",
    "SandboxViolationError",
    "SkillStepError",
    # Context
    "gather_context",
    "GatheredContext",
    "ContextLimits",
]
