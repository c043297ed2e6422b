"""
Skill document models.

A skill is a YAML document:

    skill:
      id: add-logging
      name: Add logging
      description: Adds a logger to a module
      category: refactoring
      pricing: free
      version: "1.0"
      inputs:
        module: {type: string, required: true, description: Module path}
      execution:
        - step: read_file
          path: ${inputs.module}
          save_as: source
        - step: update_file
          path: ${inputs.module}
          operation: insert_after
          target: "import os"
          content: "import logging"
      success_message: Logging added
      estimated_time: 5

Steps form a closed set discriminated on ``step``; unknown step kinds and
missing fields are rejected when the document is loaded, not when it runs.
"""

from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class SkillDefinitionError(Exception):
    """Skill document is malformed or fails schema validation."""

    pass


class InputSpec(BaseModel):
    """One declared skill input."""

    type: Literal["string", "number", "boolean", "select", "multiselect"]
    required: bool = False
    default: Any = None
    description: str = ""
    options: Optional[List[str]] = None

    @model_validator(mode="after")
    def _options_for_select(self) -> "InputSpec":
        if self.type in ("select", "multiselect") and not self.options:
            raise ValueError(f"{self.type} inputs need options")
        return self


class ContextPattern(BaseModel):
    description: str = ""
    pattern: str
    max_files: Optional[int] = Field(default=None, ge=1)


class _Step(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ReadFileStep(_Step):
    step: Literal["read_file"]
    path: str
    save_as: Optional[str] = None


class WriteFileStep(_Step):
    step: Literal["write_file"]
    path: str
    content: Any = ""


class UpdateFileStep(_Step):
    step: Literal["update_file"]
    path: str
    operation: Literal["insert_after", "replace", "append"]
    content: Any = ""
    target: Optional[str] = None

    @model_validator(mode="after")
    def _target_for_insert(self) -> "UpdateFileStep":
        if self.operation == "insert_after" and not self.target:
            raise ValueError("insert_after needs a target")
        return self


class DeleteFileStep(_Step):
    step: Literal["delete_file"]
    path: str


class RenameFileStep(_Step):
    step: Literal["rename_file"]
    from_path: str = Field(alias="from")
    to_path: str = Field(alias="to")


class ForEachStep(_Step):
    step: Literal["for_each"]
    items: Any
    as_: str = Field(alias="as")
    do: List["Step"] = Field(min_length=1)


Step = Annotated[
    Union[ReadFileStep, WriteFileStep, UpdateFileStep, DeleteFileStep, RenameFileStep, ForEachStep],
    Field(discriminator="step"),
]

ForEachStep.model_rebuild()


class FileExistsCheck(BaseModel):
    model_config = ConfigDict(extra="forbid")

    check: Literal["file_exists"]
    path: str


class SkillDefinition(BaseModel):
    """The ``skill:`` block of a skill document."""

    id: str = Field(min_length=1)
    name: str
    description: str
    category: str
    pricing: Union[Literal["free"], float]
    author: Optional[str] = None
    version: str
    inputs: Dict[str, InputSpec] = Field(default_factory=dict)
    context_needed: List[ContextPattern] = Field(default_factory=list)
    execution: List[Step] = Field(min_length=1)
    validation: List[FileExistsCheck] = Field(default_factory=list)
    success_message: str
    estimated_time: float

    @model_validator(mode="before")
    @classmethod
    def _coerce_version(cls, data: Any) -> Any:
        # YAML reads `version: 1.0` as a float
        if isinstance(data, dict) and isinstance(data.get("version"), (int, float)):
            data = {**data, "version": str(data["version"])}
        return data


class SkillDocument(BaseModel):
    skill: SkillDefinition


def parse_skill(text: str) -> SkillDocument:
    """Parse and validate a YAML skill document.

    Raises:
        SkillDefinitionError: On YAML syntax or schema errors
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SkillDefinitionError(f"Invalid skill YAML: {e}") from e
    if not isinstance(data, dict):
        raise SkillDefinitionError("Skill document must be a mapping with a 'skill' key")
    try:
        return SkillDocument.model_validate(data)
    except ValidationError as e:
        raise SkillDefinitionError(f"Invalid skill definition: {e}") from e


def load_skill(path: Union[str, Path]) -> SkillDocument:
    """Load a skill document from disk."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SkillDefinitionError(f"Cannot read skill file {path}: {e}") from e
    return parse_skill(text)
