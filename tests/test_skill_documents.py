"""Tests for skill documents and ${...} templating."""

import pytest

from agentmarket.skills.models import (
    ForEachStep,
    RenameFileStep,
    SkillDefinitionError,
    UpdateFileStep,
    load_skill,
    parse_skill,
)
from agentmarket.skills.templating import TemplateError, lookup, render_value

ADD_LOGGING = """
skill:
  id: add-logging
  name: Add logging
  description: Adds a logger to a module
  category: refactoring
  pricing: free
  version: 1.0
  inputs:
    module: {type: string, required: true, description: Module path}
    level: {type: select, options: [INFO, DEBUG], default: INFO}
  execution:
    - step: read_file
      path: ${inputs.module}
      save_as: source
    - step: update_file
      path: ${inputs.module}
      operation: insert_after
      target: "import os"
      content: "import logging"
    - step: rename_file
      from: old.py
      to: new.py
    - step: for_each
      items: ${inputs.files}
      as: file
      do:
        - step: delete_file
          path: ${file}
  validation:
    - check: file_exists
      path: ${inputs.module}
  success_message: Logging added
  estimated_time: 5
"""


def _skill(execution, **extra):
    steps = "\n".join("    " + line for line in execution.strip().splitlines())
    body = "\n".join(f"  {key}: {value}" for key, value in extra.items())
    return f"""
skill:
  id: test-skill
  name: Test
  description: Test skill
  category: testing
  pricing: 0.5
  version: "2"
  execution:
{steps}
  success_message: Done
  estimated_time: 1
{body}
"""


class TestParseSkill:
    """Loading skill documents."""

    def test_full_document(self):
        """Every step kind is parsed into its own model."""
        doc = parse_skill(ADD_LOGGING)
        skill = doc.skill

        assert skill.id == "add-logging"
        assert skill.version == "1.0"
        assert skill.pricing == "free"
        assert skill.inputs["module"].required
        assert skill.inputs["level"].default == "INFO"
        assert [s.step for s in skill.execution] == [
            "read_file",
            "update_file",
            "rename_file",
            "for_each",
        ]
        assert isinstance(skill.execution[1], UpdateFileStep)
        rename = skill.execution[2]
        assert isinstance(rename, RenameFileStep)
        assert (rename.from_path, rename.to_path) == ("old.py", "new.py")
        loop = skill.execution[3]
        assert isinstance(loop, ForEachStep)
        assert loop.as_ == "file"
        assert loop.do[0].step == "delete_file"
        assert skill.validation[0].path == "${inputs.module}"

    def test_numeric_pricing(self):
        assert parse_skill(_skill("- {step: delete_file, path: a.txt}")).skill.pricing == 0.5

    def test_unknown_step_kind(self):
        """Unknown step kinds fail at load time."""
        with pytest.raises(SkillDefinitionError, match="Invalid skill definition"):
            parse_skill(_skill("- {step: run_shell, command: rm -rf /}"))

    def test_extra_step_field(self):
        with pytest.raises(SkillDefinitionError):
            parse_skill(_skill("- {step: delete_file, path: a.txt, recursive: true}"))

    def test_missing_step_field(self):
        with pytest.raises(SkillDefinitionError):
            parse_skill(_skill("- {step: write_file}"))

    def test_insert_after_needs_target(self):
        with pytest.raises(SkillDefinitionError, match="insert_after needs a target"):
            parse_skill(_skill("- {step: update_file, path: a.txt, operation: insert_after}"))

    def test_empty_for_each_body(self):
        with pytest.raises(SkillDefinitionError):
            parse_skill(_skill("- {step: for_each, items: [1], as: x, do: []}"))

    def test_select_needs_options(self):
        with pytest.raises(SkillDefinitionError, match="select inputs need options"):
            parse_skill(
                _skill("- {step: delete_file, path: a.txt}", inputs="{mode: {type: select}}")
            )

    def test_empty_execution(self):
        with pytest.raises(SkillDefinitionError):
            parse_skill(_skill("").replace("  execution:\n", "  execution: []\n"))

    def test_invalid_yaml(self):
        with pytest.raises(SkillDefinitionError, match="Invalid skill YAML"):
            parse_skill("skill: [unclosed")

    def test_not_a_mapping(self):
        with pytest.raises(SkillDefinitionError, match="must be a mapping"):
            parse_skill("- just\n- a list\n")


class TestLoadSkill:
    def test_load_from_file(self, tmp_path):
        path = tmp_path / "add-logging.yaml"
        path.write_text(ADD_LOGGING, encoding="utf-8")

        assert load_skill(path).skill.name == "Add logging"

    def test_missing_file(self, tmp_path):
        with pytest.raises(SkillDefinitionError, match="Cannot read skill file"):
            load_skill(tmp_path / "nope.yaml")


class TestTemplating:
    """${a.b.0} references."""

    SCOPE = {"inputs": {"module": "app.py", "files": ["a.py", "b.py"], "count": 3}}

    def test_whole_reference_keeps_type(self):
        """A field that is exactly one reference yields the value itself."""
        assert render_value("${inputs.files}", self.SCOPE) == ["a.py", "b.py"]
        assert render_value("${inputs.count}", self.SCOPE) == 3

    def test_embedded_references_are_strings(self):
        assert render_value("src/${inputs.module}.bak", self.SCOPE) == "src/app.py.bak"
        assert render_value("${inputs.count} files", self.SCOPE) == "3 files"

    def test_list_index(self):
        assert lookup(self.SCOPE, "inputs.files.1") == "b.py"
        assert lookup(self.SCOPE, "inputs.files.-1") == "b.py"

    def test_index_out_of_range(self):
        with pytest.raises(TemplateError, match="Index out of range"):
            lookup(self.SCOPE, "inputs.files.5")

    def test_unresolved_reference(self):
        """Unknown references are errors, never left as literal text."""
        with pytest.raises(TemplateError, match=r"Unresolved reference: \$\{inputs.missing\}"):
            render_value("path/${inputs.missing}", self.SCOPE)

    def test_non_strings_pass_through(self):
        assert render_value(["x"], self.SCOPE) == ["x"]
        assert render_value(None, self.SCOPE) is None

    def test_plain_text(self):
        assert render_value("no references", self.SCOPE) == "no references"
