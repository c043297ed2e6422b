"""
agentmarket CLI.

Usage:
    agentmarket skill validate FILE [--json]
    agentmarket skill run FILE --workspace DIR [--input KEY=VALUE]... [--file PATH]... [--json]
    agentmarket sweep --db PATH [--dry-run] [--json]
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from agentmarket.commerce.jobs.service import JobService
from agentmarket.commerce.payments import InMemoryPaymentBackend
from agentmarket.commerce.storage.sqlite import SQLiteCommerceStore
from agentmarket.commerce.workers import InMemoryWorkerDirectory
from agentmarket.config import CommerceConfig
from agentmarket.logging_config import setup_agentmarket_logging
from agentmarket.sanitize import sanitize_string
from agentmarket.skills.context import gather_context
from agentmarket.skills.engine import SkillEngine, restore_summary
from agentmarket.skills.models import SkillDefinitionError, load_skill

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ROLLBACK_INCOMPLETE = 2


def parse_inputs(pairs: Optional[List[str]]) -> Dict[str, Any]:
    """Parse ``KEY=VALUE`` pairs. Values are read as JSON when possible."""
    inputs: Dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, raw = pair.partition("=")
        key = sanitize_string(key.strip(), "input name", max_length=100)
        if not sep:
            raise ValueError(f"Input must be KEY=VALUE, got {pair!r}")
        try:
            inputs[key] = json.loads(raw)
        except ValueError:
            inputs[key] = raw
    return inputs


def cmd_skill_validate(args) -> int:
    """Validate a skill document."""
    try:
        document = load_skill(args.file)
    except SkillDefinitionError as e:
        if args.json:
            print(json.dumps({"valid": False, "error": str(e)}, indent=2))
        else:
            print(f"✗ {e}")
        return EXIT_FAILED

    skill = document.skill
    if args.json:
        print(
            json.dumps(
                {"valid": True, "id": skill.id, "version": skill.version, "steps": len(skill.execution)},
                indent=2,
            )
        )
    else:
        print(f"✓ {skill.id} v{skill.version}: {len(skill.execution)} steps")
    return EXIT_OK


def cmd_skill_run(args, config: CommerceConfig) -> int:
    """Run a skill against a workspace."""
    document = load_skill(args.file)
    inputs = parse_inputs(args.input)

    if args.file_paths:
        context = {"files": list(args.file_paths)}
    else:
        patterns = [p.pattern for p in document.skill.context_needed]
        gathered = gather_context(args.workspace, patterns=patterns)
        context = {"files": [f.path for f in gathered.files]}

    engine = SkillEngine(args.workspace, config)
    result = engine.execute(document, inputs, context)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        status, detail = restore_summary(result)
        print(f"[{status}] {detail}")
        for change in result.changes:
            print(f"  {change.type:<6} {change.path}")
        if result.error:
            print(f"  error: {result.error}")

    if result.success:
        return EXIT_OK
    if result.restore_failures:
        return EXIT_ROLLBACK_INCOMPLETE
    return EXIT_FAILED


def cmd_sweep(args, config: CommerceConfig) -> int:
    """Cancel and refund jobs past their deadline."""
    store = SQLiteCommerceStore(args.db)
    service = JobService(store, InMemoryWorkerDirectory(), InMemoryPaymentBackend(), config)
    report = service.process_timeouts(dry_run=args.dry_run)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        prefix = "Would cancel" if report.dry_run else "Cancelled"
        print(f"{prefix} {len(report.cancelled)} of {report.checked} timed-out jobs")
        for job_id in report.skipped:
            print(f"  skipped {job_id} (already settled)")
        for failure in report.failures:
            print(f"  FAILED {failure['job_id']}: {failure['error']}")

    return EXIT_FAILED if report.failures else EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentmarket",
        description="Escrowed jobs and local skill execution",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # skill
    p_skill = subparsers.add_parser("skill", help="Skill operations")
    skill_sub = p_skill.add_subparsers(dest="skill_action", required=True)

    sk_validate = skill_sub.add_parser("validate", help="Validate a skill document")
    sk_validate.add_argument("file", help="Skill YAML file")
    sk_validate.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    sk_run = skill_sub.add_parser("run", help="Run a skill in a workspace")
    sk_run.add_argument("file", help="Skill YAML file")
    sk_run.add_argument("--workspace", "-w", required=True, help="Workspace directory")
    sk_run.add_argument("--input", "-i", action="append", help="Input as KEY=VALUE")
    sk_run.add_argument(
        "--file", "-f", dest="file_paths", action="append", help="File to back up and expose"
    )
    sk_run.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # sweep
    p_sweep = subparsers.add_parser("sweep", help="Cancel and refund timed-out jobs")
    p_sweep.add_argument("--db", required=True, help="SQLite database path")
    p_sweep.add_argument("--dry-run", action="store_true", help="Report without changing anything")
    p_sweep.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        setup_agentmarket_logging(args.log_level)
        config = CommerceConfig.from_env()
    except (ValueError, OSError) as e:
        logger.error(f"Failed to initialize agentmarket: {e}")
        return EXIT_FAILED

    try:
        if args.command == "skill":
            if args.skill_action == "validate":
                return cmd_skill_validate(args)
            return cmd_skill_run(args, config)
        elif args.command == "sweep":
            return cmd_sweep(args, config)
    except (ValueError, TypeError, SkillDefinitionError) as e:
        logger.error(f"Input validation error: {e}")
        return EXIT_FAILED
    except Exception as e:
        logger.error(f"Command failed: {e}")
        return EXIT_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
