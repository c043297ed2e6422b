"""Secrets scanning for job context sent to external workers.

Blocks transmission when the context contains:
- Sensitive files by name (``.env``, ``id_rsa``, ``credentials.json``, ...)
- Sensitive files by pattern (``*.pem``, ``*.key``, ``.ssh/``, ``.aws/``, ...)
- File content matching common credential formats (API keys, PEM blocks,
  provider token prefixes)

Usage:
    from agentmarket.security.secrets_scanner import SecretsScanner

    result = SecretsScanner().scan({"files": {"app.py": "print('hi')"}})
    if not result.safe:
        print(result.blocked_files, result.blocked_patterns)
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Protocol

# Content patterns: anything that looks like a credential
SECRET_PATTERNS = [
    re.compile(r"API[_-]?KEY", re.IGNORECASE),
    re.compile(r"SECRET[_-]?KEY", re.IGNORECASE),
    re.compile(r"ACCESS[_-]?TOKEN", re.IGNORECASE),
    re.compile(r"AUTH[_-]?TOKEN", re.IGNORECASE),
    re.compile(r"PRIVATE[_-]?KEY", re.IGNORECASE),
    re.compile(r"PASSWORD", re.IGNORECASE),
    re.compile(r"STRIPE[_-]?KEY", re.IGNORECASE),
    re.compile(r"DATABASE[_-]?URL", re.IGNORECASE),
    re.compile(r"sk_live_", re.IGNORECASE),
    re.compile(r"sk_test_", re.IGNORECASE),
    re.compile(r"rk_live_", re.IGNORECASE),
    re.compile(r"rk_test_", re.IGNORECASE),
    re.compile(r"pk_live_", re.IGNORECASE),
    re.compile(r"pk_test_", re.IGNORECASE),
    re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----"),
    re.compile(r"ghp_[a-zA-Z0-9]{36}"),
    re.compile(r"gho_[a-zA-Z0-9]{36}"),
    re.compile(r"AIza[0-9A-Za-z\-_]{35}"),
    re.compile(r"AKIA[0-9A-Z]{16}"),
]

# Files that are never sent to workers
BLOCKED_FILES = [
    ".env",
    ".env.local",
    ".env.production",
    ".env.development",
    ".env.test",
    "credentials.json",
    "secrets.json",
    "service-account.json",
    "id_rsa",
    "id_dsa",
    "id_ecdsa",
    "id_ed25519",
    ".npmrc",
    ".pypirc",
    ".netrc",
    ".dockercfg",
    ".git/config",
]

BLOCKED_PATH_PATTERNS = [
    re.compile(r"\.pem$"),
    re.compile(r"\.key$"),
    re.compile(r"\.p12$"),
    re.compile(r"\.pfx$"),
    re.compile(r"(^|/)\.?ssh/"),
    re.compile(r"(^|/)\.?aws/"),
    re.compile(r"(^|/)\.?gcp/"),
]


@dataclass
class ScanResult:
    """Outcome of a scan. ``safe`` is False when anything was blocked."""

    safe: bool
    blocked_files: List[str] = field(default_factory=list)
    blocked_patterns: List[str] = field(default_factory=list)


class ContextScanner(Protocol):
    """Anything that can vet a job context before it leaves the platform."""

    def scan(self, context: Mapping[str, Any]) -> ScanResult:
        ...


def _is_blocked_path(file_path: str) -> bool:
    normalized = file_path.replace("\\", "/").lower()
    name = normalized.rsplit("/", 1)[-1]
    for blocked in BLOCKED_FILES:
        blocked = blocked.lower()
        if "/" in blocked:
            if normalized == blocked or normalized.endswith("/" + blocked):
                return True
        elif name == blocked:
            return True
    return any(p.search(normalized) for p in BLOCKED_PATH_PATTERNS)


def _dedupe(items: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


class SecretsScanner:
    """Pattern-based scanner for ``{"files": {path: content}}`` contexts."""

    def scan_file_paths(self, file_paths: Iterable[str]) -> ScanResult:
        blocked = [p for p in file_paths if _is_blocked_path(p)]
        return ScanResult(safe=not blocked, blocked_files=blocked)

    def scan_file_content(self, content: str, file_path: str) -> ScanResult:
        matched = [p.pattern for p in SECRET_PATTERNS if p.search(content)]
        return ScanResult(
            safe=not matched,
            blocked_files=[file_path] if matched else [],
            blocked_patterns=matched,
        )

    def scan(self, context: Mapping[str, Any]) -> ScanResult:
        """Scan a job context.

        Contexts without a ``files`` mapping carry no file content and are
        considered safe. Path checks run first; files already blocked by path
        are not content-scanned.
        """
        if not context:
            return ScanResult(safe=True)
        files = context.get("files")
        if not isinstance(files, Mapping):
            return ScanResult(safe=True)

        path_scan = self.scan_file_paths(files.keys())
        blocked_files = list(path_scan.blocked_files)
        blocked_patterns: List[str] = []

        for file_path, content in files.items():
            if file_path in blocked_files:
                continue
            content_scan = self.scan_file_content(str(content), file_path)
            if not content_scan.safe:
                blocked_files.extend(content_scan.blocked_files)
                blocked_patterns.extend(content_scan.blocked_patterns)

        blocked_files = _dedupe(blocked_files)
        return ScanResult(
            safe=not blocked_files,
            blocked_files=blocked_files,
            blocked_patterns=_dedupe(blocked_patterns),
        )

    def redact(self, content: str) -> str:
        """Replace credential-looking matches with ``[REDACTED]`` (for logs)."""
        redacted = content
        for pattern in SECRET_PATTERNS:
            redacted = pattern.sub("[REDACTED]", redacted)
        return redacted
