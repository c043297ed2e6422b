"""Security collaborators used by the job controller."""

from agentmarket.security.secrets_scanner import ContextScanner, ScanResult, SecretsScanner

__all__ = ["ContextScanner", "ScanResult", "SecretsScanner"]
