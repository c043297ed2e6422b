"""agentmarket command-line interface."""
