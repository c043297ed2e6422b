"""Commerce for agentmarket: jobs, escrow, wallets.

Subpackages:
- jobs: Job lifecycle and dispatch to external workers
- escrow: Funds held per job until approval or refund
- wallet: Balances and the transaction ledger
- storage: Persistence with atomic units shared by all three

Modules:
- workers.py: Worker directory and reputation
- payments.py: Payout transfer backend
"""
