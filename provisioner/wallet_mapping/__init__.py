"""Wallet mapping v1 package.

Contract:
- Canonical persistence in a single-key KV store (memory / SQLite / Redis).
- Key layout: "{solana_pubkey}:{chain_id}" per chain, "default:{solana_pubkey}" canonical.
- Provisioning is first-writer-wins and idempotent. Overrides are admin-gated,
  last-writer-wins, and scoped to one chain.
- No deletes.
"""
from __future__ import annotations
