"""Sync engine: local store → Supabase, incremental and idempotent.

Modules:
    base         — Record types, per-kind entity specs and wire serialization
    errors       — SyncError hierarchy
    retry        — Retry policy and exponential backoff executor
    identity     — Device → patient id resolution (check-then-create)
    orchestrator — One sync attempt: identity, history row, four kinds, cursor
    scheduler    — Daily background run and manual trigger
"""
