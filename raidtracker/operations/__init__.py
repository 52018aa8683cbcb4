"""
Operations Layer

Business workflows that compose database access into multi-step,
transactional operations. Every operations class is bound to one guild.

Architecture:
- Database layer: engine, sessions, models and creation helpers
- Operations layer: ownership graph, attendance ledger, claim workflow, audit trail
- Services layer: read-side entitlement and the external recalculation client

Each operations module focuses on a specific domain:
- IdentityResolver: main/box ownership lookups
- AttendanceLedger: attendance facts and per-raid views
- TickRequestWorkflow: request, approve, reject and remove ticks
- AuditLog: templated, append-only audit entries
- RosterOperations: box links and soft-deleted characters
- LootAttributor: loot credit per main
- GuildOperations: guild modifiers
"""
