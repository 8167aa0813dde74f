"""
Relationship graph package.

Holds the entity models (users, usergroups, repos, repogroups and role
assignments) and the stores they are read from. Every store hands out
snapshots; all lookups for one decision go through the same snapshot.

Modules of interest:
- models: Entity dataclasses, role decoding and assignment validation.
- store: Abstract store and snapshot contract.
- memory: In-process store used for tests and local runs.
- postgres: asyncpg-backed store with repeatable-read snapshots.
"""
