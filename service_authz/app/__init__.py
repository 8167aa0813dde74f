"""
Authorization Service package.

Decides whether a user may perform an action (membership, write, read) on a
repo, based on role assignments held directly or inherited through usergroup
nesting and repogroup membership. It provides:

- app.main: API surface for decision checks, fact sets, tokens and health.
- app.authorizer: Facade composing gathering, decision and policy evaluation.
- app.relationships: Entity models and the relationship store backends.
- app.resolution: Usergroup closure and role assignment aggregation.
- app.decision: Role/action table, decision engine, facts and tokens.

Guidelines:
- The service is stateless; every decision reads a fresh store snapshot.
- Default deny. No error is ever turned into an allow.
- Keep evaluation deterministic and observable (metrics + logs).
"""
