"""
Decision package.

- permissions: Action enum and the role to action table.
- engine: In-process allow/deny over role assignments.
- facts: Fact set construction and Datalog serialization.
- evaluator: Policy evaluator interface and the in-process rule evaluator.
- tokens: Signed user tokens and their attenuation checks.
"""
