"""
Example relationship dataset.

Users: Olivia(1) Noah(2) Emma(3) Liam(4) Tony(5)
Usergroups: FooOps(1) > BarOps(2) > BazOps(3)
Repos: Alpha(1) Bravo(2) Charlie(3); repogroup Foo(1) holds Bravo and Charlie.
"""

USERS = [
    (1, "Olivia"),
    (2, "Noah"),
    (3, "Emma"),
    (4, "Liam"),
    (5, "Tony"),
]

USERGROUPS = [
    (1, "FooOps"),
    (2, "BarOps"),
    (3, "BazOps"),
]

REPOS = [
    (1, "Alpha"),
    (2, "Bravo"),
    (3, "Charlie"),
]

REPOGROUPS = [
    (1, "Foo"),
]

# (usergroup_id, user_id)
USERGROUP_MEMBERSHIPS = [
    (1, 4),
    (1, 3),
    (3, 5),
]

# (parent_usergroup_id, child_usergroup_id)
USERGROUP_NESTINGS = [
    (1, 2),
    (2, 3),
]

# (repogroup_id, repo_id)
REPOGROUP_MEMBERSHIPS = [
    (1, 2),
    (1, 3),
]

# (scope, principal_id, resource_id, role)
ROLE_ASSIGNMENTS = [
    ("user-repo", 2, 3, "owner"),
    ("user-repo", 1, 3, "reader"),
    ("usergroup-repogroup", 2, 1, "writer"),
]
