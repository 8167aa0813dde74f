"""
Resolution of a decision request into its relevant relationships.

The closure resolver expands a user's usergroups through nesting, the
aggregator collects the role assignments over the user, its usergroups, the
repo and its repogroups, and the gatherer runs both inside one snapshot.
"""
