"""
Permission management feature module.

Implements organization-scoped custom roles, per-resource permission overrides
and permission templates, plus the checks that combine them with a member's
primitive role.
"""
