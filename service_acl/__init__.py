"""
ACL cache for the Access Layer.

Caches the ACLs served by the remote authorization service so that
authorization checks do not pay a network round trip on every request.
"""
