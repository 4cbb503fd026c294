"""
Authentication clients for the sign-in example.

Design goals:
- Two collaborators behind small interfaces: the identity provider (Google OIDC)
  and the backend auth service (Identity Toolkit).
- Everything injectable so the orchestration can run against fakes.
- Failures surface as tagged `AuthError`s; only configuration problems are fatal.
"""
