"""Authentication and authorization: session tokens, the identity provider,
credential resolution and role checks."""
