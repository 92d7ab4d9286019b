"""
What Went Wrong API service package.

Exposes the FastAPI application whose protected routes pass through the
authentication gate and the entitlement gate before any handler runs:

- app.main: Application entrypoint that wires gates, routes and lifecycle.
- app.jwks: Signing key resolver for the identity provider's JWKS.
- app.validation: Bearer token verification.
- app.auth: Authentication gate.
- app.plans: Plan records in PostgreSQL.
- app.entitlements: Plan policy and entitlement gate.

Module import must not perform network calls; all IO happens in the
lifespan startup hook or in request handling.
"""
