"""
Subscriptions Service package for the Subscriptions App.

This package keeps a local snapshot of Patreon campaign members fresh and
answers Discord lookup interactions against it. It provides:

- app.main: FastAPI app, the interaction route and background task wiring.
- app.patreon: OAuth2 token lifecycle, paginated member fetches, tier catalog.
- app.ratelimit: Token bucket bounding requests to the Patreon API.
- app.cache: Snapshot cache with whole-map replacement.
- app.auth: Ed25519 verification of inbound interaction requests.
- app.poller: Poll scheduler and the snapshot handoff consumer.
- app.interactions: Interaction dispatch and response formatting.

Guidelines:
- A snapshot is either published complete or not at all.
- Cycle failures never reach the interaction endpoint; the flows only meet
  in the snapshot cache.
"""
