"""
Bulletin Service package.

The service serves the message board, the post feed and the news archive,
enforcing:
- Read memoization: per-request cycles over a process-local read cache
- Invalidation: every successful write invalidates the scopes it touched
- Authoritative mutations for the client's optimistic like toggle

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: Row store accessor.
- app.caching: Read cache, invalidation controller, request cycles.
- app.domain: Messages, posts and news repositories.
- app.models: Request and response models.
"""
