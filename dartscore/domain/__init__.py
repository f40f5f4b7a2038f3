"""Domain layer (pure logic).

- Keep scoring rules and statistics here.
- Avoid I/O: no DB sessions, no HTTP/FastAPI, no Redis.
- Every operation takes a Game value and returns a new one.
"""
