"""
API Layer

RESPONSIBILITY: HTTP access to the engine for the authorization/API tier
ALLOWED INPUTS: Path/query parameters and pydantic request bodies
OUTPUTS: JSON DTOs and mapped error payloads

WHAT THIS LAYER MUST NOT DO:
============================
- Build transactions itself (uses the engine)
- Retry failed commits
"""
