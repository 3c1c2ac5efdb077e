"""
Services Layer

Pure business logic services that:
- Accept domain inputs (IDs, sessions, entrant lists, etc.)
- Return domain outputs (models, plans, dicts, etc.)
- Do NOT depend on HTTP request/response objects
- Raise competition_engine.errors exceptions; routes translate them to HTTP
"""
