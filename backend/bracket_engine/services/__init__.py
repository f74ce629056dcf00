"""
Services Layer

Engine components that:
- Accept domain inputs (IDs, sessions, raw scores)
- Return domain outputs (models, dataclasses)
- Do NOT depend on HTTP request/response objects
- Own their transaction: one commit per public operation, rollback on failure
"""
