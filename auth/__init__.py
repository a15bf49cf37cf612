"""
auth — caller identity.

Provides:
  • signed, expiring payloads (bearer tokens and OAuth state)
  • ``get_current_user_id`` FastAPI dependency
"""
