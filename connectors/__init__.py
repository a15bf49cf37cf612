"""
connectors — streaming-service integration module.

Provides a generic provider framework that handles:
  • OAuth2 auth-URL generation
  • Callback handling (code → token exchange)
  • Per-user credential storage & serialized auto-refresh
  • Fernet encryption of tokens at rest
  • Paginated library reads + raw-entry normalization
  • Revocation / disconnect

Each provider (Spotify, Apple Music) is a subclass of BaseConnector.
"""
