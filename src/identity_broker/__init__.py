"""Identity Broker

Multi-strategy authentication with account linking and server-side sessions.
"""

__version__ = "1.0.0"
