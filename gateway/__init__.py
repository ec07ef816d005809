"""Multi-session messaging gateway.

Each linked device gets its own transport connection and credential folder.
A Telegram control bot and a websocket dashboard create, list and stop them.
"""

__version__ = "0.1.0"
