"""botchat — streaming chat client and conversation session store."""

__version__ = "0.1.0"
