"""Huddle realtime chat: change feed plumbing and the message-tree sync client."""
