"""Watched-user tracking subsystem.

Self-contained modules:
- models and validation (records, notes, incidents, community settings)
- persistence (locked, verified JSON file with backup and recovery)
- registry (record lifecycle, queries, reports)
- escalation and rate limiting (who gets told, and how often)
- alerts (sink protocol and the Discord embed sink)
- monitor (turns community events into incidents and alerts)
- autowatch (keyword-triggered global entries)
"""
