# tracking/__init__.py
"""
Deferred-payment tracking subsystem.

Provides:
- Domain enums & models for tracked payments and polling sessions
- Stores for payment mirrors and the per-login session registry
- Services for polling, outcome reconciliation, notification dedup and the
  remote authority / membership / notification collaborators
- Application-level TrackerController wiring it all together
"""
