"""
Core Components

Shared data model and error classes used by every service in the
decision engine.

Components:
- models: Signals, risk rules, market/portfolio snapshots and engine outputs
- exceptions: Configuration and input error classes
"""
