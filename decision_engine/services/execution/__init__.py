"""
Execution and Risk Management Services

Services responsible for risk validation before a trade is proposed.

Services:
- risk_manager: Trade-outcome metrics, pre-trade risk rules and recommendations
"""
