"""
Strategy and Decision Services

The "brain" of the engine that sizes positions and synthesizes all
opinions into an actionable decision.

Services:
- portfolio_manager: Position sizing and allocation targets
- signal_aggregator: Weighted-vote decision synthesis
"""
