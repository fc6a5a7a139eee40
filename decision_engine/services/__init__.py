"""
Decision Engine Services

Service Categories:
- execution: Risk metrics tracking, pre-trade validation, recommendations
- strategy: Position sizing, allocation targets and decision synthesis
"""
