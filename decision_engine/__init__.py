"""
Risk-Adjusted Trading Decision Engine

Turns an AI-derived directional signal into a risk-checked, sized and
synthesized trading decision.

This package implements:
- Trade-outcome tracking (win rate, profit factor, drawdown, losing streak)
- Pre-trade risk validation with volatility and sentiment scoring
- Position sizing fused from rule-based, Kelly, portfolio-theory and
  dynamic multi-factor estimates
- Weighted-vote synthesis across technical, AI and risk opinions
"""

from .core.exceptions import DecisionEngineError, ConfigurationError, InvalidInputError
from .core.models import (
    Action, TradeSignal, Consensus, RiskRules, RiskProfile, MarketSnapshot, PortfolioState,
    TradeRecord, RiskMetrics, TradeRecommendation, Opinion, DecisionSynthesis
)
from .engine import TradingDecisionEngine, TechnicalSummary, DecisionCycleResult

__version__ = "1.0.0"
__author__ = "Trading Platform Team"
