"""
Trading Decision Engine

Runs one decision cycle: risk validation, position sizing, recommendation
assembly and multi-source decision synthesis. Only the trade history
persists between cycles.
"""

import logging
import threading
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict
from datetime import datetime

import numpy as np

from .configs import load_engine_config, get_section
from .core.exceptions import InvalidInputError
from .core.models import (
    TradeSignal, RiskRules, MarketSnapshot, PortfolioState, RiskMetrics, TradeRecord,
    TradeRecommendation, DecisionSynthesis, PositionSizing, load_risk_profiles
)
from .services.execution.risk_manager import (
    RiskManager, RiskMetricsTracker, RiskValidator, DEFAULT_VOLATILITY_KEYWORDS, round_half_up
)
from .services.strategy.portfolio_manager import (
    PositionSizer, AllocationOptimizer, AllocationTarget, SizingResult
)
from .services.strategy.signal_aggregator import DecisionSynthesizer


@dataclass
class TechnicalSummary:
    """Technical analysis input for one cycle."""
    buy_signals: int = 0
    sell_signals: int = 0
    confidence: Optional[float] = None


@dataclass
class DecisionCycleResult:
    """Everything produced by one decision cycle."""
    recommendation: TradeRecommendation
    sizing: SizingResult
    allocation: AllocationTarget
    synthesis: DecisionSynthesis
    alerts: List[Dict[str, str]]
    overall_confidence: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recommendation': self.recommendation.to_dict(),
            'sizing': self.sizing.to_dict(),
            'allocation': asdict(self.allocation),
            'synthesis': self.synthesis.to_dict(),
            'alerts': list(self.alerts),
            'overall_confidence': self.overall_confidence,
        }


class TradingDecisionEngine:
    """
    Risk-adjusted trading decision engine.

    Construction validates all configuration; evaluation never raises for
    rejected trades, which are reported through the recommendation.
    Cycles are expected to run sequentially; use one engine per instrument
    for concurrent evaluation.
    """

    def __init__(self, rules: Optional[RiskRules] = None, risk_profile: str = 'moderate',
                 config: Optional[Dict[str, Any]] = None, initial_portfolio_value: float = 100000.0):
        """
        Initialize the engine.

        Args:
            rules: Risk rules; built from config (or defaults) when omitted
            risk_profile: Named risk profile for portfolio-theory sizing
            config: Parsed engine configuration
            initial_portfolio_value: Starting value for drawdown tracking
        """
        self.config = config or {}
        self.logger = logging.getLogger(f"{__name__}.TradingDecisionEngine")
        self.config_lock = threading.Lock()

        self.risk_profiles = load_risk_profiles(self.config.get('risk_profiles'))
        self.tracker = RiskMetricsTracker(initial_portfolio_value)
        self._build_components(rules or RiskRules.from_config(get_section(self.config, 'risk_rules')), risk_profile)

        self.logger.info(
            f"Decision engine initialized (profile: {risk_profile}, "
            f"max position: {self.rules.max_position_fraction:.1%})"
        )

    @classmethod
    def from_config(cls, config_path: Optional[str] = None) -> "TradingDecisionEngine":
        """Build an engine from a YAML configuration file."""
        config = load_engine_config(config_path)
        engine_section = get_section(config, 'engine')
        return cls(
            config=config,
            risk_profile=engine_section.get('risk_profile', 'moderate'),
            initial_portfolio_value=float(engine_section.get('initial_portfolio_value', 100000.0))
        )

    def _build_components(self, rules: RiskRules, risk_profile: str) -> None:
        keywords = get_section(self.config, 'market_volatility').get('keywords', DEFAULT_VOLATILITY_KEYWORDS)

        validator = RiskValidator(rules, keywords)
        sizer = PositionSizer(
            rules,
            validator=validator,
            risk_profile=risk_profile,
            risk_profiles=self.risk_profiles,
            config=get_section(self.config, 'position_sizing')
        )
        optimizer = AllocationOptimizer(get_section(self.config, 'allocation'))
        synthesizer = DecisionSynthesizer(rules, get_section(self.config, 'decision_synthesis'))

        # Swap only after every component validated
        self.rules = rules
        self.risk_profile = risk_profile
        self.validator = validator
        self.risk_manager = RiskManager(rules, self.tracker, validator)
        self.position_sizer = sizer
        self.allocation_optimizer = optimizer
        self.synthesizer = synthesizer

    def reconfigure(self, rules: Optional[RiskRules] = None, risk_profile: Optional[str] = None) -> None:
        """
        Replace risk rules and/or risk profile.

        The trade history is kept. Hosts must not call this while an
        evaluation is in flight.
        """
        with self.config_lock:
            self._build_components(rules or self.rules, risk_profile or self.risk_profile)
        self.logger.info(f"Decision engine reconfigured (profile: {self.risk_profile})")

    def evaluate(self, signal, confidence: int, snapshot: MarketSnapshot, portfolio: PortfolioState,
                 technical: Optional[TechnicalSummary] = None,
                 current_allocation: Optional[float] = None) -> DecisionCycleResult:
        """
        Run one decision cycle.

        Args:
            signal: Trade signal or its label
            confidence: Signal confidence (1-10)
            snapshot: Current market snapshot
            portfolio: Current portfolio state
            technical: Technical analysis summary; a neutral opinion is used when omitted
            current_allocation: Current asset weight; derived from the portfolio when omitted

        Returns:
            Decision cycle result

        Raises:
            InvalidInputError: If the signal label or confidence is malformed
        """
        signal = TradeSignal.parse(signal)
        if isinstance(confidence, bool) or not isinstance(confidence, int) or not 1 <= confidence <= 10:
            raise InvalidInputError(f"Confidence must be an integer in [1, 10], got {confidence!r}")

        with self.config_lock:
            metrics = self.tracker.get_metrics()
            portfolio_value = portfolio.total_value

            validation = self.validator.validate_trade(signal, confidence, snapshot, metrics, portfolio)
            sizing = self.position_sizer.size(signal, confidence, snapshot, metrics, portfolio_value)

            recommendation = self.risk_manager.generate_trade_recommendation(
                signal, confidence, snapshot, portfolio,
                sizing=PositionSizing(
                    fraction=sizing.fraction,
                    notional_amount=sizing.notional_amount,
                    shares=sizing.shares,
                    rationale=sizing.rationale
                ),
                validation=validation
            )

            if current_allocation is None:
                current_allocation = portfolio.position_value / portfolio_value if portfolio_value > 0 else 0.0
            allocation = self.allocation_optimizer.optimize_allocation(
                signal, confidence, validation, current_allocation
            )

            technical = technical or TechnicalSummary()
            opinions = [
                self.synthesizer.technical_opinion(technical.buy_signals, technical.sell_signals, technical.confidence),
                self.synthesizer.ai_opinion(signal, confidence),
                self.synthesizer.risk_opinion(recommendation),
            ]
            synthesis = self.synthesizer.synthesize(
                opinions, entry_price=snapshot.price, notional_amount=sizing.notional_amount
            )

            alerts = self.synthesizer.generate_alerts(signal, confidence, recommendation, allocation)
            overall_confidence = self.calculate_overall_confidence(
                opinions[0].confidence, confidence, recommendation, sizing.confidence
            )

        self.logger.info(
            f"Cycle complete: {signal.value} -> {synthesis.action.value} "
            f"({synthesis.consensus.value}, risk {recommendation.risk_score}/10)"
        )

        return DecisionCycleResult(
            recommendation=recommendation,
            sizing=sizing,
            allocation=allocation,
            synthesis=synthesis,
            alerts=alerts,
            overall_confidence=overall_confidence
        )

    @staticmethod
    def calculate_overall_confidence(technical_confidence: float, signal_confidence: int,
                                     recommendation: TradeRecommendation, sizing_confidence: int) -> int:
        """Cross-source confidence (10-100), penalised by disagreement."""
        risk_confidence = 100 - recommendation.risk_score * 10 if recommendation.validated else 20
        confidences = np.array([
            technical_confidence,
            signal_confidence * 10,
            risk_confidence,
            sizing_confidence * 10,
        ], dtype=float)

        variance_penalty = float(np.std(confidences)) / 10
        score = round_half_up(float(confidences.mean()) - variance_penalty, 0)
        return int(max(10, min(100, score)))

    def record_trade_outcome(self, pnl: float, executed: bool = True, timestamp: Optional[datetime] = None,
                             recommendation: Optional[TradeRecommendation] = None,
                             trade_id: Optional[str] = None) -> RiskMetrics:
        """Record an executed trade's P&L and return the updated metrics."""
        self.risk_manager.record_trade(pnl, executed, timestamp, recommendation, trade_id)
        return self.tracker.get_metrics()

    def record_trades(self, trades: List[TradeRecord]) -> RiskMetrics:
        for trade in trades:
            self.tracker.record_trade(trade)
        return self.tracker.get_metrics()

    def get_metrics(self) -> RiskMetrics:
        return self.tracker.get_metrics()

    def generate_risk_report(self, portfolio: Optional[PortfolioState] = None) -> Dict[str, Any]:
        return self.risk_manager.generate_risk_report(portfolio)
