"""
Portfolio Manager

Translates a validated signal into a concrete allocation by fusing several
independent position sizing methods, and derives target allocation bands
for rebalancing.
"""

import logging
from typing import Dict, Any, List, Optional, Callable, NamedTuple
from dataclasses import dataclass, field, asdict

import numpy as np

from ...core.exceptions import ConfigurationError
from ...core.models import (
    TradeSignal, RiskRules, RiskProfile, MarketSnapshot, RiskMetrics, ValidationResult,
    DEFAULT_RISK_PROFILES
)
from ..execution.risk_manager import (
    RiskValidator, calculate_rule_based_fraction, calculate_shares, clamp
)


KELLY_CAP = 0.25

# Annual return multiplier applied to the base asset return per signal
SIGNAL_RETURN_MULTIPLIERS = {
    TradeSignal.STRONG_BUY: 1.5,
    TradeSignal.BUY: 1.2,
    TradeSignal.HOLD: 1.0,
    TradeSignal.SELL: 0.8,
    TradeSignal.STRONG_SELL: 0.5,
}

DEFAULT_FUSION_WEIGHTS = {
    'rule_based': 0.3,
    'dynamic': 0.4,
    'kelly': 0.2,
    'mpt': 0.1,
}


@dataclass
class SizingContext:
    """Inputs shared by every sizing method for one call."""
    signal: TradeSignal
    confidence: int
    snapshot: MarketSnapshot
    metrics: RiskMetrics
    portfolio_value: float
    notes: Dict[str, Any] = field(default_factory=dict)


class SizingMethod(NamedTuple):
    """Entry in the fusion table."""
    name: str
    weight: float
    estimator: Callable[[SizingContext], float]


@dataclass
class SizingResult:
    """Fused position size with the per-method breakdown."""
    fraction: float
    notional_amount: float
    shares: int
    confidence: int
    estimates: Dict[str, float]
    weights: Dict[str, float]
    kelly_variants: Dict[str, float]
    multipliers: Dict[str, Any]
    rationale: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AllocationTarget:
    """Target allocation band for the traded asset."""
    target: float
    cash: float
    current: float
    rebalance_needed: bool


class PositionSizer:
    """
    Implements position sizing algorithms.

    Four estimators produce a fraction of portfolio value each; the fusion
    table weights them into one recommended allocation.
    """

    def __init__(self, rules: RiskRules, validator: Optional[RiskValidator] = None,
                 risk_profile: str = 'moderate', risk_profiles: Optional[Dict[str, RiskProfile]] = None,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize position sizer.

        Args:
            rules: Risk rules
            validator: Validator used for market volatility scoring
            risk_profile: Name of the risk profile for the portfolio-theory weight
            risk_profiles: Risk profile table
            config: position_sizing configuration section
        """
        self.rules = rules
        self.validator = validator or RiskValidator(rules)
        self.config = config or {}
        self.logger = logging.getLogger(f"{__name__}.PositionSizer")

        profiles = risk_profiles if risk_profiles is not None else DEFAULT_RISK_PROFILES
        if risk_profile not in profiles:
            raise ConfigurationError(
                f"Unknown risk profile '{risk_profile}', expected one of {sorted(profiles)}"
            )
        self.risk_profile = profiles[risk_profile]

        self.kelly_source = self.config.get('kelly_source', 'fixed')
        if self.kelly_source not in ('fixed', 'historical'):
            raise ConfigurationError(f"kelly_source must be 'fixed' or 'historical', got {self.kelly_source!r}")

        self.kelly_average_win = float(self.config.get('kelly_average_win', 0.06))
        self.kelly_average_loss = float(self.config.get('kelly_average_loss', 0.03))
        self.asset_volatility = float(self.config.get('asset_volatility', 0.20))
        self.risk_free_rate = float(self.config.get('risk_free_rate', 0.02))
        self.base_annual_return = float(self.config.get('base_annual_return', 0.10))
        self.min_allocation = float(self.config.get('min_allocation', 0.0))
        self._last_kelly_discrepancy = None

        if self.asset_volatility <= 0:
            raise ConfigurationError("asset_volatility must be positive")

        weights = self.config.get('fusion_weights') or DEFAULT_FUSION_WEIGHTS
        estimators = {
            'rule_based': self._rule_based_estimate,
            'dynamic': self._dynamic_estimate,
            'kelly': self._kelly_estimate,
            'mpt': self._mpt_estimate,
        }
        self.methods: List[SizingMethod] = []
        for name, weight in weights.items():
            if name not in estimators:
                raise ConfigurationError(f"Unknown sizing method '{name}'")
            self.register_method(SizingMethod(name, float(weight), estimators[name]))

    def register_method(self, method: SizingMethod) -> None:
        """Add a sizing method to the fusion table."""
        if method.weight < 0:
            raise ConfigurationError(f"Sizing method '{method.name}' has a negative weight")
        if any(m.name == method.name for m in self.methods):
            raise ConfigurationError(f"Sizing method '{method.name}' already registered")
        self.methods.append(method)

    def size(self, signal: TradeSignal, confidence: int, snapshot: MarketSnapshot,
             metrics: RiskMetrics, portfolio_value: float) -> SizingResult:
        """
        Calculate the fused position size.

        Args:
            signal: Trade signal
            confidence: Signal confidence (1-10)
            snapshot: Current market snapshot
            metrics: Current risk metrics
            portfolio_value: Total portfolio value

        Returns:
            Sizing result
        """
        context = SizingContext(signal, confidence, snapshot, metrics, portfolio_value)

        estimates = {}
        for method in self.methods:
            estimates[method.name] = max(0.0, float(method.estimator(context)))

        weights = {method.name: method.weight for method in self.methods}
        total_weight = sum(weights.values())
        if total_weight > 0:
            fraction = sum(estimates[name] * weight for name, weight in weights.items()) / total_weight
        else:
            fraction = 0.0

        notional = portfolio_value * fraction
        confidence_score = self.calculate_recommendation_confidence(list(estimates.values()))

        kelly_variants = context.notes.get('kelly_variants') or self._kelly_variants(context)

        rationale = 'Synthesized from: ' + ', '.join(
            f"{name} ({estimates[name] * 100:.1f}% x {weights[name]:.2f})" for name in estimates
        )

        self.logger.debug(f"Sized {signal.value}: fraction={fraction:.4f}, estimates={estimates}")

        return SizingResult(
            fraction=fraction,
            notional_amount=notional,
            shares=calculate_shares(notional, snapshot.price),
            confidence=confidence_score,
            estimates=estimates,
            weights=weights,
            kelly_variants=kelly_variants,
            multipliers=context.notes.get('multipliers', {}),
            rationale=rationale
        )

    @staticmethod
    def calculate_recommendation_confidence(estimates: List[float]) -> int:
        """Lower spread between methods means higher confidence (1-10)."""
        if not estimates:
            return 1
        standard_deviation = float(np.std(estimates))
        return int(round(max(1.0, 10 - standard_deviation * 50)))

    def _rule_based_estimate(self, context: SizingContext) -> float:
        fraction, rationale = calculate_rule_based_fraction(
            self.rules, context.signal, context.confidence, context.metrics.consecutive_losses
        )
        context.notes['rule_based_rationale'] = rationale
        return fraction

    def _kelly_estimate(self, context: SizingContext) -> float:
        variants = self._kelly_variants(context)
        context.notes['kelly_variants'] = variants
        return variants[self.kelly_source]

    def _kelly_variants(self, context: SizingContext) -> Dict[str, float]:
        metrics = context.metrics
        fixed = self.calculate_kelly_fraction(
            metrics.win_rate, self.kelly_average_win, self.kelly_average_loss, context.confidence
        )
        historical = self.calculate_kelly_fraction(
            metrics.win_rate, metrics.average_win, metrics.average_loss, context.confidence
        )
        discrepancy = (round(fixed, 6), round(historical, 6))
        if abs(fixed - historical) > 1e-9 and discrepancy != self._last_kelly_discrepancy:
            # Once per distinct pair of values
            self.logger.warning(
                f"Kelly inputs disagree: fixed constants give {fixed:.4f}, "
                f"trade history gives {historical:.4f} (using {self.kelly_source})"
            )
        self._last_kelly_discrepancy = discrepancy
        return {'fixed': fixed, 'historical': historical}

    @staticmethod
    def calculate_kelly_fraction(win_rate: float, avg_win: float, avg_loss: float, confidence: int) -> float:
        """
        Apply Kelly Criterion for position sizing.

        Args:
            win_rate: Historical win rate (0.0 to 1.0)
            avg_win: Average winning trade size
            avg_loss: Average losing trade size (positive)
            confidence: Signal confidence (1-10)

        Returns:
            Kelly fraction capped at 25%
        """
        if win_rate <= 0 or avg_loss <= 0 or avg_win <= 0:
            return 0.0

        # Kelly formula: f = (bp - q) / b
        b = avg_win / avg_loss
        p = win_rate
        q = 1 - win_rate

        kelly_fraction = (b * p - q) / b
        kelly_fraction *= confidence / 10

        return clamp(kelly_fraction, 0.0, KELLY_CAP)

    def estimate_asset_return(self, signal: TradeSignal, confidence: int) -> float:
        """Expected annual return implied by the signal."""
        return self.base_annual_return * SIGNAL_RETURN_MULTIPLIERS[signal] * (confidence / 10)

    def _mpt_estimate(self, context: SizingContext) -> float:
        expected_return = self.estimate_asset_return(context.signal, context.confidence)
        excess_return = expected_return - self.risk_free_rate
        optimal_weight = min(
            self.rules.max_position_fraction,
            (self.risk_profile.risk_tolerance / (self.asset_volatility ** 2)) * excess_return
        )
        return max(self.min_allocation, optimal_weight)

    def _dynamic_estimate(self, context: SizingContext) -> float:
        base_fraction = self._rule_based_estimate(context)
        snapshot = context.snapshot

        regime_type, regime_multiplier = self.detect_market_regime(snapshot)
        volatility_multiplier = self.calculate_volatility_multiplier(
            self.validator.assess_market_volatility(snapshot)
        )
        momentum_multiplier = self.calculate_momentum_multiplier(context.signal, snapshot)
        heat_multiplier = self.calculate_portfolio_heat_multiplier(context.metrics)

        context.notes['multipliers'] = {
            'regime': regime_type,
            'regime_multiplier': regime_multiplier,
            'volatility_multiplier': volatility_multiplier,
            'momentum_multiplier': momentum_multiplier,
            'heat_multiplier': heat_multiplier,
        }

        fraction = base_fraction * regime_multiplier * volatility_multiplier * momentum_multiplier * heat_multiplier
        return clamp(fraction, 0.0, self.rules.max_overall_exposure_fraction)

    @staticmethod
    def calculate_sentiment_mix(snapshot: MarketSnapshot) -> Dict[str, float]:
        ratio = snapshot.bullish_ratio
        if ratio is None:
            return {'dominant': 0.5, 'divergence': 0.0}
        return {
            'dominant': max(ratio, 1 - ratio),
            'divergence': abs(ratio - 0.5) * 2,
        }

    def detect_market_regime(self, snapshot: MarketSnapshot):
        """
        Classify the market regime.

        Returns:
            Tuple of (regime type, size multiplier)
        """
        mix = self.calculate_sentiment_mix(snapshot)

        if snapshot.total_news > 20 or mix['divergence'] > 0.8:
            return 'high_volatility', 0.6
        if mix['dominant'] > 0.7:
            return 'trending', 1.2
        if mix['divergence'] > 0.6:
            return 'sideways', 0.8
        return 'normal', 1.0

    @staticmethod
    def calculate_volatility_multiplier(volatility_score: float) -> float:
        if volatility_score >= 8:
            return 0.5
        if volatility_score >= 6:
            return 0.7
        if volatility_score >= 4:
            return 0.9
        return 1.0

    def calculate_momentum_multiplier(self, signal: TradeSignal, snapshot: MarketSnapshot) -> float:
        """Boost only when the dominant sentiment points the same way as the signal."""
        ratio = snapshot.bullish_ratio
        if ratio is not None:
            if signal.is_buy and ratio > 0.7:
                return 1.2
            if signal.is_sell and ratio < 0.3:
                return 1.2

        mix = self.calculate_sentiment_mix(snapshot)
        if signal.is_buy and mix['divergence'] < 0.3:
            return 0.8
        return 1.0

    @staticmethod
    def calculate_portfolio_heat_multiplier(metrics: RiskMetrics) -> float:
        """Throttle size during drawdowns and losing streaks; always in [0, 1]."""
        drawdown = metrics.current_drawdown
        if drawdown > 0.15:
            drawdown_factor = 0.5
        elif drawdown > 0.10:
            drawdown_factor = 0.7
        elif drawdown > 0.05:
            drawdown_factor = 0.9
        else:
            drawdown_factor = 1.0

        losses = metrics.consecutive_losses
        if losses >= 3:
            loss_factor = 0.6
        elif losses >= 2:
            loss_factor = 0.8
        else:
            loss_factor = 1.0

        return drawdown_factor * loss_factor


class AllocationOptimizer:
    """Derives target allocation bands and rebalance decisions."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize allocation optimizer.

        Args:
            config: allocation configuration section
        """
        config = config or {}
        self.target = float(config.get('target', 0.15))
        self.min_allocation = float(config.get('min', 0.0))
        self.max_allocation = float(config.get('max', 0.25))
        self.rebalance_threshold = float(config.get('rebalance_threshold', 0.05))
        self.logger = logging.getLogger(f"{__name__}.AllocationOptimizer")

        if not 0 <= self.min_allocation <= self.max_allocation <= 1:
            raise ConfigurationError("allocation bounds must satisfy 0 <= min <= max <= 1")

    def optimize_allocation(self, signal: TradeSignal, confidence: int, validation: ValidationResult,
                            current_allocation: float = 0.0) -> AllocationTarget:
        """
        Target allocation for the traded asset.

        Args:
            signal: Trade signal
            confidence: Signal confidence (1-10)
            validation: Risk validation for the same signal
            current_allocation: Current asset weight in the portfolio

        Returns:
            Allocation target
        """
        target = self.target

        if validation.allowed and validation.risk_score <= 5:
            if signal is TradeSignal.STRONG_BUY:
                target = min(self.max_allocation, 0.25)
            elif signal is TradeSignal.BUY:
                target = min(self.max_allocation, 0.20)
            elif signal is TradeSignal.STRONG_SELL:
                target = max(self.min_allocation, 0.05)
            elif signal is TradeSignal.SELL:
                target = max(self.min_allocation, 0.10)

        # +/- 2% per confidence point around 7
        target = clamp(target + (confidence - 7) * 0.02, self.min_allocation, self.max_allocation)

        if validation.volatility_score > 7:
            target *= 0.8

        rebalance_needed = abs(target - current_allocation) > self.rebalance_threshold
        if rebalance_needed:
            self.logger.info(f"Rebalance needed: current {current_allocation:.1%}, target {target:.1%}")

        return AllocationTarget(
            target=target,
            cash=1 - target,
            current=current_allocation,
            rebalance_needed=rebalance_needed
        )
