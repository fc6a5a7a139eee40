"""
Risk Manager

Pre-trade risk validation for AI-derived signals: tracks trade-outcome
statistics, scores market volatility and sentiment risk, and assembles
the final trade recommendation with stop-loss and take-profit levels.
"""

import logging
import threading
from typing import Dict, Any, List, Optional, Iterable, Sequence, Tuple
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from ...core.models import (
    TradeSignal, RiskRules, MarketSnapshot, PortfolioState, TradeRecord, RiskMetrics,
    ValidationResult, PositionSizing, RiskLevels, FinalAction, TradeRecommendation
)


DEFAULT_VOLATILITY_KEYWORDS = ('fed', 'interest rate', 'inflation', 'crisis', 'emergency', 'war', 'election')

MAX_VOLATILITY_SCORE = 8
MAX_SENTIMENT_RISK_SCORE = 7


def round_half_up(value: float, places: int) -> float:
    """Round like a trader's calculator rather than banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def calculate_rule_based_fraction(rules: RiskRules, signal: TradeSignal, confidence: int,
                                  consecutive_losses: int) -> Tuple[float, str]:
    """
    Rule-based position fraction.

    Args:
        rules: Risk rules
        signal: Trade signal
        confidence: Signal confidence (1-10)
        consecutive_losses: Current losing streak

    Returns:
        Tuple of (fraction of portfolio value, rationale)
    """
    base_fraction = rules.max_position_fraction
    confidence_multiplier = confidence / 10
    signal_multiplier = 1.5 if signal.is_strong else 1.0
    loss_multiplier = max(0.5, 1 - consecutive_losses * 0.1)

    fraction = base_fraction * confidence_multiplier * signal_multiplier * loss_multiplier
    fraction = clamp(fraction, 0.0, rules.max_overall_exposure_fraction)

    rationale = (
        f"Base: {base_fraction * 100:.1f}%, Confidence: {confidence_multiplier * 100:.1f}%, "
        f"Signal: {signal_multiplier * 100:.1f}%, Loss adj: {loss_multiplier * 100:.1f}%"
    )
    return fraction, rationale


def calculate_shares(notional_amount: float, price: float) -> int:
    """Whole units affordable with the notional amount."""
    if price <= 0 or notional_amount <= 0:
        return 0
    return int(Decimal(str(notional_amount)) // Decimal(str(price)))


class RiskMetricsTracker:
    """
    Running trade-outcome statistics.

    Metrics are recomputed from the append-only trade history on every
    recorded trade, so the same history always yields the same metrics.
    Trades are evaluated in timestamp order whatever order they arrive in.
    """

    def __init__(self, initial_portfolio_value: float = 100000.0):
        """
        Initialize the tracker.

        Args:
            initial_portfolio_value: Portfolio value the drawdown walk starts from
        """
        self.initial_portfolio_value = float(initial_portfolio_value)
        self._history: List[TradeRecord] = []
        self._metrics = RiskMetrics()

        self.lock = threading.Lock()
        self.logger = logging.getLogger(f"{__name__}.RiskMetricsTracker")

    @classmethod
    def replay(cls, trades: Iterable[TradeRecord],
               initial_portfolio_value: float = 100000.0) -> "RiskMetricsTracker":
        """Rebuild a tracker from a recorded trade history."""
        tracker = cls(initial_portfolio_value)
        with tracker.lock:
            tracker._history.extend(trades)
            tracker._metrics = tracker._compute_metrics(tracker._history)
        return tracker

    @property
    def history(self) -> Tuple[TradeRecord, ...]:
        with self.lock:
            return tuple(self._history)

    def record_trade(self, trade: TradeRecord) -> RiskMetrics:
        """
        Append a trade outcome and recompute metrics.

        Args:
            trade: Trade outcome

        Returns:
            Copy of the updated metrics
        """
        with self.lock:
            self._history.append(trade)
            self._metrics = self._compute_metrics(self._history)
            metrics = RiskMetrics(**self._metrics.to_dict())

        self.logger.debug(
            f"Recorded trade pnl={trade.pnl:.2f}: win_rate={metrics.win_rate:.2f}, "
            f"consecutive_losses={metrics.consecutive_losses}, drawdown={metrics.current_drawdown:.3f}"
        )
        return metrics

    def get_metrics(self) -> RiskMetrics:
        """Return a read-only copy of the current metrics."""
        with self.lock:
            return RiskMetrics(**self._metrics.to_dict())

    @staticmethod
    def _chronological_key(trade: TradeRecord) -> datetime:
        # Naive timestamps are taken as UTC
        timestamp = trade.timestamp
        if timestamp.tzinfo is None:
            return timestamp.replace(tzinfo=timezone.utc)
        return timestamp

    def _compute_metrics(self, history: Sequence[TradeRecord]) -> RiskMetrics:
        # Stable sort keeps insertion order for equal timestamps
        executed = sorted((t for t in history if t.executed), key=self._chronological_key)
        metrics = RiskMetrics(total_trades=len(history), executed_trades=len(executed))

        if not executed:
            return metrics

        wins = [t.pnl for t in executed if t.pnl > 0]
        losses = [t.pnl for t in executed if t.pnl < 0]

        metrics.win_rate = len(wins) / len(executed)

        total_wins = sum(wins)
        total_losses = abs(sum(losses))
        metrics.profit_factor = total_wins / total_losses if total_losses > 0 else 0.0

        metrics.average_win = total_wins / len(wins) if wins else 0.0
        metrics.average_loss = total_losses / len(losses) if losses else 0.0

        # Trailing losing streak, most recent first
        streak = 0
        for trade in reversed(executed):
            if trade.pnl < 0:
                streak += 1
            else:
                break
        metrics.consecutive_losses = streak

        peak = self.initial_portfolio_value
        running_value = self.initial_portfolio_value
        max_drawdown = 0.0
        drawdown = 0.0
        for trade in executed:
            running_value += trade.pnl
            if running_value > peak:
                peak = running_value
            drawdown = (peak - running_value) / peak if peak > 0 else 0.0
            if drawdown > max_drawdown:
                max_drawdown = drawdown

        metrics.max_drawdown = max_drawdown
        metrics.current_drawdown = drawdown

        return metrics


class RiskValidator:
    """Applies the pre-trade risk rules and scores market risk."""

    def __init__(self, rules: RiskRules, volatility_keywords: Optional[Iterable[str]] = None):
        """
        Initialize the validator.

        Args:
            rules: Risk rules
            volatility_keywords: Headline keywords that signal event risk
        """
        self.rules = rules
        if volatility_keywords is None:
            volatility_keywords = DEFAULT_VOLATILITY_KEYWORDS
        self.volatility_keywords = tuple(k.lower() for k in volatility_keywords)
        self.logger = logging.getLogger(f"{__name__}.RiskValidator")

    def validate_trade(self, signal: TradeSignal, confidence: int, snapshot: MarketSnapshot,
                       metrics: RiskMetrics, portfolio: Optional[PortfolioState] = None) -> ValidationResult:
        """
        Decide whether a trade is permitted under the risk rules.

        Every rule is evaluated independently and may add one violation;
        the trade is allowed only when there are none.

        Args:
            signal: Trade signal
            confidence: Signal confidence (1-10)
            snapshot: Current market snapshot
            metrics: Current risk metrics
            portfolio: Portfolio state for the daily loss rule

        Returns:
            Validation result
        """
        violations = []

        if confidence < self.rules.min_confidence_for_trade:
            violations.append(f"Confidence {confidence} below minimum {self.rules.min_confidence_for_trade}")

        if portfolio is not None:
            loss_limit = self.rules.max_daily_loss_fraction * portfolio.total_value
            if portfolio.daily_pnl < -loss_limit:
                daily_pct = (portfolio.daily_pnl / portfolio.total_value * 100) if portfolio.total_value > 0 else 0.0
                violations.append(f"Daily loss limit exceeded: {daily_pct:.2f}%")

        if metrics.consecutive_losses >= self.rules.max_consecutive_losses:
            violations.append(f"Maximum consecutive losses reached: {metrics.consecutive_losses}")

        volatility_score = self.assess_market_volatility(snapshot)
        if volatility_score > MAX_VOLATILITY_SCORE:
            violations.append(f"Market volatility too high: {volatility_score}/10")

        sentiment_score = self.assess_sentiment_risk(signal, snapshot)
        if sentiment_score > MAX_SENTIMENT_RISK_SCORE:
            violations.append(f"Sentiment risk too high: {sentiment_score}/10")

        risk_score = self.calculate_overall_risk_score(confidence, volatility_score, sentiment_score)

        if violations:
            self.logger.debug(f"{signal.value} rejected: {'; '.join(violations)}")

        return ValidationResult(
            allowed=not violations,
            violations=violations,
            risk_score=risk_score,
            volatility_score=volatility_score,
            sentiment_risk_score=sentiment_score
        )

    def assess_market_volatility(self, snapshot: MarketSnapshot) -> int:
        """Score market volatility from news volume, sentiment split and headlines (1-10)."""
        score = 5

        if snapshot.total_news > 20:
            score += 2
        elif snapshot.total_news > 15:
            score += 1

        total = snapshot.sentiment_total
        if total > 0:
            # Mixed signals mean more uncertainty
            if abs(snapshot.bullish_news - snapshot.bearish_news) / total < 0.3:
                score += 2

        text = snapshot.headline_text
        score += sum(1 for keyword in self.volatility_keywords if keyword in text)

        return int(clamp(score, 1, 10))

    def assess_sentiment_risk(self, signal: TradeSignal, snapshot: MarketSnapshot) -> int:
        """Score the risk of trading against news sentiment (1-10)."""
        ratio = snapshot.bullish_ratio
        if ratio is None:
            return 5

        score = 1
        if signal.is_buy and ratio < 0.4:
            score += 3
        elif signal.is_sell and ratio > 0.6:
            score += 3

        if abs(ratio - 0.5) > 0.3:
            score += 1

        return int(clamp(score, 1, 10))

    @staticmethod
    def calculate_overall_risk_score(confidence: int, volatility_score: float, sentiment_score: float) -> float:
        confidence_risk = 10 - confidence
        return round_half_up((confidence_risk + volatility_score + sentiment_score) / 3, 1)


class RiskManager:
    """
    Risk manager producing complete trade recommendations.

    Features:
    - Pre-trade rule validation
    - Rule-based position sizing
    - Stop-loss / take-profit levels
    - Final action prioritisation
    - Risk reporting over the trade history
    """

    def __init__(self, rules: Optional[RiskRules] = None, tracker: Optional[RiskMetricsTracker] = None,
                 validator: Optional[RiskValidator] = None):
        """
        Initialize risk manager.

        Args:
            rules: Risk rules (defaults used when omitted)
            tracker: Trade-outcome tracker
            validator: Risk validator sharing the same rules
        """
        self.rules = rules or RiskRules()
        self.tracker = tracker or RiskMetricsTracker()
        self.validator = validator or RiskValidator(self.rules)
        self.logger = logging.getLogger(f"{__name__}.RiskManager")

    def calculate_position_size(self, signal: TradeSignal, confidence: int, price: float,
                                portfolio_value: float) -> PositionSizing:
        """Rule-based position size for the current losing streak."""
        metrics = self.tracker.get_metrics()
        fraction, rationale = calculate_rule_based_fraction(
            self.rules, signal, confidence, metrics.consecutive_losses
        )
        notional = portfolio_value * fraction
        return PositionSizing(
            fraction=fraction,
            notional_amount=notional,
            shares=calculate_shares(notional, price),
            rationale=rationale
        )

    def generate_risk_levels(self, entry_price: float, signal: TradeSignal) -> Optional[RiskLevels]:
        """
        Stop-loss and take-profit around the entry price.

        Returns:
            Risk levels, or None for HOLD
        """
        stop_fraction = self.rules.stop_loss_fraction
        profit_fraction = self.rules.take_profit_fraction

        if signal.is_buy:
            stop_loss = entry_price * (1 - stop_fraction)
            take_profit = entry_price * (1 + profit_fraction)
        elif signal.is_sell:
            stop_loss = entry_price * (1 + stop_fraction)
            take_profit = entry_price * (1 - profit_fraction)
        else:
            return None

        return RiskLevels(
            entry_price=entry_price,
            stop_loss=round_half_up(stop_loss, 2),
            take_profit=round_half_up(take_profit, 2),
            reward_to_risk_ratio=profit_fraction / stop_fraction
        )

    def generate_final_action(self, validation: ValidationResult, confidence: int) -> FinalAction:
        """Map validation outcome, risk score and confidence to an action."""
        risk_score = validation.risk_score

        if not validation.allowed:
            return FinalAction(
                action='AVOID',
                reasoning=f"Trade rejected: {', '.join(validation.violations)}",
                priority='HIGH RISK'
            )

        if risk_score <= 3 and confidence >= 8:
            return FinalAction('EXECUTE', 'High confidence, low risk - excellent setup', 'HIGH PRIORITY')
        if risk_score <= 5 and confidence >= 7:
            return FinalAction('CONSIDER', 'Good setup with manageable risk', 'MEDIUM PRIORITY')
        if risk_score <= 7 and confidence >= 6:
            return FinalAction('CAUTION', 'Acceptable but monitor closely', 'LOW PRIORITY')

        return FinalAction(
            action='AVOID',
            reasoning=f"Risk too high ({risk_score}/10) or confidence too low ({confidence}/10)",
            priority='HIGH RISK'
        )

    def validate_trade(self, signal: TradeSignal, confidence: int, snapshot: MarketSnapshot,
                       portfolio: Optional[PortfolioState] = None) -> ValidationResult:
        return self.validator.validate_trade(signal, confidence, snapshot, self.tracker.get_metrics(), portfolio)

    def generate_trade_recommendation(self, signal: TradeSignal, confidence: int, snapshot: MarketSnapshot,
                                      portfolio: PortfolioState, sizing: Optional[PositionSizing] = None,
                                      validation: Optional[ValidationResult] = None) -> TradeRecommendation:
        """
        Create a comprehensive trade recommendation.

        Args:
            signal: Trade signal
            confidence: Signal confidence (1-10)
            snapshot: Current market snapshot
            portfolio: Current portfolio state
            sizing: Position sizing to report; rule-based sizing when omitted
            validation: Precomputed validation for the same inputs

        Returns:
            Trade recommendation
        """
        if validation is None:
            validation = self.validate_trade(signal, confidence, snapshot, portfolio)
        if sizing is None:
            sizing = self.calculate_position_size(signal, confidence, snapshot.price, portfolio.total_value)

        recommendation = TradeRecommendation(
            signal=signal.value,
            confidence=confidence,
            validated=validation.allowed,
            violations=list(validation.violations),
            risk_score=validation.risk_score,
            market_conditions={
                'volatility': validation.volatility_score,
                'sentiment_risk': validation.sentiment_risk_score,
                'price': snapshot.price
            },
            position_sizing=sizing,
            risk_levels=self.generate_risk_levels(snapshot.price, signal),
            final_action=self.generate_final_action(validation, confidence)
        )

        if not recommendation.validated:
            self.logger.warning(f"Rejected {signal.value} signal: {'; '.join(recommendation.violations)}")
        else:
            self.logger.info(
                f"{signal.value} signal validated (risk score: {recommendation.risk_score}, "
                f"action: {recommendation.final_action.action})"
            )

        return recommendation

    def record_trade(self, pnl: float, executed: bool = True, timestamp: Optional[datetime] = None,
                     recommendation: Optional[TradeRecommendation] = None,
                     trade_id: Optional[str] = None) -> TradeRecord:
        """
        Record a trade outcome, optionally tied to the recommendation it came from.

        Returns:
            The stored trade record
        """
        trade = TradeRecord(
            pnl=float(pnl),
            timestamp=timestamp or datetime.now(timezone.utc),
            executed=executed,
            signal=recommendation.signal if recommendation else None,
            confidence=recommendation.confidence if recommendation else None,
            notional_amount=recommendation.position_sizing.notional_amount if recommendation else None,
            trade_id=trade_id
        )
        self.tracker.record_trade(trade)
        return trade

    def generate_risk_report(self, portfolio: Optional[PortfolioState] = None) -> Dict[str, Any]:
        """Summarise rules, metrics, history and warnings."""
        metrics = self.tracker.get_metrics()
        history = self.tracker.history

        report = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'risk_rules': self.rules.to_dict(),
            'risk_metrics': metrics.to_dict(),
            'trading_history': {
                'total_trades': metrics.total_trades,
                'executed_trades': metrics.executed_trades,
                'recent_trades': [trade.to_dict() for trade in history[-5:]]
            },
            'recommendations': self.generate_risk_warnings(metrics)
        }
        if portfolio is not None:
            report['portfolio_value'] = portfolio.total_value
            report['daily_pnl'] = portfolio.daily_pnl

        return report

    @staticmethod
    def generate_risk_warnings(metrics: RiskMetrics) -> List[Dict[str, str]]:
        if metrics.executed_trades == 0:
            return []

        warnings = []
        if metrics.win_rate < 0.4:
            warnings.append({
                'type': 'warning',
                'message': 'Win rate below 40% - consider reducing position sizes or reviewing strategy'
            })
        if metrics.current_drawdown > 0.1:
            warnings.append({
                'type': 'alert',
                'message': 'Current drawdown exceeds 10% - consider reducing risk'
            })
        if metrics.consecutive_losses >= 2:
            warnings.append({
                'type': 'caution',
                'message': f"{metrics.consecutive_losses} consecutive losses - consider pausing trading"
            })
        if metrics.profit_factor < 1.2:
            warnings.append({
                'type': 'info',
                'message': 'Profit factor below 1.2 - review entry/exit criteria'
            })
        return warnings
