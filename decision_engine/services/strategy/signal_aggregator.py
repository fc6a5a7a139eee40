"""
Signal Aggregator

Acts as a meta-model, combining the opinions of independent sources
(technical analysis, AI-derived signal, risk-adjusted recommendation)
into one final action by weighted voting.
"""

import logging
from typing import Dict, Any, List, Optional, Sequence

from ...core.models import (
    Action, Consensus, TradeSignal, RiskRules, Opinion, ExecutionPlan, DecisionSynthesis,
    TradeRecommendation
)
from ..execution.risk_manager import round_half_up
from .portfolio_manager import AllocationTarget


EXECUTABLE_ACTIONS = (Action.BUY, Action.SELL)


class DecisionSynthesizer:
    """
    Weighted-vote decision synthesis.

    Features:
    - Closed action buckets with explicit label mapping
    - Consensus labelling across sources
    - Execution plan for BUY/SELL outcomes
    """

    def __init__(self, rules: Optional[RiskRules] = None, config: Optional[Dict[str, Any]] = None):
        """
        Initialize decision synthesizer.

        Args:
            rules: Risk rules supplying stop-loss and take-profit fractions
            config: decision_synthesis configuration section
        """
        self.rules = rules or RiskRules()
        config = config or {}
        self.technical_weight = float(config.get('technical_weight', 0.3))
        self.ai_weight = float(config.get('ai_weight', 0.4))
        self.risk_weight = float(config.get('risk_weight', 0.3))
        self.logger = logging.getLogger(f"{__name__}.DecisionSynthesizer")

    def synthesize(self, opinions: Sequence[Opinion], entry_price: Optional[float] = None,
                   notional_amount: Optional[float] = None) -> DecisionSynthesis:
        """
        Combine opinions into one action.

        Args:
            opinions: Per-source opinions
            entry_price: Current price; required for an execution plan
            notional_amount: Position size to attach to the execution plan

        Returns:
            Decision synthesis
        """
        opinions = list(opinions)

        scores = {action.value: 0.0 for action in Action}
        for opinion in opinions:
            scores[opinion.action.value] += opinion.weight * opinion.confidence

        action = self._select_action(scores)
        confidence = self._weighted_confidence(opinions)
        consensus = self.calculate_consensus(opinions)

        reasoning = 'Weighted analysis: ' + ', '.join(
            f"{name}: {score:.1f}" for name, score in scores.items()
        )

        execution_plan = None
        if action in EXECUTABLE_ACTIONS and entry_price is not None:
            execution_plan = self.generate_execution_plan(action, confidence, entry_price, notional_amount, reasoning)

        self.logger.debug(f"Synthesized {action.value} ({consensus.value}, confidence {confidence}) from {len(opinions)} opinions")

        return DecisionSynthesis(
            opinions=opinions,
            action=action,
            confidence=confidence,
            consensus=consensus,
            scores=scores,
            reasoning=reasoning,
            execution_plan=execution_plan
        )

    @staticmethod
    def _select_action(scores: Dict[str, float]) -> Action:
        best_score = max(scores.values())
        if best_score <= 0:
            return Action.HOLD

        leaders = [name for name, score in scores.items() if score == best_score]
        if len(leaders) > 1:
            return Action.HOLD
        return Action(leaders[0])

    @staticmethod
    def _weighted_confidence(opinions: List[Opinion]) -> int:
        total_weight = sum(o.weight for o in opinions)
        if total_weight <= 0:
            return 0
        return int(round_half_up(sum(o.weight * o.confidence for o in opinions) / total_weight, 0))

    @staticmethod
    def calculate_consensus(opinions: List[Opinion]) -> Consensus:
        distinct = {o.action for o in opinions}
        if len(distinct) == 1:
            return Consensus.UNANIMOUS
        if len(distinct) == 2:
            return Consensus.MAJORITY
        return Consensus.DIVIDED

    def generate_execution_plan(self, action: Action, confidence: int, entry_price: float,
                                notional_amount: Optional[float], notes: str) -> ExecutionPlan:
        stop_fraction = self.rules.stop_loss_fraction
        profit_fraction = self.rules.take_profit_fraction

        if action is Action.BUY:
            stop_loss = entry_price * (1 - stop_fraction)
            take_profit = entry_price * (1 + profit_fraction)
        else:
            stop_loss = entry_price * (1 + stop_fraction)
            take_profit = entry_price * (1 - profit_fraction)

        return ExecutionPlan(
            action=action.value,
            entry_price=entry_price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            notional_amount=notional_amount,
            execution_type='MARKET' if confidence > 80 else 'LIMIT',
            notes=notes
        )

    def technical_opinion(self, buy_signals: int, sell_signals: int,
                          confidence: Optional[float] = None) -> Opinion:
        """Opinion from counts of bullish and bearish technical signals."""
        if confidence is None:
            confidence = 50

        if buy_signals > sell_signals:
            return Opinion('TECHNICAL', Action.BUY, self.technical_weight, confidence)
        if sell_signals > buy_signals:
            return Opinion('TECHNICAL', Action.SELL, self.technical_weight, confidence)
        return Opinion('TECHNICAL', Action.HOLD, self.technical_weight, 30)

    def ai_opinion(self, signal: TradeSignal, confidence: int) -> Opinion:
        return Opinion('AI', signal.action, self.ai_weight, confidence * 10)

    def risk_opinion(self, recommendation: TradeRecommendation) -> Opinion:
        """
        Opinion of the risk manager.

        A rejected trade votes AVOID with high conviction; otherwise the
        recommended action is mapped onto a decision bucket.
        """
        if not recommendation.validated:
            return Opinion('RISK', Action.AVOID, self.risk_weight, 90)

        final_action = recommendation.final_action.action
        if final_action in ('EXECUTE', 'CONSIDER'):
            action = TradeSignal.parse(recommendation.signal).action
        else:
            action = Action.from_label(final_action)

        confidence = max(0.0, min(100.0, 100 - recommendation.risk_score * 10))
        return Opinion('RISK', action, self.risk_weight, confidence)

    @staticmethod
    def generate_alerts(signal: TradeSignal, confidence: int, recommendation: TradeRecommendation,
                        allocation: Optional[AllocationTarget] = None) -> List[Dict[str, str]]:
        alerts = []

        if confidence >= 8:
            alerts.append({
                'type': 'HIGH_CONFIDENCE_SIGNAL',
                'message': f"High confidence {signal.value} signal ({confidence}/10)",
                'severity': 'HIGH'
            })

        if not recommendation.validated:
            alerts.append({
                'type': 'RISK_VIOLATION',
                'message': f"Trade blocked: {', '.join(recommendation.violations)}",
                'severity': 'CRITICAL'
            })

        if allocation is not None and allocation.rebalance_needed:
            alerts.append({
                'type': 'REBALANCE_NEEDED',
                'message': 'Portfolio rebalancing recommended',
                'severity': 'LOW'
            })

        return alerts
