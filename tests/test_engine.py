"""
Integration tests for full decision cycles.
"""

import unittest
import json
import tempfile
from pathlib import Path

from decision_engine import TradingDecisionEngine
from decision_engine.engine import TechnicalSummary
from decision_engine.core.exceptions import ConfigurationError, InvalidInputError
from decision_engine.core.models import (
    Action, Consensus, RiskRules, MarketSnapshot, PortfolioState, TradeRecord, TradeRecommendation,
    PositionSizing, FinalAction
)


class TestDecisionCycle(unittest.TestCase):
    """Test evaluation cycles end to end."""

    def setUp(self):
        """Set up test fixtures."""
        self.engine = TradingDecisionEngine()
        self.snapshot = MarketSnapshot(price=2000.0, total_news=10, bullish_news=9, bearish_news=1)
        self.portfolio = PortfolioState(cash_balance=100000.0)

    def test_accepted_cycle(self):
        """Test a confident BUY in calm bullish news is executed."""
        result = self.engine.evaluate('BUY', 9, self.snapshot, self.portfolio)

        recommendation = result.recommendation
        self.assertTrue(recommendation.validated)
        self.assertEqual(recommendation.risk_score, 2.7)
        self.assertEqual(recommendation.final_action.action, 'EXECUTE')
        self.assertEqual(recommendation.position_sizing.fraction, result.sizing.fraction)

        synthesis = result.synthesis
        self.assertIs(synthesis.action, Action.BUY)
        self.assertIs(synthesis.consensus, Consensus.MAJORITY)
        self.assertEqual(synthesis.confidence, 67)
        self.assertIsNotNone(synthesis.execution_plan)
        self.assertEqual(synthesis.execution_plan.execution_type, 'LIMIT')
        self.assertEqual(synthesis.execution_plan.notional_amount, result.sizing.notional_amount)

        alert_types = [alert['type'] for alert in result.alerts]
        self.assertEqual(alert_types, ['HIGH_CONFIDENCE_SIGNAL', 'REBALANCE_NEEDED'])
        self.assertTrue(10 <= result.overall_confidence <= 100)

    def test_rejected_cycle(self):
        """Test a low-confidence signal is outvoted by the risk veto."""
        result = self.engine.evaluate('buy', 3, self.snapshot, self.portfolio)

        self.assertFalse(result.recommendation.validated)
        self.assertEqual(result.recommendation.final_action.action, 'AVOID')
        self.assertIs(result.synthesis.action, Action.AVOID)
        self.assertIs(result.synthesis.consensus, Consensus.DIVIDED)
        self.assertIsNone(result.synthesis.execution_plan)
        self.assertIn('RISK_VIOLATION', [alert['type'] for alert in result.alerts])

    def test_technical_summary(self):
        result = self.engine.evaluate(
            'BUY', 9, self.snapshot, self.portfolio, technical=TechnicalSummary(buy_signals=3, sell_signals=1)
        )

        self.assertIs(result.synthesis.consensus, Consensus.UNANIMOUS)
        self.assertIs(result.synthesis.opinions[0].action, Action.BUY)

    def test_losing_streak_blocks_trades(self):
        for _ in range(3):
            self.engine.record_trade_outcome(-100.0)

        result = self.engine.evaluate('BUY', 9, self.snapshot, self.portfolio)

        self.assertFalse(result.recommendation.validated)
        self.assertIn("Maximum consecutive losses reached: 3", result.recommendation.violations)

    def test_daily_loss_blocks_trades(self):
        portfolio = PortfolioState(cash_balance=100000.0, daily_pnl=-5000.0)

        result = self.engine.evaluate('BUY', 9, self.snapshot, portfolio)

        self.assertFalse(result.recommendation.validated)
        self.assertIn("Daily loss limit exceeded: -5.00%", result.recommendation.violations)

    def test_current_allocation_from_portfolio(self):
        portfolio = PortfolioState(cash_balance=76000.0, position_value=24000.0)

        result = self.engine.evaluate('BUY', 9, self.snapshot, portfolio)

        self.assertAlmostEqual(result.allocation.current, 0.24)
        self.assertFalse(result.allocation.rebalance_needed)

    def test_invalid_signal(self):
        with self.assertRaises(InvalidInputError):
            self.engine.evaluate('MOON', 8, self.snapshot, self.portfolio)

    def test_invalid_confidence(self):
        for confidence in (0, 11, 7.5, True):
            with self.assertRaises(InvalidInputError):
                self.engine.evaluate('BUY', confidence, self.snapshot, self.portfolio)

    def test_result_is_json_serializable(self):
        result = self.engine.evaluate('STRONG_BUY', 8, self.snapshot, self.portfolio)

        payload = json.loads(json.dumps(result.to_dict()))

        self.assertEqual(payload['synthesis']['action'], 'BUY')
        self.assertEqual(payload['recommendation']['signal'], 'STRONG_BUY')
        self.assertIn('kelly', payload['sizing']['estimates'])


class TestEngineState(unittest.TestCase):
    """Test configuration and trade history handling."""

    def setUp(self):
        """Set up test fixtures."""
        self.engine = TradingDecisionEngine()
        self.snapshot = MarketSnapshot(price=2000.0, total_news=10, bullish_news=9, bearish_news=1)
        self.portfolio = PortfolioState(cash_balance=100000.0)

    def test_from_bundled_config(self):
        engine = TradingDecisionEngine.from_config()

        self.assertEqual(engine.rules, RiskRules())
        self.assertEqual(engine.risk_profile, 'moderate')

    def test_from_config_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp, 'strict.yaml')
            path.write_text(
                "risk_rules:\n"
                "  min_confidence_for_trade: 9\n"
                "engine:\n"
                "  risk_profile: conservative\n",
                encoding='utf-8'
            )
            engine = TradingDecisionEngine.from_config(str(path))

        self.assertEqual(engine.rules.min_confidence_for_trade, 9)
        self.assertEqual(engine.position_sizer.risk_profile.name, 'conservative')

    def test_invalid_config_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp, 'broken.yaml')
            path.write_text("risk_rules:\n  stop_loss_fraction: 0\n", encoding='utf-8')
            with self.assertRaises(ConfigurationError):
                TradingDecisionEngine.from_config(str(path))

    def test_unknown_profile(self):
        with self.assertRaises(ConfigurationError):
            TradingDecisionEngine(risk_profile='reckless')

    def test_reconfigure_keeps_history(self):
        self.engine.record_trade_outcome(250.0)

        self.engine.reconfigure(rules=RiskRules(min_confidence_for_trade=10))
        result = self.engine.evaluate('BUY', 9, self.snapshot, self.portfolio)

        self.assertFalse(result.recommendation.validated)
        self.assertEqual(self.engine.get_metrics().executed_trades, 1)

    def test_failed_reconfigure_keeps_previous_setup(self):
        with self.assertRaises(ConfigurationError):
            self.engine.reconfigure(risk_profile='reckless')

        self.assertEqual(self.engine.risk_profile, 'moderate')
        self.assertEqual(self.engine.position_sizer.risk_profile.name, 'moderate')

    def test_reconfigure_profile(self):
        self.engine.reconfigure(risk_profile='aggressive')
        self.assertEqual(self.engine.position_sizer.risk_profile.name, 'aggressive')

    def test_record_trades(self):
        metrics = self.engine.record_trades([TradeRecord(pnl=100.0), TradeRecord(pnl=-50.0)])

        self.assertEqual(metrics.win_rate, 0.5)
        self.assertEqual(metrics.profit_factor, 2.0)
        self.assertEqual(self.engine.get_metrics(), metrics)

    def test_record_trade_outcome_from_recommendation(self):
        result = self.engine.evaluate('BUY', 9, self.snapshot, self.portfolio)

        self.engine.record_trade_outcome(-80.0, recommendation=result.recommendation, trade_id='T-42')

        report = self.engine.generate_risk_report(self.portfolio)
        last_trade = report['trading_history']['recent_trades'][-1]
        self.assertEqual(last_trade['trade_id'], 'T-42')
        self.assertEqual(last_trade['signal'], 'BUY')
        self.assertEqual(report['portfolio_value'], 100000.0)

    def test_overall_confidence(self):
        """Test disagreement between sources lowers overall confidence."""
        def recommendation(validated, risk_score):
            return TradeRecommendation(
                signal='BUY', confidence=5, validated=validated, violations=[], risk_score=risk_score,
                market_conditions={}, position_sizing=PositionSizing(0.0, 0.0, 0, ''),
                risk_levels=None, final_action=FinalAction('CAUTION', '', '')
            )

        agreed = TradingDecisionEngine.calculate_overall_confidence(50, 5, recommendation(True, 5.0), 5)
        disputed = TradingDecisionEngine.calculate_overall_confidence(50, 5, recommendation(False, 5.0), 5)

        self.assertEqual(agreed, 50)
        self.assertEqual(disputed, 41)


if __name__ == '__main__':
    unittest.main(verbosity=2)
