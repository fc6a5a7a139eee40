"""
Decision Engine Data Model

Value objects exchanged between the risk, sizing and synthesis services
and the external collaborators that feed and consume them.
"""

from typing import Dict, Any, List, Optional, Tuple
from datetime import datetime, timezone, timedelta
from dataclasses import dataclass, field, asdict
from enum import Enum

from .exceptions import ConfigurationError, InvalidInputError


class Action(Enum):
    """Canonical decision buckets used for voting."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    AVOID = "AVOID"

    @classmethod
    def from_label(cls, label) -> "Action":
        """
        Map a source-specific label onto a decision bucket.

        Args:
            label: Signal, action or risk-recommendation label

        Returns:
            Matching Action

        Raises:
            InvalidInputError: If the label has no mapping
        """
        if isinstance(label, Action):
            return label
        if isinstance(label, TradeSignal):
            return label.action

        normalized = _normalize_label(label)
        try:
            return _ACTION_LABELS[normalized]
        except KeyError:
            raise InvalidInputError(f"Unknown action label: {label!r}") from None


class TradeSignal(Enum):
    """Directional trading signal."""
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"

    @classmethod
    def parse(cls, label) -> "TradeSignal":
        """Parse a signal label such as 'strong buy' or 'STRONG_BUY'."""
        if isinstance(label, TradeSignal):
            return label
        try:
            return cls(_normalize_label(label))
        except ValueError:
            raise InvalidInputError(f"Unknown trade signal: {label!r}") from None

    @property
    def is_buy(self) -> bool:
        return self in (TradeSignal.STRONG_BUY, TradeSignal.BUY)

    @property
    def is_sell(self) -> bool:
        return self in (TradeSignal.STRONG_SELL, TradeSignal.SELL)

    @property
    def is_strong(self) -> bool:
        return self in (TradeSignal.STRONG_BUY, TradeSignal.STRONG_SELL)

    @property
    def action(self) -> Action:
        if self.is_buy:
            return Action.BUY
        if self.is_sell:
            return Action.SELL
        return Action.HOLD


def _normalize_label(label) -> str:
    if not isinstance(label, str):
        raise InvalidInputError(f"Label must be a string, got {type(label).__name__}")
    return '_'.join(label.strip().upper().replace('-', ' ').split())


_ACTION_LABELS = {
    'STRONG_BUY': Action.BUY,
    'BUY': Action.BUY,
    'STRONG_SELL': Action.SELL,
    'SELL': Action.SELL,
    'HOLD': Action.HOLD,
    'CAUTION': Action.HOLD,
    'AVOID': Action.AVOID,
}


class Consensus(Enum):
    """Agreement level among opinion sources."""
    UNANIMOUS = "UNANIMOUS"
    MAJORITY = "MAJORITY"
    DIVIDED = "DIVIDED"


@dataclass(frozen=True)
class RiskRules:
    """Immutable risk configuration supplied at engine construction."""
    max_position_fraction: float = 0.10
    max_daily_loss_fraction: float = 0.02
    max_overall_exposure_fraction: float = 0.20
    min_confidence_for_trade: int = 6
    stop_loss_fraction: float = 0.03
    take_profit_fraction: float = 0.06
    max_consecutive_losses: int = 3
    position_timeout: timedelta = timedelta(hours=24)

    def __post_init__(self):
        for name in ('max_position_fraction', 'max_daily_loss_fraction', 'max_overall_exposure_fraction'):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ConfigurationError(f"{name} must be in (0, 1], got {value}")

        if not _is_int(self.min_confidence_for_trade) or not 1 <= self.min_confidence_for_trade <= 10:
            raise ConfigurationError(
                f"min_confidence_for_trade must be an integer in [1, 10], got {self.min_confidence_for_trade}"
            )

        if not 0 < self.stop_loss_fraction < 1:
            raise ConfigurationError(f"stop_loss_fraction must be in (0, 1), got {self.stop_loss_fraction}")

        if self.take_profit_fraction <= 0:
            raise ConfigurationError(f"take_profit_fraction must be positive, got {self.take_profit_fraction}")

        if not _is_int(self.max_consecutive_losses) or self.max_consecutive_losses < 1:
            raise ConfigurationError(
                f"max_consecutive_losses must be a positive integer, got {self.max_consecutive_losses}"
            )

        if not isinstance(self.position_timeout, timedelta) or self.position_timeout <= timedelta(0):
            raise ConfigurationError(f"position_timeout must be a positive timedelta, got {self.position_timeout}")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RiskRules":
        """
        Build rules from the risk_rules configuration section.

        Args:
            config: Mapping with the RiskRules field names; the timeout is
                    given as position_timeout_hours

        Returns:
            Validated risk rules
        """
        defaults = cls()
        try:
            return cls(
                max_position_fraction=float(config.get('max_position_fraction', defaults.max_position_fraction)),
                max_daily_loss_fraction=float(config.get('max_daily_loss_fraction', defaults.max_daily_loss_fraction)),
                max_overall_exposure_fraction=float(
                    config.get('max_overall_exposure_fraction', defaults.max_overall_exposure_fraction)
                ),
                min_confidence_for_trade=config.get('min_confidence_for_trade', defaults.min_confidence_for_trade),
                stop_loss_fraction=float(config.get('stop_loss_fraction', defaults.stop_loss_fraction)),
                take_profit_fraction=float(config.get('take_profit_fraction', defaults.take_profit_fraction)),
                max_consecutive_losses=config.get('max_consecutive_losses', defaults.max_consecutive_losses),
                position_timeout=timedelta(
                    hours=float(config.get('position_timeout_hours', defaults.position_timeout.total_seconds() / 3600))
                ),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid risk_rules configuration: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['position_timeout'] = self.position_timeout.total_seconds()
        return data


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class RiskProfile:
    """Named risk appetite used by the portfolio-theory estimator."""
    name: str
    risk_tolerance: float
    return_target: float

    def __post_init__(self):
        if self.risk_tolerance <= 0:
            raise ConfigurationError(f"Risk profile {self.name}: risk_tolerance must be positive")


DEFAULT_RISK_PROFILES: Dict[str, RiskProfile] = {
    'conservative': RiskProfile('conservative', 0.05, 0.08),
    'moderate': RiskProfile('moderate', 0.10, 0.12),
    'aggressive': RiskProfile('aggressive', 0.20, 0.18),
}


def load_risk_profiles(config: Optional[Dict[str, Any]]) -> Dict[str, RiskProfile]:
    """Build the risk profile table from configuration, falling back to defaults."""
    if not config:
        return dict(DEFAULT_RISK_PROFILES)

    profiles = {}
    for name, values in config.items():
        try:
            profiles[name] = RiskProfile(
                name=name,
                risk_tolerance=float(values['risk_tolerance']),
                return_target=float(values['return_target']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid risk profile '{name}': {e}") from e
    return profiles


@dataclass(frozen=True)
class MarketSnapshot:
    """Market state for one analysis cycle."""
    price: float
    price_change: float = 0.0
    total_news: int = 0
    bullish_news: int = 0
    bearish_news: int = 0
    headlines: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.price <= 0:
            raise InvalidInputError(f"Price must be positive, got {self.price}")
        for name in ('total_news', 'bullish_news', 'bearish_news'):
            if getattr(self, name) < 0:
                raise InvalidInputError(f"{name} cannot be negative")
        # Accept any iterable of headlines
        object.__setattr__(self, 'headlines', tuple(self.headlines))

    @property
    def headline_text(self) -> str:
        return ' '.join(headline.lower() for headline in self.headlines)

    @property
    def sentiment_total(self) -> int:
        return self.bullish_news + self.bearish_news

    @property
    def bullish_ratio(self) -> Optional[float]:
        total = self.sentiment_total
        if total == 0:
            return None
        return self.bullish_news / total


@dataclass(frozen=True)
class PortfolioState:
    """Caller-owned portfolio snapshot; never mutated by the engine."""
    cash_balance: float
    position_value: float = 0.0
    realized_pnl: float = 0.0
    daily_pnl: float = 0.0

    @property
    def total_value(self) -> float:
        return self.cash_balance + self.position_value


@dataclass(frozen=True)
class TradeRecord:
    """Outcome of a trade recorded into the risk metrics history."""
    pnl: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    executed: bool = True
    signal: Optional[str] = None
    confidence: Optional[int] = None
    notional_amount: Optional[float] = None
    trade_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


@dataclass
class RiskMetrics:
    """Trade-outcome statistics derived from the trade history."""
    win_rate: float = 0.0
    profit_factor: float = 0.0
    current_drawdown: float = 0.0
    max_drawdown: float = 0.0
    consecutive_losses: int = 0
    total_trades: int = 0
    executed_trades: int = 0
    average_win: float = 0.0
    average_loss: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationResult:
    """Outcome of the pre-trade risk rules."""
    allowed: bool
    violations: List[str]
    risk_score: float
    volatility_score: int
    sentiment_risk_score: int


@dataclass
class PositionSizing:
    """Recommended allocation for a trade."""
    fraction: float
    notional_amount: float
    shares: int
    rationale: str


@dataclass
class RiskLevels:
    """Stop-loss and take-profit levels around an entry price."""
    entry_price: float
    stop_loss: float
    take_profit: float
    reward_to_risk_ratio: float


@dataclass
class FinalAction:
    """Action label with reasoning and priority."""
    action: str  # 'EXECUTE', 'CONSIDER', 'CAUTION', 'AVOID'
    reasoning: str
    priority: str


@dataclass
class TradeRecommendation:
    """Validated or rejected trade recommendation."""
    signal: str
    confidence: int
    validated: bool
    violations: List[str]
    risk_score: float
    market_conditions: Dict[str, float]
    position_sizing: PositionSizing
    risk_levels: Optional[RiskLevels]
    final_action: FinalAction
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeRecommendation":
        risk_levels = data.get('risk_levels')
        return cls(
            signal=data['signal'],
            confidence=data['confidence'],
            validated=data['validated'],
            violations=list(data['violations']),
            risk_score=data['risk_score'],
            market_conditions=dict(data['market_conditions']),
            position_sizing=PositionSizing(**data['position_sizing']),
            risk_levels=RiskLevels(**risk_levels) if risk_levels else None,
            final_action=FinalAction(**data['final_action']),
            timestamp=datetime.fromisoformat(data['timestamp']),
        )


@dataclass(frozen=True)
class Opinion:
    """One source's vote in the decision synthesis."""
    source: str
    action: Action
    weight: float
    confidence: float

    def __post_init__(self):
        if not isinstance(self.action, Action):
            raise InvalidInputError(f"Opinion action must be an Action, got {self.action!r}")
        if not 0 <= self.weight <= 1:
            raise InvalidInputError(f"Opinion weight must be in [0, 1], got {self.weight}")
        if not 0 <= self.confidence <= 100:
            raise InvalidInputError(f"Opinion confidence must be in [0, 100], got {self.confidence}")

    @classmethod
    def create(cls, source: str, label, weight: float, confidence: float) -> "Opinion":
        """Create an opinion from any source-specific action label."""
        return cls(source=source, action=Action.from_label(label), weight=weight, confidence=confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'action': self.action.value,
            'weight': self.weight,
            'confidence': self.confidence,
        }


@dataclass
class ExecutionPlan:
    """Entry, stop and target for an execution-worthy decision."""
    action: str
    entry_price: float
    stop_loss: float
    take_profit: float
    notional_amount: Optional[float]
    execution_type: str  # 'MARKET' or 'LIMIT'
    notes: str


@dataclass
class DecisionSynthesis:
    """Single action synthesized from several opinion sources."""
    opinions: List[Opinion]
    action: Action
    confidence: int
    consensus: Consensus
    scores: Dict[str, float]
    reasoning: str
    execution_plan: Optional[ExecutionPlan] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'opinions': [opinion.to_dict() for opinion in self.opinions],
            'action': self.action.value,
            'confidence': self.confidence,
            'consensus': self.consensus.value,
            'scores': dict(self.scores),
            'reasoning': self.reasoning,
            'execution_plan': asdict(self.execution_plan) if self.execution_plan else None,
        }
