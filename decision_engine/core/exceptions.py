"""
Error classes for the decision engine.
"""


class DecisionEngineError(Exception):
    """Base error for decision engine operations."""
    pass


class ConfigurationError(DecisionEngineError):
    """Invalid risk rules, risk profile or sizing configuration."""
    pass


class InvalidInputError(DecisionEngineError, ValueError):
    """Malformed input supplied by a collaborator."""
    pass
