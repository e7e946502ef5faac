"""
Rule engine exceptions.
Configuration errors are never retried; the rule stays FAILED until a user fixes it.
"""


class RuleEngineError(Exception):
    """Base class for rule engine errors."""
    pass


class RuleConfigurationError(RuleEngineError):
    """Rule conditions/actions are malformed."""
    pass


class UnknownRuleTypeError(RuleConfigurationError):
    def __init__(self, rule_type):
        self.rule_type = rule_type
        super().__init__(f"Unknown rule type: {rule_type}")


class RuleAlreadyRunningError(RuleEngineError):
    def __init__(self, rule_id):
        self.rule_id = rule_id
        super().__init__(f"Rule {rule_id} is already running")
