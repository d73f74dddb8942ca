"""Domain exceptions for the compliance engine.

Evaluation paths never raise these for bad rule data or missing profile
fields (they fail closed). They are raised on the administrative write
path and by collaborators.
"""


class ComplianceEngineError(Exception):
    """Base exception for the compliance engine."""


class RuleSetValidationError(ComplianceEngineError):
    """A condition tree, outcome or deadline template is malformed."""


class DuplicateKeyError(ComplianceEngineError):
    """A rule key, template key or rule-set version is already taken."""


class RuleSetNotFoundError(ComplianceEngineError):
    """No rule set exists with the requested id."""


class RuleSetStateError(ComplianceEngineError):
    """The rule set is not in a state that allows the requested change."""
