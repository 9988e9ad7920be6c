"""Exceptions raised by the categorization engine and its collaborators.

Everything derives from :class:`CategorizerError` so callers that only care
about "the engine refused this" can catch one type.
"""

from decimal import Decimal


class CategorizerError(Exception):
    pass


class UnknownJurisdiction(CategorizerError):
    def __init__(self, jurisdiction: str, supported: tuple[str, ...] = ()) -> None:
        self.jurisdiction = jurisdiction
        self.supported = supported
        message = f"Unknown jurisdiction '{jurisdiction}'"
        if supported:
            message += f" (supported: {', '.join(supported)})"
        super().__init__(message)


class RemoteUnavailable(CategorizerError):
    """The remote provider could not produce a usable answer."""

    def __init__(self, reason: str, *, detail: str | None = None) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class InvalidAccountCode(CategorizerError):
    def __init__(self, code: str, jurisdiction: str) -> None:
        self.code = code
        self.jurisdiction = jurisdiction
        super().__init__(f"Account code '{code}' does not exist in {jurisdiction}")


class SignMismatch(CategorizerError):
    """Record of a result whose account type contradicts the amount sign.

    The validator never raises this; it builds one to describe the
    correction it applied and logs it.
    """

    def __init__(self, code: str, account_type: str, amount: Decimal, replacement: str) -> None:
        self.code = code
        self.account_type = account_type
        self.amount = amount
        self.replacement = replacement
        direction = "outflow" if amount < 0 else "inflow"
        super().__init__(
            f"{account_type} account {code} used for {direction} of {amount}; replaced with {replacement}"
        )


class RuleNotFound(CategorizerError):
    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"No rule with id '{rule_id}'")


class RuleImportError(CategorizerError):
    pass
