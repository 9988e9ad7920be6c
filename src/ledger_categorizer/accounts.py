"""Per-jurisdiction charts of accounts.

Each supported jurisdiction ships as ``data/accounts/<CODE>.json`` with the
account list and a ``roles`` table naming the accounts the engine falls back
to (generic revenue, bank fees, transfers and so on).
"""

import json
import os
import threading

from ledger_categorizer.errors import UnknownJurisdiction
from ledger_categorizer.logger import get_logger
from ledger_categorizer.models import Account, AccountType

logger = get_logger(__name__)

ACCOUNTS_DIR = os.path.join(os.path.dirname(__file__), "data", "accounts")

ROLE_NAMES = (
    "revenue",
    "interest_income",
    "direct_cost",
    "bank_fee",
    "vehicle",
    "expense",
    "transfer",
)


class AccountSet:
    def __init__(self, jurisdiction: str, name: str, accounts: list[Account], roles: dict[str, str]) -> None:
        self.jurisdiction = jurisdiction
        self.name = name
        self._accounts: dict[str, Account] = {}
        for account in accounts:
            if account.code in self._accounts:
                raise ValueError(f"{jurisdiction}: duplicate account code {account.code}")
            self._accounts[account.code] = account

        missing_roles = [role for role in ROLE_NAMES if role not in roles]
        if missing_roles:
            raise ValueError(f"{jurisdiction}: missing role(s) {', '.join(missing_roles)}")
        for role, code in roles.items():
            if code not in self._accounts:
                raise ValueError(f"{jurisdiction}: role '{role}' points at unknown account {code}")
        self._roles = dict(roles)

    @classmethod
    def from_file(cls, path: str) -> "AccountSet":
        with open(path, encoding="utf-8") as handle:
            payload = json.load(handle)
        accounts = [Account.model_validate(item) for item in payload["accounts"]]
        return cls(
            jurisdiction=payload["jurisdiction"],
            name=payload.get("name", payload["jurisdiction"]),
            accounts=accounts,
            roles=payload.get("roles", {}),
        )

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, code: object) -> bool:
        return code in self._accounts

    def exists(self, code: str | None) -> bool:
        return code is not None and code in self._accounts

    def get(self, code: str | None) -> Account | None:
        if code is None:
            return None
        return self._accounts.get(code)

    def all(self) -> list[Account]:
        return sorted(self._accounts.values(), key=lambda account: account.code)

    def by_type(self, account_type: AccountType) -> list[Account]:
        return [account for account in self.all() if account.type is account_type]

    def role(self, name: str) -> str:
        try:
            return self._roles[name]
        except KeyError:
            raise KeyError(f"Unknown account role '{name}'") from None

    @property
    def revenue_code(self) -> str:
        return self._roles["revenue"]

    @property
    def interest_income_code(self) -> str:
        return self._roles["interest_income"]

    @property
    def direct_cost_code(self) -> str:
        return self._roles["direct_cost"]

    @property
    def bank_fee_code(self) -> str:
        return self._roles["bank_fee"]

    @property
    def vehicle_code(self) -> str:
        return self._roles["vehicle"]

    @property
    def expense_code(self) -> str:
        return self._roles["expense"]

    @property
    def transfer_code(self) -> str:
        return self._roles["transfer"]

    def resolve_code(self, reference: str) -> str:
        """Turn ``@role`` references into codes; literal codes pass through."""
        if reference.startswith("@"):
            return self.role(reference[1:])
        return reference


def supported_jurisdictions(accounts_dir: str = ACCOUNTS_DIR) -> tuple[str, ...]:
    if not os.path.isdir(accounts_dir):
        return ()
    return tuple(
        sorted(
            filename[:-5].upper()
            for filename in os.listdir(accounts_dir)
            if filename.endswith(".json")
        )
    )


class AccountRegistry:
    def __init__(self, default_jurisdiction: str = "ON", accounts_dir: str = ACCOUNTS_DIR) -> None:
        self.accounts_dir = accounts_dir
        self.supported = supported_jurisdictions(accounts_dir)
        self.default_jurisdiction = default_jurisdiction.strip().upper()
        if self.default_jurisdiction not in self.supported:
            raise ValueError(
                f"Default jurisdiction '{default_jurisdiction}' is not one of {', '.join(self.supported)}"
            )
        self._sets: dict[str, AccountSet] = {}
        self._lock = threading.Lock()

    def load(self, jurisdiction: str) -> AccountSet:
        code = (jurisdiction or "").strip().upper()
        if code not in self.supported:
            raise UnknownJurisdiction(jurisdiction, self.supported)

        with self._lock:
            account_set = self._sets.get(code)
            if account_set is None:
                path = os.path.join(self.accounts_dir, f"{code}.json")
                account_set = AccountSet.from_file(path)
                self._sets[code] = account_set
                logger.info("[REGISTRY] Loaded %d accounts for %s.", len(account_set), code)
        return account_set

    def resolve(self, jurisdiction: str | None) -> AccountSet:
        if not jurisdiction:
            return self.load(self.default_jurisdiction)
        try:
            return self.load(jurisdiction)
        except UnknownJurisdiction as exc:
            logger.warning("[REGISTRY] %s; using %s.", exc, self.default_jurisdiction)
            return self.load(self.default_jurisdiction)

    def loaded(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._sets))
