from typing import List, Dict, Tuple, Optional, Iterable, Mapping, NamedTuple, Any
from decimal import Decimal, ROUND_HALF_UP
from fractions import Fraction
import math
import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
SETTLEMENT_THRESHOLD = CENT
PERCENT_TOLERANCE = Decimal("0.01")
HUNDRED = Decimal("100")
# Numeric(12, 2) storage: at most 10 integer digits
MAX_CENTS = 10 ** 12 - 1

# threshold in minor units
_THRESHOLD_CENTS = 1


class InvalidPolicyInput(ValueError):
    """Malformed split request; a client-input error, never retried."""


class InconsistentSnapshot(ValueError):
    """Expenses/splits reference users outside the group snapshot."""


class SplitShare(NamedTuple):
    user_id: Any
    amount: Decimal
    percentage: Optional[Decimal] = None


class RawDebt(NamedTuple):
    debtor: Any
    creditor: Any
    amount: Decimal


class NetBalance(NamedTuple):
    from_id: Any
    to_id: Any
    amount: Decimal
    from_name: Optional[str] = None
    to_name: Optional[str] = None


class UserSummary(NamedTuple):
    owes: Decimal
    owed: Decimal
    net: Decimal


def to_dec(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))

def round2(d: Decimal) -> Decimal:
    return d.quantize(CENT, rounding=ROUND_HALF_UP)

def to_cents(x) -> int:
    return int(round2(to_dec(x)) * 100)

def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def _spread_residual(cents: List[int], residual: int) -> List[int]:
    """Hand out residual cents (0 <= residual < len(cents)) one at a time, in input order."""
    return [c + (1 if i < residual else 0) for i, c in enumerate(cents)]


def _policy_tag(policy) -> str:
    return getattr(policy, "value", policy)


def allocate_equal(amount, participants: List[Any]) -> List[SplitShare]:
    """
    Split amount equally across the ordered participants.
    Every share is the floor of amount / N in cents; the leftover cents go to the
    first participants in input order, so the shares always add up to amount.
    """
    total = _positive_cents(amount)
    if not participants:
        raise InvalidPolicyInput("No participants to split among.")
    _check_unique(participants)
    n = len(participants)
    per = total // n
    cents = _spread_residual([per] * n, total - per * n)
    return [SplitShare(uid, from_cents(c)) for uid, c in zip(participants, cents)]


def allocate_percentage(amount, shares: List[Tuple[Any, Any]]) -> List[SplitShare]:
    """
    shares: ordered list of (user_id, percentage)
    Percentages must be > 0 and sum to 100 within PERCENT_TOLERANCE; shares are
    scaled by the actual sum, so they stay >= 0 and add up to amount exactly.
    """
    total = _positive_cents(amount)
    if not shares:
        raise InvalidPolicyInput("No participants to split among.")
    _check_unique([uid for uid, _ in shares])
    pcts = [to_dec(p) for _, p in shares]
    for (uid, _), pct in zip(shares, pcts):
        if pct <= 0:
            raise InvalidPolicyInput(f"Percentage for {uid} must be greater than 0 (got {pct}).")
    pct_sum = sum(pcts, Decimal("0"))
    if abs(pct_sum - HUNDRED) > PERCENT_TOLERANCE:
        raise InvalidPolicyInput(f"Total percentage is {pct_sum}%. Must equal 100%.")

    # exact shares are proportional to pct / sum of pcts; their floors never exceed total
    weight = sum((Fraction(p) for p in pcts), Fraction(0))
    cents = [math.floor(total * Fraction(pct) / weight) for pct in pcts]
    cents = _spread_residual(cents, total - sum(cents))
    return [SplitShare(uid, from_cents(c), pct) for (uid, _), c, pct in zip(shares, cents, pcts)]


def allocate(amount, policy, participants, params: Optional[Mapping[Any, Any]] = None) -> List[SplitShare]:
    """
    Entry point of the split allocator.
    equal:      participants = ordered user ids
    percentage: participants = ordered (user_id, percentage) pairs, or ordered user ids
                with params mapping user_id -> percentage
    """
    tag = _policy_tag(policy)
    if tag == "equal":
        result = allocate_equal(amount, list(participants))
    elif tag == "percentage":
        if params is not None:
            missing = [uid for uid in participants if uid not in params]
            if missing:
                raise InvalidPolicyInput(f"No percentage given for {missing}.")
            pairs = [(uid, params[uid]) for uid in participants]
        else:
            pairs = [tuple(p) for p in participants]
        result = allocate_percentage(amount, pairs)
    else:
        raise InvalidPolicyInput(f"Unknown split policy {policy!r}.")
    logger.debug("allocated %s (%s) -> %s", amount, tag, [str(s.amount) for s in result])
    return result


def _positive_cents(amount) -> int:
    try:
        cents = to_cents(amount)
    except (ArithmeticError, ValueError):
        raise InvalidPolicyInput(f"Amount {amount!r} is not a number.")
    if cents > MAX_CENTS:
        raise InvalidPolicyInput(f"Amount {amount} exceeds the largest supported amount {from_cents(MAX_CENTS)}.")
    if cents <= 0:
        raise InvalidPolicyInput(f"Amount must be greater than 0 (got {amount}).")
    return cents


def _check_unique(ids: List[Any]) -> None:
    seen = set()
    for uid in ids:
        if uid in seen:
            raise InvalidPolicyInput(f"Participant {uid} appears more than once.")
        seen.add(uid)


class AggregatedDebt:
    """Ordered (debtor, creditor) pair -> accumulated debt in cents, for one group."""

    def __init__(self) -> None:
        self._cents: Dict[Tuple[Any, Any], int] = {}

    def add(self, debtor, creditor, cents: int) -> None:
        key = (debtor, creditor)
        self._cents[key] = self._cents.get(key, 0) + cents

    def cents(self, debtor, creditor) -> int:
        return self._cents.get((debtor, creditor), 0)

    def amount(self, debtor, creditor) -> Decimal:
        return from_cents(self.cents(debtor, creditor))

    def pairs(self) -> List[Tuple[Any, Any]]:
        return list(self._cents)

    def as_dict(self) -> Dict[Tuple[Any, Any], Decimal]:
        return {k: from_cents(v) for k, v in self._cents.items()}

    @classmethod
    def from_balances(cls, balances: Iterable[NetBalance]) -> "AggregatedDebt":
        agg = cls()
        for b in balances:
            agg.add(b.from_id, b.to_id, to_cents(b.amount))
        return agg

    def __len__(self) -> int:
        return len(self._cents)

    def __eq__(self, other) -> bool:
        if not isinstance(other, AggregatedDebt):
            return NotImplemented
        return self._cents == other._cents

    def __repr__(self) -> str:
        return f"AggregatedDebt({self.as_dict()!r})"


def raw_debts(expenses: Iterable[Any], splits_by_expense: Mapping[Any, Iterable[Any]]) -> Iterable[RawDebt]:
    """Each split whose user is not the payer becomes a debt towards the payer."""
    for exp in expenses:
        for s in splits_by_expense.get(exp.id, ()):
            amt = to_dec(s.amount)
            if s.user_id == exp.paid_by or amt <= 0:
                continue
            yield RawDebt(s.user_id, exp.paid_by, amt)


def aggregate(expenses: Iterable[Any], splits_by_expense: Mapping[Any, Iterable[Any]],
              member_ids: Optional[Iterable[Any]] = None) -> AggregatedDebt:
    """
    expenses: objects with id, group_id, paid_by
    splits_by_expense: expense id -> objects with user_id, amount
    member_ids: when given, every payer and split user must be in it
    """
    expenses = list(expenses)
    members = set(member_ids) if member_ids is not None else None
    group_ids = {getattr(e, "group_id", None) for e in expenses}
    if len(group_ids) > 1:
        raise InconsistentSnapshot(f"Expenses span several groups: {sorted(map(str, group_ids))}.")
    if members is not None:
        for exp in expenses:
            if exp.paid_by not in members:
                raise InconsistentSnapshot(f"Expense {exp.id} paid by non-member {exp.paid_by}.")
            for s in splits_by_expense.get(exp.id, ()):
                if s.user_id not in members:
                    raise InconsistentSnapshot(f"Expense {exp.id} has a split for non-member {s.user_id}.")

    agg = AggregatedDebt()
    for d in raw_debts(expenses, splits_by_expense):
        agg.add(d.debtor, d.creditor, to_cents(d.amount))
    logger.debug("aggregated %d expenses into %d pairs", len(expenses), len(agg))
    return agg


def net(aggregated: AggregatedDebt, participant_names: Optional[Mapping[Any, str]] = None) -> List[NetBalance]:
    """
    Cancel mutual debts pair by pair. Each unordered pair is visited once and
    yields at most one directed balance, only when it exceeds the settlement threshold.
    """
    names = participant_names or {}
    visited = set()
    result = []
    for a, b in aggregated.pairs():
        pair = frozenset((a, b))
        if a == b or pair in visited:
            continue
        visited.add(pair)
        diff = aggregated.cents(a, b) - aggregated.cents(b, a)
        if diff > _THRESHOLD_CENTS:
            result.append(NetBalance(a, b, from_cents(diff), names.get(a), names.get(b)))
        elif diff < -_THRESHOLD_CENTS:
            result.append(NetBalance(b, a, from_cents(-diff), names.get(b), names.get(a)))
    try:
        result.sort(key=lambda nb: (nb.from_id, nb.to_id))
    except TypeError:
        # ids of mixed types
        result.sort(key=lambda nb: (str(nb.from_id), str(nb.to_id)))
    return result


def compute_balances(expenses, splits_by_expense, member_ids=None, participant_names=None) -> List[NetBalance]:
    return net(aggregate(expenses, splits_by_expense, member_ids), participant_names)


def balances_for_user(user_id, balances: Iterable[NetBalance]) -> List[NetBalance]:
    return [b for b in balances if b.from_id == user_id or b.to_id == user_id]


def summarize_user(user_id, balances: Iterable[NetBalance]) -> UserSummary:
    """
    Totals for one user over any list of balances (e.g. several groups concatenated).
    net > 0 means the user is owed money overall.
    """
    owes = owed = Decimal("0.00")
    for b in balances:
        if b.from_id == user_id:
            owes += b.amount
        elif b.to_id == user_id:
            owed += b.amount
    return UserSummary(round2(owes), round2(owed), round2(owed - owes))
