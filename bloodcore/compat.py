# bloodcore/compat.py
from collections import namedtuple
from types import MappingProxyType

BLOOD_TYPE_CODES = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")

# donor type -> recipient types it may give red cells to
DONOR_TO_RECIPIENTS = MappingProxyType({
    "O-":  frozenset({"O-", "O+", "A-", "A+", "B-", "B+", "AB-", "AB+"}),
    "O+":  frozenset({"O+", "A+", "B+", "AB+"}),
    "A-":  frozenset({"A-", "A+", "AB-", "AB+"}),
    "A+":  frozenset({"A+", "AB+"}),
    "B-":  frozenset({"B-", "B+", "AB-", "AB+"}),
    "B+":  frozenset({"B+", "AB+"}),
    "AB-": frozenset({"AB-", "AB+"}),
    "AB+": frozenset({"AB+"}),
})

# recipient type -> donor types, built as the exact inverse of the table above
RECIPIENT_FROM_DONORS = MappingProxyType({
    recipient: frozenset(d for d, recipients in DONOR_TO_RECIPIENTS.items() if recipient in recipients)
    for recipient in BLOOD_TYPE_CODES
})

RARITY = MappingProxyType({
    "AB-": 10, "B-": 9, "AB+": 8, "A-": 7,
    "O-": 6, "B+": 5, "A+": 4, "O+": 3,
})

RankedDonor = namedtuple("RankedDonor", ["donor", "score"])


def _abo(blood_type: str) -> str:
    return blood_type[:-1]


def is_compatible(donor_type: str, recipient_type: str) -> bool:
    return recipient_type in DONOR_TO_RECIPIENTS.get(donor_type, ())


def compatible_recipients(donor_type: str) -> frozenset:
    return DONOR_TO_RECIPIENTS.get(donor_type, frozenset())


def compatible_donors(recipient_type: str) -> frozenset:
    return RECIPIENT_FROM_DONORS.get(recipient_type, frozenset())


def compatibility_score(donor_type: str, recipient_type: str) -> int:
    """
    Tie-break heuristic for ranking donors, not a medical guarantee.
    0 incompatible, 100 exact match, 90 O- to anyone else,
    80 same ABO group with another Rh, 70 any other compatible pair.
    """
    if not is_compatible(donor_type, recipient_type):
        return 0
    if donor_type == recipient_type:
        return 100
    if donor_type == "O-":
        return 90
    if _abo(donor_type) == _abo(recipient_type):
        return 80
    return 70


def _blood_type_of(donor):
    if isinstance(donor, dict):
        return donor.get("blood_type")
    return getattr(donor, "blood_type", None)


def rank_donors(recipient_type: str, donors, key=None) -> list:
    """
    Filter `donors` to those who can give to `recipient_type` and order them by
    compatibility score, best first. Equal scores keep their input order.
    `key` extracts the donor's blood type (defaults to a `blood_type` attribute or dict key).
    """
    key = key or _blood_type_of
    ranked = [
        RankedDonor(donor, compatibility_score(key(donor), recipient_type))
        for donor in donors
        if is_compatible(key(donor), recipient_type)
    ]
    return sorted(ranked, key=lambda r: -r.score)


def blood_type_rarity(blood_type: str) -> int:
    return RARITY.get(blood_type, 5)


def plan_dispense(requested_type: str, qty: int, inventory_counts: dict) -> tuple:
    """
    Build a dispense plan: how many units to take from each compatible type.
    :param requested_type: recipient blood type (e.g. "A+")
    :param qty: requested quantity (int > 0)
    :param inventory_counts: {blood type: available units}
    :return: (plan, shortfall)
             plan: e.g. {"A+": 2, "O-": 1}
             shortfall: units still missing (0 when fully covered)
    """
    # O- is the universal reserve: drawn last
    donor_order = sorted(
        compatible_donors(requested_type),
        key=lambda t: (t == "O-" and t != requested_type,
                       -compatibility_score(t, requested_type),
                       BLOOD_TYPE_CODES.index(t)),
    )
    plan = {}
    remaining = qty
    for donor_type in donor_order:
        available = inventory_counts.get(donor_type, 0)
        if available <= 0:
            continue
        take = min(available, remaining)
        if take > 0:
            plan[donor_type] = take
            remaining -= take
            if remaining == 0:
                break
    return plan, remaining
