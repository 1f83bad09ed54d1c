from __future__ import annotations

from typing import Dict, Set

from .errors import TransferRejected


class Treasury:
    """In-process value transport used by the ledger for payouts and refunds.

    Credits accumulate per identity. Identities registered through `reject`
    refuse incoming funds, which makes the transfer raise `TransferRejected`.
    """

    def __init__(self) -> None:
        self.credits: Dict[str, int] = {}
        self.rejecting: Set[str] = set()

    def reject(self, identity: str, enabled: bool = True) -> None:
        if enabled:
            self.rejecting.add(identity)
        else:
            self.rejecting.discard(identity)

    def balance_of(self, identity: str) -> int:
        return self.credits.get(identity, 0)

    def transfer(self, recipient: str, amount: int) -> None:
        if amount <= 0:
            return
        if recipient in self.rejecting:
            raise TransferRejected(f"recipient {recipient} rejected transfer of {amount}")
        self.credits[recipient] = self.credits.get(recipient, 0) + amount

    def revert(self, recipient: str, amount: int) -> None:
        """Take back a credit made by `transfer` in a transaction that is rolling back."""
        remaining = self.credits.get(recipient, 0) - amount
        if remaining:
            self.credits[recipient] = remaining
        else:
            self.credits.pop(recipient, None)
