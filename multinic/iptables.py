"""Idempotent chain and rule operations on an iptables handle."""

from __future__ import annotations

from typing import Optional, Protocol

STATUS_CHAIN_EXISTS = 1

_NOT_EXIST_MESSAGES = (
    "Bad rule (does a matching rule exist in that chain?)",
    "No chain/target/match by that name",
)


class IptablesError(Exception):
    """An iptables command failed with an exit status."""

    def __init__(self, message: str, exit_status: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.exit_status = exit_status

    def is_not_exist(self) -> bool:
        """Return True if the failure means the chain or rule does not exist."""
        return self.exit_status == 1 and any(
            text in self.message for text in _NOT_EXIST_MESSAGES
        )


class IPTables(Protocol):
    """The operations these helpers need from an iptables handle."""

    def list_chains(self, table: str) -> list[str]: ...

    def new_chain(self, table: str, chain: str) -> None: ...

    def delete(self, table: str, chain: str, *rulespec: str) -> None: ...

    def delete_chain(self, table: str, chain: str) -> None: ...

    def clear_chain(self, table: str, chain: str) -> None: ...


def _require(ipt: Optional[IPTables], action: str) -> IPTables:
    if ipt is None:
        raise ValueError(f"failed to {action}: IPTables was nil")
    return ipt


def chain_exists(ipt: Optional[IPTables], table: str, chain: str) -> bool:
    """Return True if the chain exists in the table."""
    ipt = _require(ipt, "check iptable chain")
    return chain in ipt.list_chains(table)


def ensure_chain(ipt: Optional[IPTables], table: str, chain: str) -> None:
    """Create the chain unless it already exists."""
    ipt = _require(ipt, "ensure iptable chain")
    try:
        exists = chain_exists(ipt, table, chain)
    except IptablesError as exc:
        raise IptablesError(
            f"failed to list iptables chains: {exc}", exc.exit_status
        ) from exc
    if exists:
        return
    try:
        ipt.new_chain(table, chain)
    except IptablesError as exc:
        if exc.exit_status != STATUS_CHAIN_EXISTS:
            raise


def delete_rule(ipt: Optional[IPTables], table: str, chain: str, *args: str) -> None:
    """Delete a rule; a missing rule or chain is not an error."""
    ipt = _require(ipt, "ensure iptable chain")
    try:
        ipt.delete(table, chain, *args)
    except IptablesError as exc:
        # exit status 2 means the referring rule is missing
        if exc.is_not_exist() or exc.exit_status == 2:
            return
        raise IptablesError(
            f"Failed to delete referring rule {table} {chain}: {exc}", exc.exit_status
        ) from exc


def delete_chain(ipt: Optional[IPTables], table: str, chain: str) -> None:
    """Delete a chain; a missing chain is not an error."""
    ipt = _require(ipt, "ensure iptable chain")
    try:
        ipt.delete_chain(table, chain)
    except IptablesError as exc:
        if not exc.is_not_exist():
            raise


def clear_chain(ipt: Optional[IPTables], table: str, chain: str) -> None:
    """Remove every rule of a chain, creating the chain if it does not exist."""
    ipt = _require(ipt, "ensure iptable chain")
    try:
        ipt.clear_chain(table, chain)
    except IptablesError as exc:
        if not exc.is_not_exist():
            raise
        ensure_chain(ipt, table, chain)