import pytest

from multinic.iptables import (
    IptablesError,
    chain_exists,
    clear_chain,
    delete_chain,
    delete_rule,
    ensure_chain,
)

TABLE = "filter"
CHAIN = "cni-test-1234"

NO_CHAIN = "iptables: No chain/target/match by that name.\n"
NO_RULE = "iptables: Bad rule (does a matching rule exist in that chain?).\n"


class FakeIPTables:
    def __init__(self):
        self.tables = {TABLE: {"INPUT": [], "FORWARD": [], "OUTPUT": []}}

    def _chains(self, table):
        return self.tables.setdefault(table, {})

    def list_chains(self, table):
        return list(self._chains(table))

    def new_chain(self, table, chain):
        chains = self._chains(table)
        if chain in chains:
            raise IptablesError("iptables: Chain already exists.\n", 1)
        chains[chain] = []

    def append(self, table, chain, *rulespec):
        self._chains(table)[chain].append(list(rulespec))

    def delete(self, table, chain, *rulespec):
        chains = self._chains(table)
        if chain not in chains:
            raise IptablesError(NO_CHAIN, 1)
        rule = list(rulespec)
        if rule not in chains[chain]:
            raise IptablesError(NO_RULE, 1)
        chains[chain].remove(rule)

    def delete_chain(self, table, chain):
        chains = self._chains(table)
        if chain not in chains:
            raise IptablesError(NO_CHAIN, 1)
        del chains[chain]

    def clear_chain(self, table, chain):
        chains = self._chains(table)
        if chain not in chains:
            raise IptablesError(NO_CHAIN, 1)
        chains[chain].clear()


class RacingIPTables(FakeIPTables):
    def __init__(self, status):
        super().__init__()
        self.status = status

    def list_chains(self, table):
        return []

    def new_chain(self, table, chain):
        raise IptablesError("chain creation failed", self.status)


class FailingIPTables(FakeIPTables):
    def __init__(self, status, message):
        super().__init__()
        self.status = status
        self.message = message

    def list_chains(self, table):
        raise IptablesError(self.message, self.status)

    def delete(self, table, chain, *rulespec):
        raise IptablesError(self.message, self.status)


@pytest.fixture
def ipt():
    return FakeIPTables()


def test_ensure_chain_is_idempotent(ipt):
    ensure_chain(ipt, TABLE, CHAIN)
    assert chain_exists(ipt, TABLE, CHAIN) is True
    ensure_chain(ipt, TABLE, CHAIN)
    assert ipt.list_chains(TABLE).count(CHAIN) == 1


def test_delete_chain_is_idempotent(ipt):
    ensure_chain(ipt, TABLE, CHAIN)
    delete_chain(ipt, TABLE, CHAIN)
    assert chain_exists(ipt, TABLE, CHAIN) is False
    delete_chain(ipt, TABLE, CHAIN)
    assert chain_exists(ipt, TABLE, CHAIN) is False


def test_chain_exists(ipt):
    assert chain_exists(ipt, TABLE, "INPUT") is True
    assert chain_exists(ipt, TABLE, CHAIN) is False


@pytest.mark.parametrize(
    "func", [ensure_chain, chain_exists, delete_chain, clear_chain, delete_rule]
)
def test_nil_handle_raises(func):
    with pytest.raises(ValueError, match="IPTables was nil"):
        func(None, TABLE, CHAIN)


def test_ensure_chain_tolerates_concurrent_creation():
    ipt = RacingIPTables(status=1)
    ensure_chain(ipt, TABLE, CHAIN)
    assert ipt.list_chains(TABLE) == []


def test_ensure_chain_raises_other_creation_errors():
    with pytest.raises(IptablesError) as info:
        ensure_chain(RacingIPTables(status=4), TABLE, CHAIN)
    assert info.value.exit_status == 4


def test_ensure_chain_wraps_listing_errors():
    ipt = FailingIPTables(status=4, message="permission denied")
    with pytest.raises(IptablesError, match="failed to list iptables chains: permission denied"):
        ensure_chain(ipt, TABLE, CHAIN)


def test_delete_rule_removes_rule(ipt):
    ensure_chain(ipt, TABLE, CHAIN)
    ipt.append(TABLE, CHAIN, "-j", "ACCEPT")
    delete_rule(ipt, TABLE, CHAIN, "-j", "ACCEPT")
    assert ipt.tables[TABLE][CHAIN] == []


def test_delete_rule_swallows_missing_rule_and_chain(ipt):
    ensure_chain(ipt, TABLE, CHAIN)
    delete_rule(ipt, TABLE, CHAIN, "-j", "DROP")
    delete_rule(ipt, TABLE, "missing", "-j", "DROP")
    assert ipt.tables[TABLE][CHAIN] == []
    assert "missing" not in ipt.tables[TABLE]


def test_delete_rule_swallows_status_two():
    ipt = FailingIPTables(status=2, message="bad argument")
    delete_rule(ipt, TABLE, CHAIN, "-j", "DROP")
    assert ipt.list_chains is not None and CHAIN not in ipt.tables[TABLE]


def test_delete_rule_wraps_other_errors():
    ipt = FailingIPTables(status=4, message="permission denied")
    with pytest.raises(IptablesError, match=f"Failed to delete referring rule {TABLE} {CHAIN}"):
        delete_rule(ipt, TABLE, CHAIN, "-j", "DROP")


def test_clear_chain_removes_rules(ipt):
    ensure_chain(ipt, TABLE, CHAIN)
    ipt.append(TABLE, CHAIN, "-j", "ACCEPT")
    clear_chain(ipt, TABLE, CHAIN)
    assert ipt.tables[TABLE][CHAIN] == []


def test_clear_chain_creates_missing_chain(ipt):
    clear_chain(ipt, TABLE, CHAIN)
    assert chain_exists(ipt, TABLE, CHAIN) is True


def test_is_not_exist():
    assert IptablesError(NO_CHAIN, 1).is_not_exist() is True
    assert IptablesError(NO_RULE, 1).is_not_exist() is True
    assert IptablesError(NO_CHAIN, 2).is_not_exist() is False
    assert IptablesError("iptables: Chain already exists.", 1).is_not_exist() is False