from decimal import Decimal

from foodcart.services.badge import BadgeProjector
from tests.fakes import line


def test_badge_counts_quantities_not_lines(store):
    badge = BadgeProjector(store)

    store.upsert_line("A", {}, 2, Decimal("10"), "R1")
    store.upsert_line("B", {}, 3, Decimal("5"), "R1")

    assert badge.value == 5


def test_badge_follows_reconciliation(store):
    badge = BadgeProjector(store)
    store.upsert_line("A", {}, 2, Decimal("10"), "R1")

    store.replace_all([line("A", 1, 10, line_id="L1"), line("C", 4, 3, line_id="L2")])
    assert badge.value == 5

    store.replace_all([])
    assert badge.value == 0


def test_badge_starts_from_existing_cart(store):
    store.replace_all([line("A", 2, 10, line_id="L1")])

    assert BadgeProjector(store).value == 2


def test_on_change_only_fires_when_value_changes(store):
    badge = BadgeProjector(store)
    values = []
    badge.on_change(values.append)

    store.upsert_line("A", {}, 1, Decimal("10"), "R1")
    # same total, different lines
    store.replace_all([line("B", 1, 5, line_id="L1")])
    store.upsert_line("B", {}, 2, Decimal("5"), "R1")

    assert values == [1, 3]


def test_detach_stops_updates(store):
    badge = BadgeProjector(store)
    badge.detach()

    store.upsert_line("A", {}, 1, Decimal("10"), "R1")

    assert badge.value == 0
