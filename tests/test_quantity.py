from decimal import Decimal

import pytest

from crq_webhook.domain.quantity import QuantityError, add_into, format_quantity, parse, total


class TestParse:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("500m", Decimal("0.5")),
            ("2", Decimal(2)),
            ("2Gi", Decimal(2 * 1024**3)),
            ("1536Mi", Decimal(1536 * 1024**2)),
            ("1k", Decimal(1000)),
            (3, Decimal(3)),
            (0.1, Decimal("0.1")),
        ],
    )
    def test_parses_kubernetes_notation(self, raw, expected):
        assert parse(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", "", "NaN", "Infinity", None, True, [1], {"cpu": 1}])
    def test_rejects_invalid_values(self, raw):
        with pytest.raises(QuantityError):
            parse(raw)

    def test_sub_unit_arithmetic_is_exact(self):
        """0.1 + 0.2 must equal 0.3 exactly, unlike binary floats."""
        assert parse("100m") + parse("200m") == parse("300m")


class TestFormat:
    def test_binary_resources_use_binary_suffixes(self):
        assert format_quantity(parse("2Gi"), "requests.memory") == "2Gi"
        assert format_quantity(parse("1536Mi"), "requests.storage") == "1536Mi"

    def test_cpu_fractions_use_millis(self):
        assert format_quantity(parse("1500m"), "requests.cpu") == "1500m"
        assert format_quantity(parse("4"), "requests.cpu") == "4"

    def test_counts_are_plain_integers(self):
        assert format_quantity(Decimal(1024), "pods") == "1024"


def test_add_into_and_total():
    usage = {"requests.cpu": parse("1")}
    add_into(usage, {"requests.cpu": parse("500m"), "pods": Decimal(1)})
    assert usage == {"requests.cpu": Decimal("1.5"), "pods": Decimal(1)}
    assert total(usage.values()) == Decimal("2.5")
    assert total([]) == Decimal(0)
