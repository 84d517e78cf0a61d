from decimal import Decimal

from photoarchiver.services.costs import GB, CostEstimator, CostOptions


def test_usage_lists_only_nonzero_counters():
    costs = CostEstimator()
    costs.add_write(1000)
    costs.add_write(24)
    costs.add_other()
    assert dict(costs.summarize_usage()) == {
        "Bytes transferred": 1024,
        "Write operations": 2,
        "Other operations": 1,
    }


def test_costs_need_a_price():
    costs = CostEstimator(CostOptions(write_price_per_10000=Decimal("0.10")))
    costs.add_write(10)
    costs.add_read(10)
    assert dict(costs.summarize_costs()) == {"Write operations (one time)": Decimal("0.00001")}


def test_storage_cost_scales_with_gigabytes():
    costs = CostEstimator(CostOptions(data_storage_price_per_gb=Decimal("0.01")))
    costs.add_write(2 * GB)
    assert dict(costs.summarize_costs()) == {"Data Storage (monthly)": Decimal("0.02")}


def test_options_from_dict():
    options = CostOptions.from_dict({"currency": "EUR", "read_price_per_10000": 0.004, "unknown": 1})
    assert options.currency == "EUR"
    assert options.read_price_per_10000 == Decimal("0.004")
    assert options.write_price_per_10000 is None
    assert options.is_any_set()
    assert not CostOptions.from_dict({"currency": "$"}).is_any_set()
