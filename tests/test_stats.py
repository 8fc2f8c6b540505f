from kapir.stats import StatKey, StatsCollector


def test_average_of_nothing_is_zero():
    stats = StatsCollector()
    assert stats.count_average(StatKey.AVG_ORDER_PICKUP_TIME) == 0


def test_average_of_equal_samples():
    stats = StatsCollector()
    for _ in range(3):
        stats.add_avg_element(StatKey.AVG_ORDER_COMPLETE_TIME, 40)
    assert stats.count_average(StatKey.AVG_ORDER_COMPLETE_TIME) == 40


def test_average_truncates():
    stats = StatsCollector()
    stats.add_avg_element(StatKey.AVG_ORDER_PICKUP_TIME, 1)
    stats.add_avg_element(StatKey.AVG_ORDER_PICKUP_TIME, 2)
    assert stats.count_average(StatKey.AVG_ORDER_PICKUP_TIME) == 1


def test_keys_are_independent():
    stats = StatsCollector()
    stats.add_avg_pickup(30)
    assert stats.count_average(StatKey.AVG_ORDER_PICKUP_TIME) == 30
    assert stats.count_average(StatKey.AVG_ORDER_COMPLETE_TIME) == 0


def test_minus_one_samples_are_ignored():
    stats = StatsCollector()
    stats.add_avg_pickup(-1)
    stats.add_avg_complete(-1)
    stats.add_avg_complete(60)
    assert stats.count_average(StatKey.AVG_ORDER_PICKUP_TIME) == 0
    assert stats.count_average(StatKey.AVG_ORDER_COMPLETE_TIME) == 60


def test_update_val():
    stats = StatsCollector()
    stats.update_val(StatKey.AVG_ORDER_COMPLETE_TIME, 99)
    assert stats.values[StatKey.AVG_ORDER_COMPLETE_TIME] == 99


def test_save_status_without_samples():
    stats = StatsCollector()
    assert stats.save_status() == (
        "UPDATE stat SET int_val=0 WHERE UPPER(name)=UPPER('AvgOrderPickupTime');"
        "UPDATE stat SET int_val=0 WHERE UPPER(name)=UPPER('AvgOrderCompleteTime');"
    )


def test_save_status_stores_averages():
    stats = StatsCollector()
    stats.add_avg_pickup(120)
    stats.add_avg_complete(600)
    sql = stats.save_status()
    assert "int_val=120 WHERE UPPER(name)=UPPER('AvgOrderPickupTime')" in sql
    assert "int_val=600 WHERE UPPER(name)=UPPER('AvgOrderCompleteTime')" in sql
    assert stats.values[StatKey.AVG_ORDER_PICKUP_TIME] == 120


def test_save_status_uses_key_labels_in_order():
    stats = StatsCollector()
    sql = stats.save_status()
    statements = [part for part in sql.split(";") if part]
    assert len(statements) == len(StatKey)
    for statement, key in zip(statements, StatKey):
        assert statement.endswith(f"UPPER('{key}')")
    assert [str(key) for key in StatKey] == ["AvgOrderPickupTime", "AvgOrderCompleteTime"]