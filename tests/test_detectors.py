from dataclasses import replace
from datetime import timedelta

import pytest

from config import DetectionConfig
from conftest import BASE_TS
from services.detectors import (
    BRUTE_FORCE,
    ENDPOINT_SCANNING,
    HIGH_ERROR_RATE,
    SQL_INJECTION,
    UNUSUAL_METHOD,
    DetectionEngine,
    detect_brute_force,
    detect_endpoint_scanning,
    detect_high_error_rate,
    detect_sql_injection,
    detect_unusual_methods,
    group_by_ip,
    match_sql_pattern,
)


# ─── grouping ──────────────────────────────────────────────────────────────────

def test_group_by_ip_keeps_arrival_order_and_drops_missing_ip(make_record):
    a1 = make_record(5, ip_address="10.0.0.1")
    b1 = make_record(1, ip_address="10.0.0.2")
    none = make_record(2)
    a2 = make_record(0, ip_address="10.0.0.1")

    groups = group_by_ip([a1, b1, none, a2])

    assert set(groups) == {"10.0.0.1", "10.0.0.2"}
    assert groups["10.0.0.1"] == [a1, a2]
    assert groups["10.0.0.2"] == [b1]


def test_group_by_ip_empty():
    assert group_by_ip([]) == {}


# ─── brute force ───────────────────────────────────────────────────────────────

def failed_logins(make_record, n, ip="10.0.0.9", status=401):
    return [
        make_record(i, ip_address=ip, status=status, path="/api/auth/Login", method="POST")
        for i in range(n)
    ]


def test_brute_force_five_failures_is_medium(make_record):
    records = failed_logins(make_record, 5)

    alerts = detect_brute_force(group_by_ip(records))

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.category == BRUTE_FORCE
    assert alert.severity == "medium"
    assert alert.count == 5
    assert alert.ip == "10.0.0.9"
    assert alert.timestamp == BASE_TS + timedelta(minutes=4)
    assert alert.message == "5 failed login attempts from IP 10.0.0.9 within 4 minutes"


def test_brute_force_sixth_failure_stays_medium(make_record):
    alerts = detect_brute_force(group_by_ip(failed_logins(make_record, 6)))
    assert [a.severity for a in alerts] == ["medium"]


def test_brute_force_tenth_failure_is_high(make_record):
    alerts = detect_brute_force(group_by_ip(failed_logins(make_record, 10, status=403)))
    assert [a.severity for a in alerts] == ["high"]
    assert alerts[0].count == 10


def test_brute_force_below_threshold(make_record):
    assert detect_brute_force(group_by_ip(failed_logins(make_record, 4))) == []


def test_brute_force_ignores_other_statuses_and_paths(make_record):
    records = failed_logins(make_record, 4)
    records.append(make_record(10, ip_address="10.0.0.9", status=500, path="/login"))
    records.append(make_record(11, ip_address="10.0.0.9", status=401, path="/api/orders"))
    records.append(make_record(12, ip_address="10.0.0.9", status=401))

    assert detect_brute_force(group_by_ip(records)) == []


def test_brute_force_uses_latest_attempt_regardless_of_arrival_order(make_record):
    records = list(reversed(failed_logins(make_record, 5)))
    alerts = detect_brute_force(group_by_ip(records))
    assert alerts[0].timestamp == BASE_TS + timedelta(minutes=4)


def test_brute_force_span_rounds_to_whole_minutes(make_record):
    records = [
        make_record(i * 0.5, ip_address="10.0.0.9", status=401, path="/login")
        for i in range(6)
    ]  # 2.5 minutes between first and last
    alerts = detect_brute_force(group_by_ip(records))
    assert alerts[0].message.endswith("within 3 minutes")


def test_brute_force_one_alert_per_ip(make_record):
    records = failed_logins(make_record, 5, ip="1.1.1.1") + failed_logins(make_record, 12, ip="2.2.2.2")
    alerts = detect_brute_force(group_by_ip(records))
    assert [(a.ip, a.severity) for a in alerts] == [("1.1.1.1", "medium"), ("2.2.2.2", "high")]


def test_brute_force_threshold_is_tunable(make_record):
    config = DetectionConfig(brute_force_threshold=3, brute_force_high_threshold=4)
    alerts = detect_brute_force(group_by_ip(failed_logins(make_record, 4)), config)
    assert [a.severity for a in alerts] == ["high"]


# ─── SQL injection ─────────────────────────────────────────────────────────────

def test_sql_injection_or_1_equals_1_in_path(make_record):
    record = make_record(ip_address="10.0.0.5", path="/search?q=1 OR 1=1")

    alerts = detect_sql_injection([record])

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.category == SQL_INJECTION
    assert alert.severity == "high"
    assert alert.path == "/search?q=1 OR 1=1"
    assert alert.ip == "10.0.0.5"
    assert "OR 1=1" in alert.message
    # "1=1" precedes "OR 1=1" in the priority list
    assert alert.pattern == "1=1"


def test_sql_injection_first_pattern_in_list_wins():
    assert match_sql_pattern("/items?id=5 union select name") == "SELECT"
    assert match_sql_pattern("/items?id=5;drop table x") == "DROP"
    assert match_sql_pattern("/items?id=5' or 'a'='a") == "' OR '"
    assert match_sql_pattern("/home") is None
    assert match_sql_pattern(None) is None


def test_sql_injection_is_case_insensitive():
    assert match_sql_pattern("/run?cmd=xp_cmdshell") == "xp_"
    assert match_sql_pattern("/q?x=Select") == "SELECT"


def test_sql_injection_falls_back_to_message_and_details(make_record):
    record = make_record(
        ip_address="10.0.0.5",
        path="/comments",
        message="comment posted",
        details="body=drop table users",
    )

    alerts = detect_sql_injection([record])

    assert [a.pattern for a in alerts] == ["DROP"]


def test_sql_injection_path_match_takes_precedence(make_record):
    record = make_record(ip_address="10.0.0.5", path="/q?id=1 union", details="select")
    assert detect_sql_injection([record])[0].pattern == "UNION"


def test_sql_injection_requires_ip(make_record):
    assert detect_sql_injection([make_record(path="/search?q=1 OR 1=1")]) == []


def test_sql_injection_no_dedup(make_record):
    records = [make_record(i, ip_address="10.0.0.5", path=f"/s?q={i} OR 1=1") for i in range(4)]
    assert len(detect_sql_injection(records)) == 4


def test_sql_injection_clean_traffic(make_record):
    records = [
        make_record(0, ip_address="10.0.0.5", path="/home", message="page view"),
        make_record(1, ip_address="10.0.0.5", path="/api/users/42"),
    ]
    assert detect_sql_injection(records) == []


# ─── unusual methods ───────────────────────────────────────────────────────────

def test_unusual_method_trace_is_low(make_record):
    record = make_record(ip_address="10.0.0.7", method="TRACE", path="/")

    alerts = detect_unusual_methods([record])

    assert len(alerts) == 1
    assert alerts[0].category == UNUSUAL_METHOD
    assert alerts[0].severity == "low"
    assert alerts[0].method == "TRACE"
    assert alerts[0].path == "/"
    assert alerts[0].message == 'Uncommon HTTP method "TRACE" used by IP 10.0.0.7'


@pytest.mark.parametrize("method", ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"])
def test_common_methods_are_ignored(make_record, method):
    assert detect_unusual_methods([make_record(ip_address="10.0.0.7", method=method)]) == []


def test_unusual_method_requires_ip_and_method(make_record):
    records = [make_record(method="TRACE"), make_record(ip_address="10.0.0.7")]
    assert detect_unusual_methods(records) == []


def test_unusual_method_one_alert_per_record(make_record):
    records = [make_record(i, ip_address="10.0.0.7", method="CONNECT") for i in range(3)]
    assert len(detect_unusual_methods(records)) == 3


# ─── endpoint scanning ─────────────────────────────────────────────────────────

def scan_burst(make_record, span_minutes, n=15, ip="10.0.0.66", offset=0):
    span = timedelta(minutes=span_minutes)
    return [
        make_record(
            timestamp=BASE_TS + timedelta(minutes=offset) + span * i / (n - 1),
            ip_address=ip,
            path=f"/probe/{offset}/{i}",
            method="GET",
        )
        for i in range(n)
    ]


def test_endpoint_scanning_fast_burst(make_record):
    records = scan_burst(make_record, span_minutes=3)

    alerts = detect_endpoint_scanning(group_by_ip(records))

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.category == ENDPOINT_SCANNING
    assert alert.severity == "medium"
    assert alert.count == 15
    assert alert.timestamp == records[-1].timestamp
    assert alert.message == "IP 10.0.0.66 accessed 15 different endpoints within 3.0 minutes"


def test_endpoint_scanning_slow_burst(make_record):
    records = scan_burst(make_record, span_minutes=10)
    assert detect_endpoint_scanning(group_by_ip(records)) == []


def test_endpoint_scanning_needs_full_window(make_record):
    records = scan_burst(make_record, span_minutes=1, n=14)
    assert detect_endpoint_scanning(group_by_ip(records)) == []


def test_endpoint_scanning_requires_distinct_paths(make_record):
    records = scan_burst(make_record, span_minutes=1)
    repeated = records[:-1] + [replace(records[-1], path=records[0].path)]
    assert detect_endpoint_scanning(group_by_ip(repeated)) == []


def test_endpoint_scanning_sorts_before_scanning(make_record):
    records = list(reversed(scan_burst(make_record, span_minutes=2)))
    alerts = detect_endpoint_scanning(group_by_ip(records))
    assert len(alerts) == 1
    assert alerts[0].timestamp == BASE_TS + timedelta(minutes=2)


def test_endpoint_scanning_skips_ahead_after_hit(make_record):
    records = scan_burst(make_record, span_minutes=2, n=15) + scan_burst(
        make_record, span_minutes=2, n=15, offset=3
    )
    alerts = detect_endpoint_scanning(group_by_ip(records))
    assert len(alerts) == 2


def test_endpoint_scanning_per_ip(make_record):
    records = scan_burst(make_record, 1, ip="1.1.1.1")[:8] + scan_burst(make_record, 1, ip="2.2.2.2")[:8]
    assert detect_endpoint_scanning(group_by_ip(records)) == []


# ─── high error rate ───────────────────────────────────────────────────────────

def traffic(make_record, total, errors, status=500):
    return [
        make_record(i, status=status if i < errors else 200, path="/api/items")
        for i in range(total)
    ]


def test_high_error_rate_fifty_percent_is_high(make_record):
    records = traffic(make_record, 10, 5)

    alerts = detect_high_error_rate(records)

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.category == HIGH_ERROR_RATE
    assert alert.severity == "high"
    assert alert.count == 5
    assert "5 out of 10" in alert.message
    assert alert.message == "Server error rate is 50.0% (5 out of 10 requests)"
    assert alert.timestamp == BASE_TS + timedelta(minutes=4)
    assert alert.ip is None


def test_high_error_rate_single_error_suppressed(make_record):
    assert detect_high_error_rate(traffic(make_record, 10, 1)) == []


def test_high_error_rate_needs_minimum_sample(make_record):
    assert detect_high_error_rate(traffic(make_record, 9, 9)) == []


def test_high_error_rate_needs_minimum_count(make_record):
    assert detect_high_error_rate(traffic(make_record, 20, 3)) == []


def test_high_error_rate_medium_band(make_record):
    alerts = detect_high_error_rate(traffic(make_record, 40, 5, status=503))
    assert [a.severity for a in alerts] == ["medium"]
    assert alerts[0].message == "Server error rate is 12.5% (5 out of 40 requests)"


def test_high_error_rate_ignores_missing_status(make_record):
    records = [make_record(i) for i in range(10)]
    assert detect_high_error_rate(records) == []


# ─── engine ────────────────────────────────────────────────────────────────────

def test_detectors_handle_empty_input():
    assert DetectionEngine().run([]) == []
    assert detect_brute_force({}) == []
    assert detect_endpoint_scanning({}) == []
    assert detect_sql_injection([]) == []
    assert detect_unusual_methods([]) == []
    assert detect_high_error_rate([]) == []


def test_engine_combines_all_rules(make_record):
    records = (
        failed_logins(make_record, 5)
        + [make_record(1, ip_address="10.0.0.5", path="/s?q=1 OR 1=1", status=200)]
        + [make_record(2, ip_address="10.0.0.7", method="TRACE", status=200)]
    )

    alerts = DetectionEngine().run(records)

    assert [a.category for a in alerts] == [BRUTE_FORCE, SQL_INJECTION, UNUSUAL_METHOD]


def test_engine_is_idempotent(make_record):
    records = failed_logins(make_record, 7) + scan_burst(make_record, 2) + traffic(make_record, 10, 6)
    engine = DetectionEngine()

    assert engine.run(records) == engine.run(records)
