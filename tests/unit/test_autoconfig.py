from __future__ import annotations

import pytest

from autoconfig.analyzer import Thresholds, analyze, explain, find_sensitive
from autoconfig.options import AutoConfigMode, PersistenceOptions, compose
from codec.compression import CompressionAlgorithm
from common import canonical
from common.errors import EncodeError


def _sized(n: int) -> dict:
    """A non-sensitive value whose canonical JSON is exactly n characters."""
    base = canonical.dumps({"note": ""})
    return {"note": "a" * (n - len(base))}


def test_password_example_encrypts_and_stays_out_of_url():
    plan = analyze({"password": "x", "note": "y"})
    assert plan.should_encrypt is True
    assert plan.persist_in_url is False
    assert plan.persist_offline is True
    assert "password" in plan.sensitive_matches
    assert any("Sensitive fields detected" in r for r in plan.reasoning)


def test_small_plain_value_goes_in_url_uncompressed():
    plan = analyze({"count": 0, "message": "hi"})
    assert not plan.should_compress
    assert plan.compression_algorithm is CompressionAlgorithm.NONE
    assert not plan.should_encrypt
    assert plan.persist_in_url
    assert not plan.persist_offline


def test_thresholds_are_exclusive_bounds():
    assert not analyze(_sized(500)).should_compress
    at_501 = analyze(_sized(501))
    assert at_501.should_compress
    assert at_501.compression_algorithm is CompressionAlgorithm.FAST

    strong = analyze(_sized(5001))
    assert strong.compression_algorithm is CompressionAlgorithm.STRONG

    assert analyze(_sized(2000)).persist_in_url
    assert not analyze(_sized(2001)).persist_in_url
    assert analyze(_sized(2001)).persist_offline

    assert not analyze(_sized(1000)).persist_offline
    assert analyze(_sized(1001)).persist_offline


def test_compression_decision_is_monotonic_in_size():
    decisions = [analyze(_sized(n)).should_compress for n in range(400, 700, 7)]
    first_true = decisions.index(True)
    assert all(decisions[first_true:])
    assert not any(decisions[:first_true])


def test_sensitivity_is_monotonic_in_field_presence():
    bases = [{}, {"count": 1}, {"title": "groceries", "items": [1, 2]}, _sized(300), _sized(3000)]
    for base in bases:
        assert not analyze(base).should_encrypt
        with_secret = analyze({**base, "password": "x"})
        assert with_secret.should_encrypt
        assert not with_secret.persist_in_url

    sensitive = {"apiToken": "t"}
    extras = [{"note": "y"}, {"count": 3}, {"rows": [{"id": i, "label": "same"} for i in range(300)]}]
    for extra in extras:
        plan = analyze({**sensitive, **extra})
        assert plan.should_encrypt
        assert not plan.persist_in_url


def test_denylist_matches_private_but_not_pin_substrings():
    assert find_sensitive({"privateKey": "k"}) == ("key", "private")
    assert find_sensitive({"shipping": "mapping", "typing": True}) == ()


def test_custom_thresholds():
    t = Thresholds(compress_min=10, strong_min=20, url_max=30, offline_min=25)
    plan = analyze(_sized(26), t)
    assert plan.should_compress
    assert plan.compression_algorithm is CompressionAlgorithm.STRONG
    assert plan.persist_in_url
    assert plan.persist_offline


def test_reasoning_order_is_compression_encryption_url_offline():
    plan = analyze(_sized(600))
    assert len(plan.reasoning) == 5
    assert "compression" in plan.reasoning[0]
    assert "fast compression" in plan.reasoning[1]
    assert "encryption" in plan.reasoning[2]
    assert "URL" in plan.reasoning[3]
    assert "offline" in plan.reasoning[4]


def test_sensitive_scan_covers_nested_keys_and_values():
    assert find_sensitive({"user": {"apiKey": 1}}) == ("key",)
    assert find_sensitive([{"note": "my Credit Card"}]) == ("card", "credit")
    assert find_sensitive({"count": 1, "title": "groceries"}) == ()


def test_analyze_is_pure():
    value = {"list": list(range(300)), "secret": "s"}
    assert analyze(value) == analyze(value)


def test_analyze_rejects_unserializable():
    with pytest.raises(EncodeError):
        analyze({"v": object()})


def test_explain_lists_decisions():
    text = explain({"password": "x"})
    assert "encryption:  enabled" in text
    assert "url:         disabled" in text
    assert "Sensitive fields detected" in text


def test_compose_binding_fills_unset_fields_from_plan():
    plan = analyze({"password": "x"})
    resolved = compose(None, plan, AutoConfigMode.BINDING)
    assert resolved.encrypt is True
    assert resolved.url is False
    assert resolved.offline is True


def test_compose_explicit_offline_wins_over_plan():
    plan = analyze({"count": 0})
    assert plan.persist_offline is False
    resolved = compose(PersistenceOptions(offline=True), plan, "binding")
    assert resolved.offline is True
    assert any("Explicit offline=True overrides" in r for r in resolved.reasoning)


def test_compose_explicit_false_is_never_overridden():
    plan = analyze({"password": "x"})
    resolved = compose(PersistenceOptions(encrypt=False, url=True), plan, AutoConfigMode.BINDING)
    assert resolved.encrypt is False
    assert resolved.url is True


def test_compose_advisory_uses_defaults_but_keeps_reasoning():
    plan = analyze({"password": "x"})
    resolved = compose(None, plan, AutoConfigMode.ADVISORY)
    assert resolved.encrypt is False
    assert resolved.url is True
    assert resolved.offline is False
    assert resolved.plan is plan
    assert resolved.reasoning == plan.reasoning


def test_compose_off_without_plan_uses_defaults():
    resolved = compose(PersistenceOptions(compress=True), None, AutoConfigMode.OFF)
    assert resolved.compress is True
    assert resolved.algorithm is CompressionAlgorithm.FAST
    assert resolved.encrypt is False
    assert resolved.reasoning == []


def test_compose_algorithm_follows_plan_then_explicit():
    plan = analyze(_sized(6000))
    assert compose(None, plan).algorithm is CompressionAlgorithm.STRONG
    explicit = PersistenceOptions(algorithm=CompressionAlgorithm.FAST)
    assert compose(explicit, plan).algorithm is CompressionAlgorithm.FAST
