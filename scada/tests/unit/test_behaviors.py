"""
Unit tests for tag behavior merging
"""
import pytest

from scada.services.tagbus import Behavior, BehaviorRegistry


class TestBehaviorRegistry:

    @pytest.mark.unit
    def test_defaults_defined(self):
        registry = BehaviorRegistry()
        assert registry.names() == ["auto-refresh", "fullscreen-capable", "live", "metrics"]

    @pytest.mark.unit
    def test_later_name_wins(self):
        registry = BehaviorRegistry()

        merged = registry.merge(["auto-refresh", "live"])
        assert merged == Behavior(refresh=True, interval=5.0, fullscreen=False)

        merged = registry.merge(["live", "auto-refresh"])
        assert merged.interval == 30.0

    @pytest.mark.unit
    def test_unset_fields_do_not_override(self):
        registry = BehaviorRegistry()

        merged = registry.merge(["metrics", "fullscreen-capable"])

        assert merged == Behavior(refresh=True, interval=10.0, fullscreen=True)

    @pytest.mark.unit
    def test_unknown_names_ignored(self):
        registry = BehaviorRegistry()
        assert registry.merge(["nope"]) == Behavior(refresh=False, interval=None, fullscreen=False)

    @pytest.mark.unit
    def test_define_custom(self):
        registry = BehaviorRegistry({})
        registry.define("slow", Behavior(refresh=True, interval=60.0))
        assert registry.merge(["slow"]).interval == 60.0
        assert registry.get("live") is None
