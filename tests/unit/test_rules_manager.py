"""
Unit tests for loading automation rules from YAML.
"""

from pathlib import Path

import pytest

from src.assignment.domain import DEFAULT_RULE_SET
from src.assignment.infrastructure import AutomationRulesManager
from src.core import ConfigurationException

VALID_RULES = """
rules:
  - name: VIP
    conditions:
      - {kind: priority, values: [high]}
    actions:
      - {kind: add_label, label: vip}
"""

REPO_RULES = Path(__file__).resolve().parents[2] / "automation_rules.yaml"


class TestAutomationRulesManager:
    """Tests for AutomationRulesManager."""

    @pytest.mark.unit
    def test_missing_file_keeps_defaults(self, tmp_path):
        manager = AutomationRulesManager(tmp_path / "absent.yaml")

        assert manager.load() == DEFAULT_RULE_SET
        assert manager.get_rules() == DEFAULT_RULE_SET

    @pytest.mark.unit
    def test_load_replaces_defaults(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(VALID_RULES)

        manager = AutomationRulesManager(path)
        manager.load()

        assert [r.name for r in manager.get_rules().rules] == ["VIP"]

    @pytest.mark.unit
    def test_invalid_reload_keeps_previous_rules(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(VALID_RULES)
        manager = AutomationRulesManager(path)
        manager.load()

        path.write_text("rules:\n  - name: BROKEN\n    conditions: []\n    actions: []\n")

        assert manager.reload() is False
        assert [r.name for r in manager.get_rules().rules] == ["VIP"]

    @pytest.mark.unit
    def test_invalid_yaml_on_load_raises(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules: [unclosed")

        with pytest.raises(ConfigurationException):
            AutomationRulesManager(path).load()

    @pytest.mark.unit
    def test_shipped_rule_file_matches_builtin_table(self):
        assert AutomationRulesManager.parse(REPO_RULES) == DEFAULT_RULE_SET
