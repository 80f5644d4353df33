"""
Assignment External Integrations
=================================

YAML automation-rule file with hot reload via watchdog.
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.assignment.application.services import IRuleSetProvider
from src.assignment.domain import DEFAULT_RULE_SET, RuleSet
from src.core import ConfigurationException
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class RulesFileHandler(FileSystemEventHandler):
    """Watchdog event handler for automation rule file changes."""

    def __init__(self, manager: "AutomationRulesManager", rules_path: Path):
        self.manager = manager
        self.rules_path = rules_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.rules_path.resolve():
            logger.info("Automation rules file changed", extra={"path": event.src_path})
            self.manager.reload()

    on_created = on_modified


class AutomationRulesManager(IRuleSetProvider):
    """
    Thread-safe automation rule table with hot-reload support.

    Starts from the built-in rules; a YAML file, when present, replaces
    them. A file that fails validation never replaces a good table.

    File format:
        rules:
          - name: HIGH_PRIORITY
            conditions:
              - {kind: priority, values: [high]}
            actions:
              - {kind: add_label, label: urgent}
    """

    def __init__(self, path: Optional[Path] = None, default: RuleSet = DEFAULT_RULE_SET):
        self._rules = default
        self._lock = threading.Lock()
        self._path = path
        self._observer = None

    @staticmethod
    def parse(path: Path) -> RuleSet:
        """
        Load and validate a rule file.

        Raises:
            ConfigurationException: unreadable YAML or invalid rules
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return RuleSet.model_validate(data)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            raise ConfigurationException(
                f"Invalid automation rules file: {path}",
                {"error": str(e)}
            ) from e

    def load(self, path: Optional[Path] = None) -> RuleSet:
        """Initial load. A missing file keeps the built-in rules."""
        if path is not None:
            self._path = path
        if self._path is None or not self._path.exists():
            logger.info(
                "Automation rules file not found, using built-in rules",
                extra={"path": str(self._path)}
            )
            return self._rules

        rules = self.parse(self._path)
        with self._lock:
            self._rules = rules
        logger.info("Automation rules loaded", extra={"rules": [r.name for r in rules.rules]})
        return rules

    def reload(self) -> bool:
        """Reload from file; on failure the previous table stays active."""
        if self._path is None:
            return False

        try:
            rules = self.parse(self._path)
        except ConfigurationException as e:
            logger.error(
                "Failed to reload automation rules, keeping previous table",
                extra={"error": e.details.get("error", e.message)}
            )
            return False

        with self._lock:
            self._rules = rules
        logger.info("Automation rules reloaded", extra={"rules": [r.name for r in rules.rules]})
        return True

    def get_rules(self) -> RuleSet:
        with self._lock:
            return self._rules

    def start_watching(self) -> None:
        """
        Start watching the rule file's directory for changes.

        Skipped when no file exists or the platform can't watch files.
        """
        if self._path is None or not self._path.exists():
            logger.info("Automation rules file doesn't exist, skipping file watch")
            return

        try:
            self._observer = Observer()
            handler = RulesFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.resolve().parent), recursive=False)
            self._observer.start()
            logger.info("Started watching automation rules", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static rules", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
