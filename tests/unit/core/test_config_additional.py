import importlib
import json
import os
import sys

import pytest


@pytest.mark.usefixtures("monkeypatch")
class TestConfigEnvPreprocessing:
    """Cover *studyprep.core.config* environment preprocessing executed at import-time."""

    def _reimport(self, monkeypatch: pytest.MonkeyPatch):
        # monkeypatch restores the original module object afterwards
        monkeypatch.delitem(sys.modules, "studyprep.core.config")
        return importlib.import_module("studyprep.core.config")

    def test_csv_strategies_are_normalised_to_json(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DOWNLOAD_STRATEGIES", "Plain, alternate")

        cfg = self._reimport(monkeypatch)

        assert json.loads(os.environ["DOWNLOAD_STRATEGIES"]) == ["Plain", "alternate"]
        settings = cfg.Settings(_env_file=None)
        assert settings.download_strategies == ["plain", "alternate"]

    def test_json_strategies_are_left_untouched(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DOWNLOAD_STRATEGIES", '["hardened"]')

        self._reimport(monkeypatch)

        assert os.environ["DOWNLOAD_STRATEGIES"] == '["hardened"]'

    def test_strategy_names_are_coerced_from_csv_argument(self) -> None:
        cfg = importlib.import_module("studyprep.core.config")

        settings = cfg.Settings(download_strategies="HARDENED, plain")

        assert settings.download_strategies == ["hardened", "plain"]

    def test_unknown_strategy_message_names_the_strategy(self) -> None:
        cfg = importlib.import_module("studyprep.core.config")

        with pytest.raises(ValueError, match="carrier-pigeon"):
            cfg.Settings(download_strategies=["hardened", "carrier-pigeon"])
