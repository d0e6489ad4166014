"""Unit tests for ``.tte`` import and export helpers."""
from __future__ import annotations

import pytest

from timetravel.application.import_export import export_events, import_events
from timetravel.domain.exceptions import CorruptData, InvalidRange


class TestExport:
    def test_full_log(self, scenario_log):
        assert export_events(scenario_log) == scenario_log.serialize()

    def test_prefix(self, scenario_log):
        log = import_events(export_events(scenario_log, upto=3))
        assert len(log) == 3
        assert log.events() == scenario_log.slice(0, 3)

    def test_empty_prefix(self, scenario_log):
        assert len(import_events(export_events(scenario_log, upto=0))) == 0

    def test_prefix_beyond_end(self, scenario_log):
        with pytest.raises(InvalidRange):
            export_events(scenario_log, upto=6)


class TestImport:
    def test_truncated_stream(self, scenario_log):
        data = scenario_log.serialize()
        with pytest.raises(CorruptData):
            import_events(data[:-10])

    def test_imported_log_is_open(self, scenario_log, make_event):
        log = import_events(scenario_log.serialize())
        assert log.append(make_event()) == 5
