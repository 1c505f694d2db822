"""Tests for the JSONL event logger."""

import json
import threading

from swarm_fleet.logger import FleetLogger, LogLevel, clear_logger_cache, get_logger


class TestFleetLogger:
    """Tests for writing and reading event logs."""

    def test_writes_component_file(self, fleet_config):
        logger = FleetLogger("orchestrator", fleet_config)
        logger.log("work_started", {"agent_id": 1})

        files = logger.get_log_files()
        assert len(files) == 1
        assert files[0].parent == fleet_config.logs_path
        assert files[0].name.startswith("orchestrator-")

        entry = json.loads(files[0].read_text().strip())
        assert entry["event_type"] == "work_started"
        assert entry["component"] == "orchestrator"
        assert entry["level"] == LogLevel.INFO
        assert entry["data"] == {"agent_id": 1}
        assert entry["timestamp"].endswith("Z")

    def test_level_helpers(self, fleet_config):
        logger = FleetLogger("test", fleet_config)
        logger.debug("a")
        logger.info("b")
        logger.warn("c")
        logger.error("d")

        levels = [e["level"] for e in logger.read_logs()]
        assert levels == ["debug", "info", "warn", "error"]

    def test_read_logs_filters(self, fleet_config):
        logger = FleetLogger("test", fleet_config)
        logger.info("tick")
        logger.warn("paused")
        logger.info("tick")

        assert len(logger.read_logs(event_type="tick")) == 2
        assert [e["event_type"] for e in logger.read_logs(level="warn")] == ["paused"]
        assert len(logger.read_logs(limit=1)) == 1

    def test_read_logs_skips_corrupt_lines(self, fleet_config):
        logger = FleetLogger("test", fleet_config)
        logger.info("ok")
        with open(logger._get_log_path(), "a") as f:
            f.write("{broken\n\n")

        assert [e["event_type"] for e in logger.read_logs()] == ["ok"]

    def test_read_missing_date(self, fleet_config):
        assert FleetLogger("test", fleet_config).read_logs(date="1999-01-01") == []

    def test_no_log_dir(self, fleet_config):
        assert FleetLogger("test", fleet_config).get_log_files() == []

    def test_concurrent_writes_stay_line_delimited(self, fleet_config):
        logger = FleetLogger("test", fleet_config)

        def write(n):
            for i in range(20):
                logger.info("event", {"writer": n, "i": i})

        threads = [threading.Thread(target=write, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(logger.read_logs()) == 80

    def test_non_json_values_are_stringified(self, fleet_config, tmp_path):
        logger = FleetLogger("test", fleet_config)
        logger.info("path", {"where": tmp_path})
        assert logger.read_logs()[0]["data"]["where"] == str(tmp_path)


class TestLoggerCache:
    def test_get_logger_is_cached(self, fleet_config):
        assert get_logger("a", fleet_config) is get_logger("a", fleet_config)

    def test_clear_cache(self, fleet_config):
        first = get_logger("a", fleet_config)
        clear_logger_cache()
        assert get_logger("a", fleet_config) is not first
