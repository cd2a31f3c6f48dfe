import logging

import pytest

from utils.utils import (PerformanceMetrics, PerformanceMonitor, create_performance_report,
                         generate_secure_id, secure_delete, setup_logging)


def test_monitor_summary():
    monitor = PerformanceMonitor()
    for _ in range(3):
        with monitor.start_operation("witness generation"):
            pass
    with pytest.raises(RuntimeError):
        with monitor.start_operation("proof generation"):
            raise RuntimeError("boom")

    summary = monitor.get_summary()
    assert summary['total_operations'] == 4
    assert summary['operations']['witness generation']['count'] == 3
    assert summary['operations']['witness generation']['failures'] == 0
    assert summary['operations']['proof generation']['failures'] == 1
    assert summary['operations']['proof generation']['peak_memory_mb'] > 0

    report = create_performance_report(monitor)
    assert "witness generation: count=3" in report

    monitor.reset()
    assert monitor.get_summary()['total_operations'] == 0


def test_empty_report():
    assert "Total operations: 0" in create_performance_report(PerformanceMonitor())


def test_secure_ids_are_unique():
    ids = {generate_secure_id() for _ in range(200)}
    assert len(ids) == 200
    assert generate_secure_id("req").startswith("req_")


def test_secure_delete(tmp_path):
    target = tmp_path / "Prover.toml"
    target.write_text('age = "20"\n')
    assert secure_delete(target)
    assert not target.exists()
    assert secure_delete(target)


def test_secure_delete_reports_failure(tmp_path):
    # A directory cannot be opened for overwrite
    assert secure_delete(tmp_path) is False
    assert tmp_path.exists()


def test_setup_logging_writes_to_file(tmp_path):
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        setup_logging("DEBUG", log_dir=tmp_path / "logs")
        logging.getLogger("proof_server.test").debug("hello from test")
        for handler in root.handlers:
            handler.flush()

        files = list((tmp_path / "logs").glob("proof_server_*.log"))
        assert len(files) == 1
        assert "hello from test" in files[0].read_text()
        assert root.level == logging.DEBUG
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved[0]:
            root.addHandler(handler)
        root.setLevel(saved[1])


def test_monitor_memory_is_bounded():
    monitor = PerformanceMonitor(history=50)
    for i in range(5000):
        monitor.record_metric(PerformanceMetrics(
            operation="proof generation", duration_seconds=(i % 10) / 10,
            memory_mb=100.0 + i % 7, timestamp=float(i)))

    assert len(monitor.recent["proof generation"]) == 50
    stats = monitor.get_summary()['operations']['proof generation']
    assert stats['count'] == 5000
    assert stats['min_duration'] == 0.0
    assert stats['max_duration'] == pytest.approx(0.9)
    assert stats['avg_duration'] == pytest.approx(0.45)
    assert stats['std_duration'] == pytest.approx(0.2872, abs=1e-3)
    assert stats['peak_memory_mb'] == 106.0
