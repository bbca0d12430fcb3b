"""
Tests for the startup Self-Test module.

Connectivity probes and sleeps are injected, so no socket is ever opened.
"""

import asyncio
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from magpie.config import PipelineConfig, ValidationConfig
from magpie.exceptions import ConnectivityError
from magpie.self_test import (
    DEFAULT_CONNECTIVITY_HOSTS,
    ConfigReport,
    ProbeResult,
    SelfTest,
    SelfTestResult,
    render_self_test,
    run_self_test,
)


class ScriptedProbe:
    """Probe that fails for the first ``failures`` calls."""

    def __init__(self, failures: int = 0, error: BaseException = None) -> None:
        self.failures = failures
        self.error = error or OSError("Network is unreachable")
        self.calls: list[tuple[str, int, float]] = []

    async def __call__(self, host: str, port: int, timeout: float) -> None:
        self.calls.append((host, port, timeout))
        if len(self.calls) <= self.failures:
            raise self.error


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_config(tmpdir: str, **kwargs) -> PipelineConfig:
    source_file = Path(tmpdir) / "sources.txt"
    source_file.write_text("https://lists.example.test/hosts.txt\n", encoding="utf-8")
    return PipelineConfig(
        source_file=source_file,
        output_file=Path(tmpdir) / "aggregated.txt",
        **kwargs,
    )


class TestConnectivity:
    """Connectivity is established by any reachable host."""

    def test_default_hosts(self) -> None:
        config = PipelineConfig(source_file=Path("sources.txt"))

        assert SelfTest(config).hosts == DEFAULT_CONNECTIVITY_HOSTS

    def test_first_reachable_host_is_enough(self) -> None:
        probe = ScriptedProbe()
        self_test = SelfTest(PipelineConfig(source_file=Path("s.txt")), probe=probe)

        assert asyncio.run(self_test.check_connectivity())
        assert probe.calls == [("1.1.1.1", 53, SelfTest.CONNECTIVITY_TIMEOUT)]

    def test_falls_through_to_later_hosts(self) -> None:
        probe = ScriptedProbe(failures=2)
        self_test = SelfTest(PipelineConfig(source_file=Path("s.txt")), probe=probe)

        assert asyncio.run(self_test.check_connectivity())
        assert [host for host, _, _ in probe.calls] == ["1.1.1.1", "8.8.8.8", "9.9.9.9"]

    def test_timeouts_count_as_failures(self) -> None:
        probe = ScriptedProbe(failures=10, error=asyncio.TimeoutError())
        self_test = SelfTest(PipelineConfig(source_file=Path("s.txt")), probe=probe)

        assert not asyncio.run(self_test.check_connectivity())

    @given(down_checks=st.integers(min_value=0, max_value=4))
    @settings(max_examples=20, deadline=None)
    def test_wait_for_connection_recovers(self, down_checks: int) -> None:
        """
        Property: waiting stops at the first successful check.

        *For any* number of failed checks below the limit, the wait returns
        after sleeping once per failed check.
        """
        hosts = ["1.1.1.1:53"]
        probe = ScriptedProbe(failures=down_checks)
        sleep = FakeSleep()
        self_test = SelfTest(
            PipelineConfig(source_file=Path("s.txt")), hosts=hosts, probe=probe, sleep=sleep
        )

        asyncio.run(self_test.wait_for_connection())

        assert len(probe.calls) == down_checks + 1
        assert sleep.delays == [SelfTest.RETRY_DELAY] * down_checks

    def test_wait_for_connection_gives_up(self) -> None:
        probe = ScriptedProbe(failures=100)
        sleep = FakeSleep()
        self_test = SelfTest(
            PipelineConfig(source_file=Path("s.txt")),
            hosts=["1.1.1.1:53"],
            probe=probe,
            sleep=sleep,
        )

        with pytest.raises(ConnectivityError) as exc_info:
            asyncio.run(self_test.wait_for_connection())

        assert exc_info.value.code == "no_connectivity"
        assert len(probe.calls) == SelfTest.MAX_RETRIES
        assert len(sleep.delays) == SelfTest.MAX_RETRIES - 1

    def test_ensure_connectivity_skips_wait_when_online(self) -> None:
        sleep = FakeSleep()
        self_test = SelfTest(
            PipelineConfig(source_file=Path("s.txt")), probe=ScriptedProbe(), sleep=sleep
        )

        asyncio.run(self_test.ensure_connectivity())

        assert sleep.delays == []

    def test_custom_host_ports(self) -> None:
        probe = ScriptedProbe()
        config = PipelineConfig(
            source_file=Path("s.txt"), connectivity_hosts=["[2606:4700::1111]:5353"]
        )

        asyncio.run(SelfTest(config, probe=probe).check_connectivity())

        assert probe.calls[0][:2] == ("2606:4700::1111", 5353)


class TestConfigValidation:
    """validate_config reports every problem it finds."""

    def test_valid_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = make_config(tmpdir, validation=ValidationConfig(resolvers=["1.1.1.1:53"]))

            result = SelfTest(config).validate_config()

            assert result.valid
            assert result.errors == []

    def test_missing_source_and_bad_resolver(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = PipelineConfig(
                source_file=Path(tmpdir) / "missing.txt",
                output_file=Path(tmpdir) / "out" / "aggregated.txt",
                validation=ValidationConfig(resolvers=["dns.example.test:53", "1.1.1.1:70000"]),
            )

            result = SelfTest(config).validate_config()

            assert not result.valid
            assert any("Source file not found" in e for e in result.errors)
            assert any("Output directory does not exist" in e for e in result.errors)
            assert "Invalid resolver address: dns.example.test:53" in result.errors
            assert "Invalid resolver port: 1.1.1.1:70000" in result.errors

    def test_system_resolver_warning(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            result = SelfTest(make_config(tmpdir)).validate_config()

            assert result.valid
            assert any("system resolver" in w for w in result.warnings)

    def test_worker_counts_must_be_positive(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = make_config(tmpdir, validation=ValidationConfig(concurrency=0))

            result = SelfTest(config).validate_config()

            assert not result.valid

    def test_run_reports_endpoints(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            probe = ScriptedProbe(failures=1)
            self_test = SelfTest(make_config(tmpdir), probe=probe)

            result = asyncio.run(self_test.run())

            assert result.success
            assert len(result.endpoint_results) == 3
            assert len(result.failed_endpoints) == 1
            assert "Socket error" in result.failed_endpoints[0].error

    def test_run_skips_probes_for_invalid_config(self) -> None:
        probe = ScriptedProbe()
        config = PipelineConfig(source_file=Path("/nonexistent/sources.txt"))

        result = asyncio.run(SelfTest(config, probe=probe).run())

        assert not result.success
        assert probe.calls == []


class TestRenderSelfTest:
    def test_report_lists_problems_and_probes(self) -> None:
        result = SelfTestResult(
            success=False,
            config_validation=ConfigReport(
                valid=True, warnings=["No resolvers configured, the system resolver will be used"]
            ),
            endpoint_results=[
                ProbeResult("1.1.1.1:53", False, 3000.0, "No answer within 3.0s"),
            ],
            total_duration_ms=3001.0,
        )

        text = render_self_test(result)

        assert "✓ Configuration is valid" in text
        assert "    - No resolvers configured" in text
        assert "  ✗ 1.1.1.1:53 (3000ms)" in text
        assert "No answer within 3.0s" in text
        assert text.endswith("✗ Self-test failed\n  Duration: 3001ms")

    def test_run_self_test_prints_report(self, capsys) -> None:
        config = PipelineConfig(source_file=Path("/nonexistent/sources.txt"))

        result = asyncio.run(run_self_test(config))

        assert not result.success
        assert "✗ Configuration is invalid" in capsys.readouterr().out
