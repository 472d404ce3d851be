import asyncio
import json

import pytest

from loadprobe import cli

from helpers import StorefrontServer


@pytest.fixture(autouse=True)
def no_signal_handlers(monkeypatch):
    monkeypatch.setattr(cli, "GracefulKiller", lambda event: None)


def test_defaults_come_from_environment(monkeypatch):
    monkeypatch.setenv("LOADPROBE_BASE_URL", "http://shop.test:8080")
    monkeypatch.setenv("LOADPROBE_TIMEOUT_MS", "750")
    args = cli.parse_args([])
    assert args.base_url == "http://shop.test:8080"
    assert args.timeout_ms == 750
    assert args.fail_on_critical


def test_configuration_error_exits_2(tmp_path):
    report = tmp_path / "report.json"
    args = cli.parse_args(["--base-url", "nope", "--report", str(report)])
    assert asyncio.run(cli.run(args)) == cli.EXIT_CONFIG_ERROR
    assert not report.exists()


def test_run_prints_report_and_writes_json(tmp_path, capsys):
    targets = tmp_path / "targets.json"
    targets.write_text(json.dumps([{"path": "/ok"}, {"path": "/broken"}]))
    report = tmp_path / "report.json"

    async def scenario():
        async with StorefrontServer() as server:
            args = cli.parse_args([
                "--base-url", server.base_url,
                "--targets", str(targets),
                "-n", "2", "-c", "2", "--seed", "3",
                "--report", str(report),
            ])
            return await cli.run(args)

    assert asyncio.run(scenario()) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "PERFORMANCE TEST REPORT" in out
    assert "Total Requests: 4" in out

    data = json.loads(report.read_text())
    assert data["summary"]["requests"] == 4
    assert data["endpoints"]["/broken"]["failures"] == 2


def test_critical_target_fails_the_run(tmp_path, capsys):
    thresholds = tmp_path / "thresholds.json"
    # any latency at all is critical with these ceilings
    thresholds.write_text(json.dumps({"api": {"optimal": 0.0001, "acceptable": 0.0001, "degraded": 0.0001, "critical": 0.0001}}))

    async def scenario(extra):
        async with StorefrontServer() as server:
            args = cli.parse_args([
                "--base-url", server.base_url, "--preset", "api", "-n", "1",
                "--thresholds", str(thresholds), "--no-report", "--timeout-ms", "2000",
            ] + extra)
            return await cli.run(args)

    assert asyncio.run(scenario([])) == cli.EXIT_CRITICAL
    assert asyncio.run(scenario(["--no-fail-on-critical"])) == cli.EXIT_OK


@pytest.mark.parametrize("value", ["abc", "nan", "inf", "-5", "0"])
def test_bad_timeout_from_environment_exits_2(monkeypatch, capsys, value):
    monkeypatch.setenv("LOADPROBE_TIMEOUT_MS", value)
    with pytest.raises(SystemExit) as exc:
        cli.parse_args([])
    assert exc.value.code == cli.EXIT_CONFIG_ERROR
    assert "--timeout-ms" in capsys.readouterr().err


def test_batch_delay_and_server_check_options(monkeypatch):
    monkeypatch.setenv("LOADPROBE_BATCH_DELAY_MS", "250")
    args = cli.parse_args(["--skip-server-check", "--quiet"])
    assert args.batch_delay_ms == 250
    assert args.skip_server_check
    assert args.quiet

    with pytest.raises(SystemExit):
        cli.parse_args(["--batch-delay-ms", "-1"])
    with pytest.raises(SystemExit):
        cli.parse_args(["--debug", "--quiet"])


def test_unreachable_server_exits_2_without_a_report(tmp_path, unused_port, capsys):
    report = tmp_path / "report.json"
    args = cli.parse_args(["--base-url", f"http://127.0.0.1:{unused_port}", "--report", str(report)])
    assert asyncio.run(cli.run(args)) == cli.EXIT_CONFIG_ERROR
    assert not report.exists()
    assert "PERFORMANCE TEST REPORT" not in capsys.readouterr().out

    # without the check the run goes ahead and records the failures
    args = cli.parse_args([
        "--base-url", f"http://127.0.0.1:{unused_port}", "-n", "1",
        "--skip-server-check", "--report", str(report), "--no-fail-on-critical",
    ])
    assert asyncio.run(cli.run(args)) == cli.EXIT_OK
    assert json.loads(report.read_text())["summary"]["failures"] == 8
