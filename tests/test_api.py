import asyncio
import time
from datetime import datetime, timedelta

from fastapi.testclient import TestClient

from loadprobe.api.jobs import RunManager
from loadprobe.api.main import app
from loadprobe.models import Target

from helpers import HangingServer, StorefrontServer

client = TestClient(app)


def test_list_presets():
    resp = client.get("/api/presets")
    assert resp.status_code == 200
    assert resp.json() == ["api", "full", "pages"]


def test_invalid_base_url_is_rejected_before_running():
    resp = client.post("/api/runs", json={"base_url": "ftp://shop"})
    assert resp.status_code == 422
    assert "http or https" in resp.json()["detail"]


def test_non_positive_concurrency_is_rejected():
    resp = client.post("/api/runs", json={"base_url": "http://localhost:3000", "concurrency": 0})
    assert resp.status_code == 422


def test_unknown_run_is_404():
    assert client.get("/api/runs/does-not-exist").status_code == 404
    assert client.delete("/api/runs/does-not-exist").status_code == 404


def test_run_manager_completes_run_with_report(target_a, target_b):
    async def scenario():
        manager = RunManager()
        async with StorefrontServer() as server:
            run_id = manager.create_run(
                server.base_url,
                [target_a, target_b],
                {"requests_per_target": 2, "concurrency": 2, "timeout_ms": 2000},
            )
            run = await manager.wait(run_id)
        manager._cleanup_task.cancel()
        return run

    run = asyncio.run(scenario())
    assert run.status == "completed"
    assert run.total_requests == run.completed_requests == 4
    assert run.report["summary"]["successes"] == 2
    assert set(run.report["endpoints"]) == {"/ok", "/broken"}


def test_prune_removes_only_old_finished_runs():
    async def scenario():
        manager = RunManager()
        async with StorefrontServer() as server:
            run_id = manager.create_run(server.base_url, [Target("/ok")], {"requests_per_target": 1})
            await manager.wait(run_id)
        manager._cleanup_task.cancel()
        assert manager.prune() == []
        assert manager.prune(now=datetime.now() + timedelta(hours=25)) == [run_id]
        return manager

    manager = asyncio.run(scenario())
    assert manager.list_runs() == []


def test_post_run_over_http_runs_to_completion(unused_port):
    with TestClient(app) as http:
        resp = http.post(
            "/api/runs",
            json={
                "base_url": f"http://127.0.0.1:{unused_port}",
                "targets": [{"path": "/api/products"}, {"path": "/", "kind": "page"}],
                "requests_per_target": 2,
                "concurrency": 2,
                "timeout_ms": 500,
            },
        )
        assert resp.status_code == 200
        run_id = resp.json()["run_id"]

        deadline = time.monotonic() + 10
        run = http.get(f"/api/runs/{run_id}").json()
        while run["status"] in ("pending", "running") and time.monotonic() < deadline:
            time.sleep(0.05)
            run = http.get(f"/api/runs/{run_id}").json()

        assert run["status"] == "completed"
        assert run["total_requests"] == run["completed_requests"] == 4
        assert run["progress"] == 100.0
        # nothing listens on the port, so every request is a network failure
        assert run["report"]["summary"]["failures"] == 4
        assert run["report"]["endpoints"]["/"]["status_code_counts"] == {"error": 2}
        assert run_id in [r["id"] for r in http.get("/api/runs").json()]

        assert http.delete(f"/api/runs/{run_id}").json() == {"status": "deleted"}
        assert http.get(f"/api/runs/{run_id}").status_code == 404


def test_completed_requests_advance_while_running():
    targets = [Target("/a"), Target("/b")]

    async def scenario():
        manager = RunManager()
        async with HangingServer() as server:
            run_id = manager.create_run(
                server.base_url,
                targets,
                {"requests_per_target": 2, "concurrency": 1, "timeout_ms": 100},
            )
            run = manager.get_run(run_id)
            while run.completed_requests == 0:
                await asyncio.sleep(0.01)
            seen = (run.status, run.completed_requests, run.progress)
            await asyncio.wait_for(manager.wait(run_id), timeout=5)
        manager._cleanup_task.cancel()
        return seen, run

    (status, completed, progress), run = asyncio.run(scenario())
    assert status == "running"
    assert 0 < completed < run.total_requests == 4
    assert progress == completed / 4 * 100
    assert run.status == "completed"
    assert run.completed_requests == 4


def test_delete_cancels_run_in_progress():
    targets = [Target("/a"), Target("/b")]

    async def scenario():
        manager = RunManager()
        async with HangingServer() as server:
            run_id = manager.create_run(
                server.base_url,
                targets,
                {"requests_per_target": 3, "concurrency": 1, "timeout_ms": 200},
            )
            run = manager.get_run(run_id)
            event = manager._cancel_events[run_id]
            task = manager._tasks[run_id]

            # first batch is in flight
            await asyncio.sleep(0.05)
            manager.delete_run(run_id)
            assert event.is_set()
            assert manager.get_run(run_id) is None

            await asyncio.wait_for(task, timeout=5)
        manager._cleanup_task.cancel()
        return manager, run

    manager, run = asyncio.run(scenario())
    assert manager.list_runs() == []
    assert run.status == "completed"
    # the batch in flight finished, nothing after it was sent
    assert run.completed_requests == 1
    assert run.report["summary"]["cancelled"] is True
    assert run.report["summary"]["timeouts"] == 1
