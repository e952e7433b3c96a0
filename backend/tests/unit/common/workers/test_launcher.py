import asyncio

from common.workers.launcher import WorkerLauncher


class RecordingWorker:
    """Worker double recording lifecycle calls."""

    def __init__(self, run_forever=False, fail=False):
        self.run_forever = run_forever
        self.fail = fail
        self.running = False
        self.started = False
        self.stopped = False

    async def start(self):
        self.started = True
        self.running = True
        if self.fail:
            raise RuntimeError("boom")
        if self.run_forever:
            await asyncio.Event().wait()

    async def stop(self):
        self.running = False
        self.stopped = True


class TestWorkerLauncher:
    """Tests for the worker lifecycle around start() and stop()."""

    async def test_worker_stopped_after_it_returns(self):
        worker = RecordingWorker()

        await WorkerLauncher()._run_worker_async(worker, "test worker")

        assert worker.started is True
        assert worker.stopped is True

    async def test_worker_error_still_stops(self):
        worker = RecordingWorker(fail=True)

        await WorkerLauncher()._run_worker_async(worker, "test worker")

        assert worker.stopped is True

    async def test_shutdown_request_stops_running_worker(self):
        worker = RecordingWorker(run_forever=True)
        launcher = WorkerLauncher()

        run = asyncio.create_task(launcher._run_worker_async(worker, "test worker"))
        await asyncio.sleep(0.01)
        launcher._request_shutdown(15)
        await asyncio.wait_for(run, timeout=1)

        assert worker.stopped is True
        assert worker.running is False
