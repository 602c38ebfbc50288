import asyncio
import json
import os
import re
import time

import pytest
from fastapi.testclient import TestClient

from beatflo.config import Settings
from beatflo.exceptions import ToolExecutionError, ToolNotInstalledError
from beatflo.jobs.registry import JobRegistry
from beatflo.main import create_app
from beatflo.services import build_services
from beatflo.tools.invoker import ToolInvoker, ToolResult


DOWNLOAD_LINES = [
    "[youtube] abc: Downloading webpage",
    "[download]   0.0% of 3.00MiB at 1.00MiB/s ETA 00:03",
    "[download]  45.3% of 3.00MiB at 1.00MiB/s ETA 00:02",
    "[download] 100.0% of 3.00MiB in 00:03",
    "[download]  12.5% of 1.00MiB at 1.00MiB/s ETA 00:01",
    "[download] 100.0% of 1.00MiB in 00:01",
]


class FakeInvoker(ToolInvoker):
    """Emulates yt-dlp, ffmpeg and ffprobe by writing the files they would."""

    def __init__(self):
        super().__init__()
        self.calls = []
        self.failing_urls = set()
        self.no_output_urls = set()
        self.missing = set()
        self.delay = 0.0
        self.track_duration = 180.0
        self.durations = {}
        self.ffmpeg_exit_code = 0
        self.levels_output = ""
        self.info = {}

    @staticmethod
    def is_available(executable):
        return True

    def calls_to(self, tool):
        return [args for exe, args in self.calls if os.path.basename(exe) == tool]

    async def run(self, executable, args, on_line=None, timeout=None, check=False):
        args = [str(a) for a in args]
        tool = os.path.basename(executable)
        self.calls.append((executable, args))
        if tool in self.missing:
            raise ToolNotInstalledError(tool)
        if self.delay:
            await asyncio.sleep(self.delay)

        if tool == "yt-dlp":
            exit_code, stdout, stderr = self._ytdlp(args, on_line)
        elif tool == "ffmpeg":
            exit_code, stdout, stderr = self._ffmpeg(args)
        elif tool == "ffprobe":
            exit_code, stdout, stderr = self._ffprobe(args)
        else:
            raise ToolNotInstalledError(tool)

        result = ToolResult(executable, args, exit_code, stdout, stderr)
        if check and not result.ok:
            raise ToolExecutionError(tool, exit_code, stderr)
        return result

    def _ytdlp(self, args, on_line):
        url = args[-1]
        if "--dump-json" in args:
            return 0, json.dumps(self.info), ""
        if url in self.failing_urls:
            if on_line:
                on_line("stderr", "ERROR: [youtube] video unavailable")
            return 1, "", "ERROR: [youtube] video unavailable"

        if "-x" in args:
            ext = "mp3"
        elif "--merge-output-format" in args:
            ext = args[args.index("--merge-output-format") + 1]
        else:
            ext = "webm"

        lines = list(DOWNLOAD_LINES)
        lines.append("[ExtractAudio] Destination: out.mp3" if ext == "mp3" else "[Merger] Merging formats")
        if on_line:
            for line in lines:
                on_line("stdout", line)

        if url not in self.no_output_urls:
            path = args[args.index("-o") + 1].replace("%(ext)s", ext)
            with open(path, "wb") as f:
                f.write(f"media from {url}".encode())
            self.durations[path] = self.track_duration
        return 0, "\n".join(lines), ""

    def _ffmpeg(self, args):
        if "-filter_complex" not in args:
            return 0, "", self.levels_output
        if self.ffmpeg_exit_code:
            return self.ffmpeg_exit_code, "", "Error while filtering"
        inputs = [args[i + 1] for i, a in enumerate(args) if a == "-i"]
        graph = args[args.index("-filter_complex") + 1]
        crossfade = float(re.search(r"d=([\d.]+)", graph).group(1))
        output = args[-1]
        with open(output, "wb") as f:
            f.write(b"mix")
        self.durations[output] = (
            sum(self.durations.get(p, 0.0) for p in inputs) - (len(inputs) - 1) * crossfade
        )
        return 0, "", ""

    def _ffprobe(self, args):
        path = args[-1]
        if path in self.durations:
            return 0, f"{self.durations[path]:.6f}\n", ""
        return 1, "", f"{path}: No such file or directory"


class RecordingRegistry(JobRegistry):
    """Keeps every snapshot written, for checking progress ordering."""

    def __init__(self):
        super().__init__()
        self.history = []

    def update(self, job_id, **patch):
        record = super().update(job_id, **patch)
        if record is not None:
            self.history.append(record)
        return record


@pytest.fixture
def settings(tmp_path):
    return Settings(
        downloads_dir=str(tmp_path / "downloads"),
        download_grace_seconds=0.1,
        bulk_grace_seconds=0.1,
        mixset_grace_seconds=0.1,
        waveform_samples=50,
        max_concurrent_jobs=4,
        job_timeout_seconds=30,
    )


@pytest.fixture
def fake_invoker():
    return FakeInvoker()


@pytest.fixture
def services(settings, fake_invoker):
    return build_services(settings, invoker=fake_invoker, registry=RecordingRegistry())


@pytest.fixture
def client(settings, fake_invoker):
    app = create_app(settings, services_factory=lambda s: build_services(s, invoker=fake_invoker))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def wait_for():
    return poll_until


def poll_until(client, path, statuses=("completed", "error"), timeout=5.0):
    """Poll a progress endpoint until it reports one of ``statuses``."""
    deadline = time.monotonic() + timeout
    while True:
        response = client.get(path)
        if response.status_code == 200 and response.json()["status"] in statuses:
            return response.json()
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} never reached {statuses}: {response.json()}")
        time.sleep(0.02)
