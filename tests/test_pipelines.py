import os
import zipfile

import pytest

from beatflo.exceptions import ToolNotInstalledError
from beatflo.jobs.models import JobKind, JobStatus
from beatflo.pipelines import bulk, download, mixset, waveform

URL_A = "https://www.youtube.com/watch?v=aaaaaaaaaaa"
URL_B = "https://www.youtube.com/watch?v=bbbbbbbbbbb"
URL_C = "https://www.youtube.com/watch?v=ccccccccccc"


# ---------------------------------------------------------------------------
# Single download
# ---------------------------------------------------------------------------

async def test_download_mp3_completes_with_located_file(services, fake_invoker):
    job_id = services.registry.create(JobKind.DOWNLOAD, title="Song", output_format="mp3")
    await download.run(services, job_id, download.DownloadRequest(URL_A, "mp3"))

    record = services.registry.get(job_id)
    assert record.status == JobStatus.COMPLETED
    assert record.progress == 100.0
    assert record.filename == f"{job_id}.mp3"
    assert os.path.isfile(services.store.path_for(record.filename))
    assert "-x" in fake_invoker.calls_to("yt-dlp")[0]


async def test_download_progress_is_monotonic_and_pinned_at_99(services):
    job_id = services.registry.create(JobKind.DOWNLOAD, output_format="mp4")
    await download.run(services, job_id, download.DownloadRequest(URL_A, "mp4"))

    history = [r for r in services.registry.history if r.id == job_id]
    ranks = [r.status.rank for r in history]
    assert ranks == sorted(ranks)

    downloading = [r.progress for r in history if r.status == JobStatus.DOWNLOADING]
    assert downloading == sorted(downloading)
    assert max(downloading) <= 98.0

    processing = [r for r in history if r.status == JobStatus.PROCESSING]
    assert processing and all(r.progress == 99.0 for r in processing)
    assert history[-1].status == JobStatus.COMPLETED
    assert history[-1].filename.endswith(".mp4")


async def test_download_failure_is_generic(services, fake_invoker):
    fake_invoker.failing_urls.add(URL_A)
    job_id = services.registry.create(JobKind.DOWNLOAD, output_format="mp3")
    await download.run(services, job_id, download.DownloadRequest(URL_A, "mp3"))

    record = services.registry.get(job_id)
    assert record.status == JobStatus.ERROR
    assert record.error == "Download failed"


async def test_download_without_output_file_is_an_error(services, fake_invoker):
    fake_invoker.no_output_urls.add(URL_A)
    job_id = services.registry.create(JobKind.DOWNLOAD, output_format="mp3")
    await download.run(services, job_id, download.DownloadRequest(URL_A, "mp3"))

    record = services.registry.get(job_id)
    assert record.status == JobStatus.ERROR
    assert record.error == "File not found after download"


# ---------------------------------------------------------------------------
# Bulk download
# ---------------------------------------------------------------------------

async def test_bulk_skips_failed_items_and_archives_the_rest(services, fake_invoker):
    fake_invoker.failing_urls.add(URL_B)
    items = [bulk.BulkItem(URL_A, "First"), bulk.BulkItem(URL_B, "Second"), bulk.BulkItem(URL_C, "Third")]
    job_id = services.registry.create(JobKind.BULK, total=3, completed=0)

    await bulk.run(services, job_id, bulk.BulkRequest(items, "mp3"))

    record = services.registry.get(job_id)
    assert record.status == JobStatus.COMPLETED
    assert record.completed == record.total == 3
    assert record.files == ["First", "Third"]
    assert record.failed == ["Second"]
    assert record.filename == f"{job_id}.zip"

    with zipfile.ZipFile(services.store.path_for(record.filename)) as zf:
        assert sorted(zf.namelist()) == ["First.mp3", "Third.mp3"]
        assert all(info.file_size > 0 for info in zf.infolist())
    assert not os.path.exists(os.path.join(services.store.base_dir, job_id))


async def test_bulk_completed_count_never_decreases(services, fake_invoker):
    fake_invoker.failing_urls.add(URL_A)
    items = [bulk.BulkItem(URL_A, "a"), bulk.BulkItem(URL_B, "b")]
    job_id = services.registry.create(JobKind.BULK, total=2, completed=0)
    await bulk.run(services, job_id, bulk.BulkRequest(items, "mp4"))

    counts = [r.completed for r in services.registry.history if r.id == job_id]
    assert counts == sorted(counts)
    assert all(c <= 2 for c in counts)


async def test_bulk_with_no_successes_is_an_error(services, fake_invoker):
    fake_invoker.failing_urls.update({URL_A, URL_B})
    items = [bulk.BulkItem(URL_A, "a"), bulk.BulkItem(URL_B, "b")]
    job_id = services.registry.create(JobKind.BULK, total=2, completed=0)
    await bulk.run(services, job_id, bulk.BulkRequest(items, "mp3"))

    record = services.registry.get(job_id)
    assert record.status == JobStatus.ERROR
    assert record.completed == 2


async def test_bulk_duplicate_titles_get_distinct_entries(services):
    items = [bulk.BulkItem(URL_A, "Same"), bulk.BulkItem(URL_B, "Same")]
    job_id = services.registry.create(JobKind.BULK, total=2, completed=0)
    await bulk.run(services, job_id, bulk.BulkRequest(items, "mp3"))

    record = services.registry.get(job_id)
    with zipfile.ZipFile(services.store.path_for(record.filename)) as zf:
        assert zf.namelist() == ["Same.mp3", "Same (2).mp3"]


# ---------------------------------------------------------------------------
# Mixset
# ---------------------------------------------------------------------------

def _tracks(*urls):
    return [mixset.MixsetTrack(url, title=f"Track {i}", artist="DJ") for i, url in enumerate(urls, 1)]


async def test_mixset_crossfades_tracks_in_order(services, fake_invoker):
    job_id = services.registry.create(JobKind.MIXSET, total=3, completed=0)
    request = mixset.MixsetRequest(_tracks(URL_A, URL_B, URL_C), crossfade=5, name="Friday Mix")

    await mixset.run(services, job_id, request)

    record = services.registry.get(job_id)
    assert record.status == JobStatus.COMPLETED
    assert record.track_count == 3
    assert record.crossfade == 5
    assert record.filename == f"{job_id}_Friday Mix.mp3"
    assert record.result["duration"] == pytest.approx(530, abs=1)
    assert record.result["expected_duration"] == pytest.approx(530)

    mix_calls = [a for a in fake_invoker.calls_to("ffmpeg") if "-filter_complex" in a]
    assert len(mix_calls) == 1
    inputs = [os.path.basename(a) for a in mix_calls[0] if a.endswith(".mp3") and "Track" in a]
    assert inputs == ["01_Track 1.mp3", "02_Track 2.mp3", "03_Track 3.mp3"]
    assert not os.path.exists(os.path.join(services.store.base_dir, job_id))


async def test_mixset_with_too_few_tracks_fails_and_keeps_work_dir(services, fake_invoker):
    fake_invoker.failing_urls.update({URL_B, URL_C})
    job_id = services.registry.create(JobKind.MIXSET, total=3, completed=0)
    await mixset.run(services, job_id, mixset.MixsetRequest(_tracks(URL_A, URL_B, URL_C)))

    record = services.registry.get(job_id)
    assert record.status == JobStatus.ERROR
    assert record.error == "Not enough tracks downloaded successfully"
    assert record.completed == 3
    assert os.path.isdir(os.path.join(services.store.base_dir, job_id))
    assert not [a for a in fake_invoker.calls_to("ffmpeg") if "-filter_complex" in a]


async def test_mixset_ffmpeg_failure_reports_exit_code(services, fake_invoker):
    fake_invoker.ffmpeg_exit_code = 1
    job_id = services.registry.create(JobKind.MIXSET, total=2, completed=0)
    await mixset.run(services, job_id, mixset.MixsetRequest(_tracks(URL_A, URL_B)))

    record = services.registry.get(job_id)
    assert record.status == JobStatus.ERROR
    assert record.error == "Failed to create mixset: ffmpeg exited with code 1"


async def test_mixset_survives_one_failed_track(services, fake_invoker):
    fake_invoker.failing_urls.add(URL_B)
    job_id = services.registry.create(JobKind.MIXSET, total=3, completed=0)
    await mixset.run(services, job_id, mixset.MixsetRequest(_tracks(URL_A, URL_B, URL_C), crossfade=4))

    record = services.registry.get(job_id)
    assert record.status == JobStatus.COMPLETED
    assert record.track_count == 2
    assert record.failed == ["DJ - Track 2"]
    assert record.result["duration"] == pytest.approx(356, abs=1)


# ---------------------------------------------------------------------------
# Waveform
# ---------------------------------------------------------------------------

RMS_OUTPUT = "\n".join(
    [f"[Parsed_ametadata_1 @ 0x1] lavfi.astats.Overall.RMS_level=-{20 + i % 10}.0" for i in range(300)]
    + ["[Parsed_volumedetect_2 @ 0x2] mean_volume: -21.0 dB",
       "[Parsed_volumedetect_2 @ 0x2] max_volume: -2.0 dB"]
)

VOLUME_ONLY_OUTPUT = "\n".join([
    "[Parsed_volumedetect_2 @ 0x2] mean_volume: -15.0 dB",
    "[Parsed_volumedetect_2 @ 0x2] max_volume: -1.0 dB",
])


async def _run_waveform(services):
    job_id = services.registry.create(JobKind.WAVEFORM, source_key="vid")
    await waveform.run(services, job_id, waveform.WaveformRequest(URL_A, "vid"))
    return services.registry.get(job_id)


async def test_waveform_uses_rms_levels_when_available(services, fake_invoker):
    fake_invoker.levels_output = RMS_OUTPUT
    record = await _run_waveform(services)

    assert record.status == JobStatus.COMPLETED
    assert record.result["method"] == "rms"
    assert record.result["fallback"] is False
    assert record.result["duration"] == 180.0
    assert len(record.result["peaks"]) == services.settings.waveform_samples
    assert not os.path.exists(os.path.join(services.store.base_dir, record.id))


async def test_waveform_synthesizes_from_volume_stats(services, fake_invoker):
    fake_invoker.levels_output = VOLUME_ONLY_OUTPUT
    record = await _run_waveform(services)

    assert record.result["method"] == "envelope"
    assert record.result["fallback"] is False
    assert all(0.05 <= p <= 1.0 for p in record.result["peaks"])


async def test_waveform_falls_back_when_download_fails(services, fake_invoker):
    fake_invoker.failing_urls.add(URL_A)
    record = await _run_waveform(services)

    assert record.status == JobStatus.COMPLETED
    assert record.result["method"] == "fallback"
    assert record.result["fallback"] is True
    assert record.result["duration"] == waveform.DEFAULT_DURATION


async def test_waveform_falls_back_when_ffmpeg_is_missing(services, fake_invoker):
    fake_invoker.missing.update({"ffmpeg", "ffprobe"})
    record = await _run_waveform(services)
    assert record.result["fallback"] is True


def test_waveform_lookup_ignores_errored_entries(services):
    job_id = services.registry.create(JobKind.WAVEFORM, source_key="k")
    assert waveform.lookup(services, "k").id == job_id
    services.registry.fail(job_id, "boom")
    assert waveform.lookup(services, "k") is None


def test_waveform_lookup_skips_errored_entry_for_the_same_key(services):
    registry = services.registry
    errored = registry.create(JobKind.WAVEFORM, source_key="k")
    registry.fail(errored, "Job cancelled")
    done = registry.create(JobKind.WAVEFORM, source_key="k")
    registry.update(done, status=JobStatus.COMPLETED, result={"peaks": [1.0]})

    assert waveform.lookup(services, "k").id == done


def test_waveform_lookup_prefers_completed_over_inflight(services):
    registry = services.registry
    done = registry.create(JobKind.WAVEFORM, source_key="k")
    registry.update(done, status=JobStatus.COMPLETED, result={"peaks": [1.0]})
    registry.create(JobKind.WAVEFORM, source_key="k")

    assert waveform.lookup(services, "k").id == done


# ---------------------------------------------------------------------------
# Cleanup on failure paths and long track lists
# ---------------------------------------------------------------------------

async def test_mixset_keeps_play_order_past_99_tracks(services, fake_invoker):
    fake_invoker.track_duration = 30.0
    tracks = [
        mixset.MixsetTrack(f"https://youtu.be/t{i:09d}", title=f"t{i}")
        for i in range(1, 102)
    ]
    job_id = services.registry.create(JobKind.MIXSET, total=len(tracks), completed=0)
    await mixset.run(services, job_id, mixset.MixsetRequest(tracks, crossfade=1))

    assert services.registry.get(job_id).status == JobStatus.COMPLETED
    mix_args = [a for a in fake_invoker.calls_to("ffmpeg") if "-filter_complex" in a][0]
    inputs = [os.path.basename(mix_args[i + 1]) for i, a in enumerate(mix_args) if a == "-i"]
    assert inputs[0] == "001_t1.mp3"
    assert inputs[9:12] == ["010_t10.mp3", "011_t11.mp3", "012_t12.mp3"]
    assert inputs[-2:] == ["100_t100.mp3", "101_t101.mp3"]


async def test_mixset_ffmpeg_failure_removes_partial_output(services, fake_invoker):
    fake_invoker.ffmpeg_exit_code = 1
    job_id = services.registry.create(JobKind.MIXSET, total=2, completed=0)
    request = mixset.MixsetRequest(_tracks(URL_A, URL_B), name="Broken")
    partial = services.store.path_for(mixset.output_filename(job_id, "Broken"))
    open(partial, "wb").close()

    await mixset.run(services, job_id, request)

    assert services.registry.get(job_id).status == JobStatus.ERROR
    assert not os.path.exists(partial)
    assert not os.path.exists(os.path.join(services.store.base_dir, job_id))


async def test_missing_downloader_cleans_bulk_work_dir(services, fake_invoker):
    fake_invoker.missing.add("yt-dlp")
    job_id = services.registry.create(JobKind.BULK, total=1, completed=0)

    with pytest.raises(ToolNotInstalledError):
        await bulk.run(services, job_id, bulk.BulkRequest([bulk.BulkItem(URL_A, "a")], "mp3"))
    assert not os.path.exists(os.path.join(services.store.base_dir, job_id))


async def test_missing_downloader_cleans_mixset_work_dir(services, fake_invoker):
    fake_invoker.missing.add("yt-dlp")
    job_id = services.registry.create(JobKind.MIXSET, total=2, completed=0)

    with pytest.raises(ToolNotInstalledError):
        await mixset.run(services, job_id, mixset.MixsetRequest(_tracks(URL_A, URL_B)))
    assert not os.path.exists(os.path.join(services.store.base_dir, job_id))
