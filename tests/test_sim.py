"""Tests for the particle simulation, animation, presets and job worker."""

from __future__ import annotations

import queue
import threading
from pathlib import Path

import numpy as np
import pytest

from pixel_morph.animation import GifRecorder, record_morph, render_frame
from pixel_morph.config import Algorithm, GenerationSettings
from pixel_morph.drawing import init_pixel_data
from pixel_morph.errors import InvalidDimensions
from pixel_morph.events import AssignmentsUpdate, Cancelled, Done, Failed, Preview, Progress
from pixel_morph.image_io import TargetImage
from pixel_morph.jobs import JobWorker
from pixel_morph.morph_sim import PERSONAL_SPACE, Sim, init_canvas, init_colors, init_image
from pixel_morph.presets import (
    Preset,
    UnprocessedPreset,
    delete_preset,
    list_presets,
    load_preset,
    save_preset,
)

SIDELEN = 128.0

# -- Fixtures ----------------------------------------------------------


def _random_image(side: int, seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(side, side, 3), dtype=np.uint8)


def _preset(assignments: list[int]) -> Preset:
    image = np.array(
        [[[0, 0, 0], [255, 0, 0]], [[0, 255, 0], [0, 0, 255]]], dtype=np.uint8,
    )
    return Preset(inner=UnprocessedPreset("test", image), assignments=assignments)


def _snapshot(sim: Sim, positions: np.ndarray) -> tuple:
    return (
        positions.copy(), sim.src.copy(), sim.dst.copy(),
        sim.vel.copy(), sim.age.copy(), sim.reversed,
    )


def _assert_same(a: tuple, b: tuple) -> None:
    for x, y in zip(a, b, strict=True):
        np.testing.assert_array_equal(x, y)


# -- Simulation setup --------------------------------------------------

class TestInit:
    def test_seeds_and_colors_from_preset(self) -> None:
        seeds, colors, sim = init_image(SIDELEN, _preset([0, 1, 2, 3]))
        assert len(sim) == 4
        assert seeds.shape == (4, 2)
        np.testing.assert_allclose(seeds[0], [32.0, 32.0])
        np.testing.assert_allclose(seeds[3], [96.0, 96.0])
        assert (colors[:, 3] == 1.0).all()
        np.testing.assert_allclose(colors[1, :3], [1.0, 0.0, 0.0])

    def test_destinations_follow_assignment(self) -> None:
        _, _, sim = init_image(SIDELEN, _preset([3, 2, 1, 0]))
        # cell 3 goes to slot 0, cell 0 to slot 3
        np.testing.assert_allclose(sim.dst[3], [32.0, 32.0])
        np.testing.assert_allclose(sim.dst[0], [96.0, 96.0])
        np.testing.assert_allclose(sim.src[0], [32.0, 32.0])

    def test_non_square_rejected(self) -> None:
        with pytest.raises(InvalidDimensions):
            init_colors(SIDELEN, np.zeros((2, 3, 3), dtype=np.uint8))

    def test_canvas_starts_at_identity(self) -> None:
        source = UnprocessedPreset("canvas", _random_image(4, 0))
        _, _, sim = init_canvas(SIDELEN, source, canvas_size=4)
        np.testing.assert_array_equal(sim.src, sim.dst)

    @pytest.mark.parametrize("side", [3, 5])
    def test_canvas_size_must_match_source(self, side: int) -> None:
        source = UnprocessedPreset("canvas", _random_image(side, 0))
        with pytest.raises(InvalidDimensions):
            init_canvas(SIDELEN, source, canvas_size=4)


# -- Playback control --------------------------------------------------

class TestPlayback:
    def test_identity_assignment_is_at_rest(self) -> None:
        seeds, _, sim = init_image(SIDELEN, _preset([0, 1, 2, 3]))
        sim.prepare_play(seeds, reverse=False)
        start = seeds.copy()
        sim.update(seeds, SIDELEN)
        assert np.isfinite(seeds).all()
        np.testing.assert_allclose(seeds, start)

    def test_prepare_play_twice_is_idempotent(self) -> None:
        seeds, _, sim = init_image(SIDELEN, _preset([1, 3, 0, 2]))
        for _ in range(20):
            sim.update(seeds, SIDELEN)
        sim.prepare_play(seeds, reverse=False)
        once = _snapshot(sim, seeds)
        sim.prepare_play(seeds, reverse=False)
        _assert_same(once, _snapshot(sim, seeds))

    def test_reverse_jumps_to_destinations(self) -> None:
        seeds, _, sim = init_image(SIDELEN, _preset([1, 3, 0, 2]))
        dst = sim.dst.copy()
        src = sim.src.copy()
        sim.prepare_play(seeds, reverse=True)
        assert sim.reversed
        np.testing.assert_array_equal(seeds, dst)
        np.testing.assert_array_equal(sim.dst, src)
        assert (sim.age == 0).all()

    def test_set_assignments_keeps_positions(self) -> None:
        seeds, _, sim = init_image(SIDELEN, _preset([0, 1, 2, 3]))
        sim.prepare_play(seeds, reverse=False)
        for _ in range(5):
            sim.update(seeds, SIDELEN)
        before = seeds.copy()
        ages = sim.age.copy()
        sim.set_assignments([2, 0, 3, 1], SIDELEN)
        np.testing.assert_array_equal(seeds, before)
        np.testing.assert_array_equal(sim.age, ages)
        np.testing.assert_allclose(sim.dst[0], [96.0, 32.0])
        np.testing.assert_allclose(sim.src[0], [32.0, 32.0])

    def test_morph_moves_cells_towards_destinations(self) -> None:
        # a rotation: no two cells meet head-on
        seeds, _, sim = init_image(SIDELEN, _preset([2, 0, 3, 1]))
        sim.prepare_play(seeds, reverse=False)
        for _ in range(400):
            sim.update(seeds, SIDELEN)
        to_dst = np.hypot(*(sim.dst - seeds).T)
        to_src = np.hypot(*(sim.src - seeds).T)
        assert (to_dst < to_src).all()


# -- Forces ------------------------------------------------------------

def _single(pos: tuple[float, float]) -> tuple[Sim, np.ndarray]:
    sim = Sim("one", 1)
    sim.src[:] = pos
    sim.dst[:] = pos
    return sim, np.array([pos], dtype=np.float64)


class TestForces:
    def test_wall_pushes_inwards(self) -> None:
        sim, positions = _single((1.0, 5.0))
        sim.update(positions, 10.0)
        assert positions[0, 0] > 1.0
        assert positions[0, 1] == 5.0

    def test_step_is_clamped(self) -> None:
        sim, positions = _single((50.0, 50.0))
        sim.vel[:] = [[100.0, -100.0]]
        sim.update(positions, 100.0)
        np.testing.assert_allclose(positions[0], [56.0, 44.0])

    def test_close_cells_repel(self) -> None:
        sim = Sim("pair", 2)
        positions = np.array([[48.0, 50.0], [52.0, 50.0]])
        sim.src[:] = positions
        sim.dst[:] = positions
        sim.update(positions, 100.0)
        assert positions[0, 0] < 48.0
        assert positions[1, 0] > 52.0

    def test_destination_pull_grows_with_age(self) -> None:
        young, old = Sim("y", 1), Sim("o", 1)
        for sim in (young, old):
            sim.dst[:] = [[60.0, 50.0]]
        young.age[:] = 120
        old.age[:] = 600
        p_young = np.array([[40.0, 50.0]])
        p_old = p_young.copy()
        young.update(p_young, 100.0)
        old.update(p_old, 100.0)
        assert 40.0 < p_young[0, 0] < p_old[0, 0]

    def test_grid_finds_every_close_pair(self) -> None:
        rng = np.random.default_rng(3)
        sim = Sim("grid", 100)
        positions = rng.random((100, 2)) * SIDELEN
        pixel_size = SIDELEN / sim.grid_side
        i, j = sim._neighbour_pairs(positions, pixel_size)
        found = set(zip(i.tolist(), j.tolist(), strict=True))

        diff = positions[None, :, :] - positions[:, None, :]
        dist = np.hypot(diff[..., 0], diff[..., 1])
        close = np.argwhere((dist < pixel_size * PERSONAL_SPACE) & ~np.eye(100, dtype=bool))
        assert {tuple(p) for p in close.tolist()} <= found

    def test_stroke_ids(self) -> None:
        sim = Sim("s", 4)
        sim.set_stroke_ids([1, 1, 2, 2])
        np.testing.assert_array_equal(sim.stroke_id, [1, 1, 2, 2])

    def test_same_stroke_holds_cells_together(self) -> None:
        gaps = {}
        for strokes in ([1, 1], [1, 2]):
            sim = Sim("pair", 2)
            positions = np.array([[48.0, 50.0], [52.0, 50.0]])
            sim.src[:] = positions
            sim.dst[:] = positions
            sim.set_stroke_ids(strokes)
            sim.update(positions, 100.0)
            gaps[strokes[1]] = positions[1, 0] - positions[0, 0]
        assert 4.0 < gaps[1] < gaps[2]

    def test_resting_cell_aligns_with_moving_neighbour(self) -> None:
        sim = Sim("pair", 2)
        positions = np.array([[48.0, 50.0], [52.0, 50.0]])
        sim.src[:] = positions
        sim.dst[:] = positions
        sim.vel[1] = [0.0, 5.0]
        sim.update(positions, 100.0)
        assert sim.vel[0, 1] > 0.0
        assert positions[0, 1] > 50.0


# -- Animation ---------------------------------------------------------

class TestAnimation:
    def test_render_frame(self) -> None:
        seeds, colors, _ = init_image(SIDELEN, _preset([0, 1, 2, 3]))
        frame = render_frame(seeds, colors, SIDELEN, resolution=64)
        assert frame.shape == (64, 64, 3)
        np.testing.assert_array_equal(frame[16, 48], [255, 0, 0])
        np.testing.assert_array_equal(frame[48, 48], [0, 0, 255])

    def test_too_few_frames(self) -> None:
        recorder = GifRecorder(resolution=16, min_frames=5)
        recorder.start()
        recorder.add_frame(np.zeros((16, 16, 3), dtype=np.uint8))
        recorder.finish()
        assert recorder.status.state == "error"
        assert recorder.data is None

    def test_finishes_at_max_frames(self) -> None:
        recorder = GifRecorder(resolution=16, max_frames=3, min_frames=2)
        recorder.start()
        for _ in range(3):
            recorder.add_frame(np.zeros((16, 16, 3), dtype=np.uint8))
        assert recorder.status.state == "complete"
        assert recorder.data[:4] == b"GIF8"
        with pytest.raises(RuntimeError):
            recorder.add_frame(np.zeros((16, 16, 3), dtype=np.uint8))

    def test_record_morph_writes_gif(self, tmp_path: Path) -> None:
        seeds, colors, sim = init_image(SIDELEN, _preset([2, 0, 3, 1]))
        out = tmp_path / "morph.gif"
        recorder = GifRecorder(resolution=32, max_frames=4, min_frames=4)
        status = record_morph(sim, seeds, colors, SIDELEN, out, recorder=recorder)
        assert status.state == "complete"
        assert out.read_bytes()[:4] == b"GIF8"


# -- Presets -----------------------------------------------------------

class TestPresets:
    def test_round_trip(self, tmp_path: Path) -> None:
        preset = _preset([3, 1, 2, 0])
        meta = save_preset(tmp_path, preset)
        loaded = load_preset(tmp_path, meta.id)
        assert loaded.name == "test"
        assert loaded.assignments == [3, 1, 2, 0]
        np.testing.assert_array_equal(loaded.inner.image, preset.inner.image)

    def test_list_and_delete(self, tmp_path: Path) -> None:
        first = save_preset(tmp_path, _preset([0, 1, 2, 3]))
        second = save_preset(tmp_path, _preset([1, 0, 2, 3]))
        assert {m.id for m in list_presets(tmp_path)} == {first.id, second.id}
        delete_preset(tmp_path, first.id)
        assert [m.id for m in list_presets(tmp_path)] == [second.id]

    def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_preset(tmp_path, "nope")
        assert list_presets(tmp_path / "absent") == []


# -- Job worker --------------------------------------------------------

def _collect(worker: JobWorker, job_id: str) -> list:
    return [event.update for event in worker.events(job_id, timeout=60)]


class TestJobs:
    def test_genetic_job_completes(self) -> None:
        source = UnprocessedPreset("s", _random_image(4, 1))
        target = TargetImage(_random_image(4, 2))
        settings = GenerationSettings(sidelen=4, proximity_importance=0.5)
        with JobWorker() as worker:
            worker.start("job", source, target, settings)
            updates = _collect(worker, "job")
            assert not worker.is_running("job")
        assert isinstance(updates[-1], Done)
        assert sorted(updates[-1].preset.assignments) == list(range(16))
        assert all(isinstance(u, (Progress, Preview)) for u in updates[:-1])

    def test_unread_events_never_block_the_worker(self) -> None:
        source = UnprocessedPreset("s", _random_image(8, 1))
        target = TargetImage(_random_image(8, 2))
        worker = JobWorker(max_queued_events=2)
        future = worker.start("job", source, target, GenerationSettings(sidelen=8))
        future.result(timeout=60)

        closer = threading.Thread(target=worker.shutdown)
        closer.start()
        closer.join(timeout=10)
        assert not closer.is_alive()

        updates = []
        with pytest.raises(queue.Empty):
            while True:
                updates.append(worker.next_event(timeout=0.1).update)
        assert len(updates) == 3
        assert isinstance(updates[-1], Done)

    def test_cancel_right_after_start(self) -> None:
        source = UnprocessedPreset("s", _random_image(64, 3))
        target = TargetImage(_random_image(64, 4))
        settings = GenerationSettings(sidelen=64, algorithm=Algorithm.OPTIMAL)
        with JobWorker() as worker:
            worker.start("big", source, target, settings)
            assert worker.cancel("big")
            updates = _collect(worker, "big")
            with pytest.raises(queue.Empty):
                worker.next_event(timeout=0.2)
        assert updates[-1] == Cancelled()
        assert sum(isinstance(u, Cancelled) for u in updates) == 1
        assert not any(isinstance(u, Done) for u in updates)

    def test_cancel_unknown_job(self) -> None:
        with JobWorker() as worker:
            assert not worker.cancel("ghost")

    def test_failure_is_reported_once(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr("pixel_morph.jobs.process_preset", explode)
        with JobWorker() as worker:
            worker.start("bad", UnprocessedPreset("s", _random_image(2, 0)),
                         TargetImage(_random_image(2, 1)), GenerationSettings(sidelen=2))
            updates = _collect(worker, "bad")
            assert not worker.is_running("bad")
        assert updates == [Failed("boom")]

    def test_drawing_job_streams_until_cancelled(self) -> None:
        canvas = _random_image(4, 5)
        colors = np.ones((16, 4))
        colors[:, :3] = canvas.reshape(-1, 3) / 255.0
        with JobWorker() as worker:
            worker.start_drawing(
                "draw",
                UnprocessedPreset("canvas", canvas),
                TargetImage(canvas[[1, 0, 3, 2]]),
                GenerationSettings(proximity_importance=0.01),
                colors, init_pixel_data(0, 4), 0, canvas_size=4,
            )
            with pytest.raises(ValueError):
                worker.start("draw", UnprocessedPreset("x", canvas),
                             TargetImage(canvas), GenerationSettings(sidelen=4))
            first = worker.next_event(timeout=60)
            assert isinstance(first.update, AssignmentsUpdate)
            worker.cancel("draw")
            updates = _collect(worker, "draw")
        assert updates[-1] == Cancelled()
        assert all(isinstance(u, AssignmentsUpdate) for u in updates[:-1])
