"""
Build planning tests.
"""

import json

from delta.models import parse_delta
from download.planner import BuildPlanner, PlanPolicy, Strategy, size_on_disk

from fakes import Build, build_name, delta_document, sign_name, update_name

X, Y, Z = (Build(build_name(d)) for d in ("20250101", "20250108", "20250115"))


def _steps(*builds, big_updates=False):
    steps = []
    for source, target in zip(builds, builds[1:]):
        doc = json.loads(delta_document(source, target))
        if big_updates:
            doc["update"]["size"] = 10**9
        steps.append(parse_delta(json.dumps(doc)))
    return steps


def _planner(paths, **policy):
    return BuildPlanner(paths.downloads_dir, PlanPolicy(**policy))


def test_size_on_disk_rounds_up_to_blocks():
    assert size_on_disk(0) == 0
    assert size_on_disk(1) == 262144
    assert size_on_disk(262144) == 262144
    assert size_on_disk(262145) == 2 * 262144


def test_empty_chain_with_cached_output_is_ready(paths):
    plan = _planner(paths).plan([], Z.name, X.name, cached_output="/data/downloads/z.zip")
    assert plan.strategy == Strategy.READY
    assert plan.flash_filename == "/data/downloads/z.zip"


def test_empty_chain_newer_full_build(paths):
    plan = _planner(paths).plan([], Z.name, X.name[:-4])
    assert plan.strategy == Strategy.FULL
    assert plan.flash_filename == str(paths.downloads_dir / Z.name)
    assert plan.update_available


def test_empty_chain_same_build(paths):
    assert _planner(paths).plan([], X.name, X.name).strategy == Strategy.NONE


def test_empty_chain_malformed_names(paths):
    assert _planner(paths).plan([], "weird.zip", X.name).strategy == Strategy.NONE


def test_delta_when_initial_file_present(paths):
    (paths.downloads_dir / X.name).write_bytes(X.store)
    steps = _steps(X, Y, Z)

    plan = _planner(paths).plan(steps, Z.name, X.name)

    assert plan.strategy == Strategy.DELTA
    assert plan.initial_file == str(paths.downloads_dir / X.name)
    assert plan.initial_needs_normalization is False
    assert plan.delta_download_size == len(Y.store) + len(Z.store) + len(Z.signed)
    assert plan.download_size == plan.delta_download_size
    assert plan.full_download_size == len(Z.official)
    assert plan.flash_filename == str(paths.downloads_dir / Z.name)


def test_official_initial_file_needs_normalization(paths):
    (paths.downloads_dir / X.name).write_bytes(X.official)

    plan = _planner(paths).plan(_steps(X, Y), Y.name, X.name)

    assert plan.strategy == Strategy.DELTA
    assert plan.initial_needs_normalization is True


def test_full_when_deltas_are_bigger(paths):
    (paths.downloads_dir / X.name).write_bytes(X.store)

    plan = _planner(paths).plan(_steps(X, Y, Z, big_updates=True), Z.name, X.name)

    assert plan.strategy == Strategy.FULL
    assert plan.download_size == len(Z.official)
    assert plan.flash_filename == str(paths.downloads_dir / Z.name)


def test_full_without_initial_file(paths):
    plan = _planner(paths).plan(_steps(X, Y, Z), Z.name, X.name)
    assert plan.strategy == Strategy.FULL
    assert plan.required_space == size_on_disk(len(Z.official))


def test_full_when_latest_build_is_past_chain_end(paths):
    (paths.downloads_dir / X.name).write_bytes(X.store)
    latest = build_name("20250201")

    plan = _planner(paths).plan(_steps(X, Y, Z), latest, X.name)

    assert plan.strategy == Strategy.FULL
    assert plan.flash_filename == str(paths.downloads_dir / latest)


def test_none_when_nothing_is_newer(paths):
    plan = _planner(paths).plan(_steps(X, Y), X.name, Y.name)
    assert plan.strategy == Strategy.NONE
    assert not plan.update_available


def test_present_deltas_are_not_counted(paths):
    (paths.downloads_dir / X.name).write_bytes(X.store)
    (paths.downloads_dir / update_name(X.name)).write_bytes(Y.store)
    steps = _steps(X, Y, Z)

    plan = _planner(paths).plan(steps, Z.name, X.name)

    assert plan.delta_download_size == len(Z.store) + len(Z.signed)
    assert steps[0].update.tag == str(paths.downloads_dir / update_name(X.name))


def test_signature_not_counted_when_disabled(paths):
    (paths.downloads_dir / X.name).write_bytes(X.store)

    plan = _planner(paths, apply_signature=False).plan(_steps(X, Y), Y.name, X.name)

    assert plan.delta_download_size == len(Y.store)


def test_delta_required_space(paths):
    (paths.downloads_dir / X.name).write_bytes(X.store)
    (paths.downloads_dir / sign_name(Y.name)).write_bytes(b"unrelated")

    plan = _planner(paths).plan(_steps(X, Y, Z), Z.name, X.name)

    block = 262144
    # two updates + signature + three buffers of the biggest applied size
    assert plan.required_space == 2 * block + block + 3 * block


def test_searching_phase_reported_for_initial_file(paths):
    (paths.downloads_dir / X.name).write_bytes(X.store)
    phases = []

    _planner(paths).plan(_steps(X, Y), Y.name, X.name, progress_factory=lambda p, n: phases.append((p, n)))

    assert ("searching", X.name) in phases
