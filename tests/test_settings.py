import json
import os
from dataclasses import replace

import pytest

from vision_pipeline.config import PipelineSettings
from vision_pipeline.settings import CameraProfile, SettingsStore


def test_profile_requires_existing_current_index():
    with pytest.raises(ValueError):
        CameraProfile("cam", {0: PipelineSettings()}, 3)


def test_cannot_remove_current_pipeline(three_pipelines):
    prof = CameraProfile("cam", three_pipelines, 1)
    assert not prof.remove_pipeline(1)
    assert prof.remove_pipeline(2)
    assert sorted(prof.pipelines) == [0, 1]


def test_replace_rejected_when_current_missing(three_pipelines):
    prof = CameraProfile("cam", three_pipelines, 2)
    assert not prof.replace_pipelines({0: PipelineSettings()})
    assert prof.current_index == 2
    assert prof.has_pipeline(2)


def test_set_current_index(three_pipelines):
    prof = CameraProfile("cam", three_pipelines, 0)
    assert not prof.set_current_index(9)
    assert prof.set_current_index(2)
    assert prof.current_pipeline.nickname == "two"


def test_add_and_duplicate(three_pipelines):
    prof = CameraProfile("cam", three_pipelines, 0)
    idx = prof.duplicate_pipeline(0)
    assert idx == 3
    assert prof.get_pipeline(3).nickname == "green (Copy)"
    assert prof.duplicate_pipeline(42) is None


def test_pipeline_settings_dict_round_trip():
    p = PipelineSettings(nickname="x", hue=(1, 2), is_calibrated=True, M=2.0)
    raw = json.loads(json.dumps(p.to_dict()))
    assert PipelineSettings.from_dict(raw) == p


def test_from_dict_ignores_unknown_keys():
    p = PipelineSettings.from_dict({"nickname": "a", "flux": 3})
    assert p.nickname == "a"


def test_save_and_load(tmp_path, three_pipelines):
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    store.add_profile(CameraProfile("cam", three_pipelines, 2))
    store.save()

    loaded = SettingsStore(path)
    prof = loaded.profile("cam")
    assert prof.current_index == 2
    assert prof.pipelines == three_pipelines
    assert loaded.curr_camera == "cam"


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


def test_maybe_reload_replaces_mapping(tmp_path, three_pipelines):
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    store.add_profile(CameraProfile("cam", three_pipelines, 0))
    store.save()
    version = store.version

    data = store.to_dict()
    data["cameras"]["cam"]["pipelines"]["0"]["exposure"] = 12.0
    data["cameras"]["cam"]["pipelines"]["0"]["nickname"] = "green edited"
    _write(path, data)

    assert store.maybe_reload()
    assert store.version == version + 1
    assert store.profile("cam").current_pipeline.exposure == 12.0


def test_reload_that_drops_current_pipeline_is_rejected(tmp_path, three_pipelines):
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    store.add_profile(CameraProfile("cam", three_pipelines, 2))
    store.save()

    data = store.to_dict()
    del data["cameras"]["cam"]["pipelines"]["2"]
    data["cameras"]["cam"]["current_pipeline"] = 0
    _write(path, data)

    store.maybe_reload()
    prof = store.profile("cam")
    assert prof.current_index == 2
    assert prof.has_pipeline(2)


def test_bad_json_keeps_old_settings(tmp_path, three_pipelines):
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    store.add_profile(CameraProfile("cam", three_pipelines, 0))
    store.save()

    path.write_text("{ not json", encoding="utf-8")
    assert not store.maybe_reload()
    assert store.profile("cam").pipelines == three_pipelines


def test_unchanged_file_is_not_reloaded(tmp_path):
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    store.profile("cam")
    store.save()
    assert not store.maybe_reload()


def test_missing_file_gives_default_profile(tmp_path):
    store = SettingsStore(tmp_path / "nope.json")
    prof = store.profile("cam")
    assert prof.current_index == 0
    assert store.curr_camera == "cam"
    assert not os.path.exists(tmp_path / "nope.json")


def test_full_settings_payload(store, camera):
    payload = store.full_settings(camera.name)
    assert payload["camera"] == camera.name
    assert payload["current_pipeline"] == 0
    assert set(payload["pipelines"]) == {"0", "1", "2"}


def test_edits_are_new_instances(three_pipelines):
    old = three_pipelines[0]
    new = replace(old, exposure=1.0)
    assert old.exposure == 40.0
    assert new is not old


@pytest.mark.parametrize(
    "field_name", ["sort_mode", "target_group", "target_intersection"]
)
def test_unknown_policy_name_is_rejected(field_name):
    with pytest.raises(ValueError):
        PipelineSettings.from_dict({field_name: "Biggest target"})


def test_reload_with_unknown_sort_mode_keeps_old_mapping(tmp_path, three_pipelines):
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    store.add_profile(CameraProfile("cam", three_pipelines, 0))
    store.save()
    version = store.version

    data = store.to_dict()
    data["cameras"]["cam"]["pipelines"]["0"]["sort_mode"] = "Biggest target"
    _write(path, data)

    assert not store.maybe_reload()
    assert store.version == version
    assert store.profile("cam").current_pipeline.sort_mode == "Largest"


def test_select_returns_new_current_settings(three_pipelines):
    prof = CameraProfile("cam", three_pipelines, 0)
    assert prof.select(2) == three_pipelines[2]
    assert prof.current_index == 2
    assert prof.select(9) is None
    assert prof.current_index == 2


def test_concurrent_switch_and_reload_keep_current_index_valid(three_pipelines):
    import threading

    prof = CameraProfile("cam", three_pipelines, 0)
    without_two = {i: p for i, p in three_pipelines.items() if i != 2}
    stop = threading.Event()
    broken = []

    def switcher():
        while not stop.is_set():
            prof.select(2)
            prof.select(0)

    def reloader():
        while not stop.is_set():
            prof.replace_pipelines(without_two)
            prof.replace_pipelines(three_pipelines)
            if not prof.has_pipeline(prof.current_index):
                broken.append(prof.current_index)

    threads = [threading.Thread(target=switcher), threading.Thread(target=reloader)]
    for t in threads:
        t.start()
    for _ in range(2000):
        prof.current_pipeline  # raises KeyError if the index dangles
    stop.set()
    for t in threads:
        t.join()

    assert broken == []
    assert prof.has_pipeline(prof.current_index)


def test_mutators_wait_for_profile_lock(three_pipelines):
    import threading

    prof = CameraProfile("cam", three_pipelines, 0)
    done = threading.Event()

    def switch():
        prof.select(2)
        done.set()

    with prof._lock:
        t = threading.Thread(target=switch)
        t.start()
        assert not done.wait(0.05)
        assert prof.replace_pipelines({0: three_pipelines[0], 1: three_pipelines[1]})
    t.join()

    # the mapping swapped in first no longer has 2
    assert done.is_set()
    assert prof.current_index == 0
