from __future__ import annotations

import json

import numpy as np
import pytest

from conftest import FaceSpec, unit
from src.face import FaceEntry, LabeledDescriptorSet, build_descriptors, loader
from src.face.exceptions import ImageReadError, InvalidArgumentError
from src.face.gallery import load_descriptor_sets, save_descriptor_sets


def test_two_reference_images_give_two_descriptors_in_order(fake_face_api):
    a = fake_face_api.add_image([FaceSpec(bbox=(40, 40, 140, 160), embedding=unit(1, 0, 0))])
    b = fake_face_api.add_image([FaceSpec(bbox=(60, 30, 150, 150), embedding=unit(0, 0, 1))])

    sets = build_descriptors([FaceEntry(label="alice", image_paths=(a, b))])

    assert len(sets) == 1
    assert sets[0].label == "alice"
    assert len(sets[0].descriptors) == 2
    np.testing.assert_allclose(sets[0].descriptors[0], unit(1, 0, 0), atol=1e-6)
    np.testing.assert_allclose(sets[0].descriptors[1], unit(0, 0, 1), atol=1e-6)
    assert sets[0].skipped_images == ()


def test_most_confident_face_is_used(fake_face_api):
    path = fake_face_api.add_image(
        [
            FaceSpec(bbox=(10, 10, 60, 70), embedding=unit(1, 0), score=0.6),
            FaceSpec(bbox=(120, 20, 220, 140), embedding=unit(0, 1), score=0.97),
        ]
    )

    sets = build_descriptors([{"label": "bob", "imagePaths": [path]}])

    assert len(sets[0].descriptors) == 1
    np.testing.assert_allclose(sets[0].descriptors[0], unit(0, 1), atol=1e-6)


def test_image_without_face_is_skipped_and_reported(fake_face_api):
    empty = fake_face_api.add_image([])
    good = fake_face_api.add_image([FaceSpec(bbox=(40, 40, 140, 160), embedding=unit(1, 1, 0))])
    precomputed = [0.0, 0.0, 1.0]

    sets = build_descriptors(
        [{"label": "carol", "image_paths": [empty, good], "descriptors": [precomputed]}]
    )

    carol = sets[0]
    assert carol.skipped_images == (empty,)
    assert len(carol.descriptors) == 2
    # Image descriptors first, precomputed ones after.
    np.testing.assert_allclose(carol.descriptors[0], unit(1, 1, 0), atol=1e-6)
    np.testing.assert_allclose(carol.descriptors[1], precomputed)


def test_entries_keep_input_order(fake_face_api):
    path = fake_face_api.add_image([FaceSpec(bbox=(40, 40, 140, 160), embedding=unit(1, 0))])

    sets = build_descriptors(
        [
            FaceEntry(label="zed", descriptors=([0.0, 1.0],)),
            FaceEntry(label="amy", image_paths=(path,)),
            FaceEntry(label="empty"),
        ]
    )

    assert [s.label for s in sets] == ["zed", "amy", "empty"]
    assert [len(s) for s in sets] == [1, 1, 0]


def test_precomputed_only_does_not_load_models(fake_face_api):
    sets = build_descriptors([{"label": "dan", "descriptors": [[0.1, 0.2, 0.3]]}])

    assert len(sets[0].descriptors) == 1
    assert not loader.is_prepared()


def test_precomputed_descriptors_may_be_a_stacked_array(fake_face_api):
    stacked = np.array([[1.0, 0.0], [0.0, 1.0]])

    sets = build_descriptors([{"label": "ann", "descriptors": stacked}, FaceEntry(label="bo", descriptors=stacked)])

    assert [len(s) for s in sets] == [2, 2]
    np.testing.assert_allclose(sets[0].descriptors[1], [0.0, 1.0])
    assert not loader.is_prepared()


def test_missing_label_is_invalid(fake_face_api):
    with pytest.raises(InvalidArgumentError):
        build_descriptors([{"imagePaths": []}])


def test_unsupported_entry_type_is_invalid(fake_face_api):
    with pytest.raises(InvalidArgumentError):
        build_descriptors(["alice"])


def test_unreadable_reference_image(fake_face_api, tmp_path):
    with pytest.raises(ImageReadError):
        build_descriptors([FaceEntry(label="eve", image_paths=(str(tmp_path / "missing.png"),))])


def test_descriptor_file_roundtrip(tmp_path):
    sets = [
        LabeledDescriptorSet("张三", (np.array([0.5, 0.5], np.float32),), ("a.jpg",)),
        LabeledDescriptorSet("li", ()),
    ]

    fp = save_descriptor_sets(tmp_path / "out" / "descriptors.json", sets)
    loaded = load_descriptor_sets(fp)

    with open(fp, "r", encoding="utf-8") as f:
        assert json.load(f)["schema_version"] == "v1"
    assert [s.label for s in loaded] == ["张三", "li"]
    np.testing.assert_allclose(loaded[0].descriptors[0], [0.5, 0.5])
    assert loaded[0].skipped_images == ("a.jpg",)
    assert len(loaded[1]) == 0


def test_descriptor_file_accepts_bare_list_and_rejects_unknown(tmp_path):
    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps([{"label": "x", "descriptors": [[1.0, 0.0]]}]), encoding="utf-8")
    assert load_descriptor_sets(bare)[0].label == "x"

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"schema_version": "v0"}), encoding="utf-8")
    with pytest.raises(InvalidArgumentError):
        load_descriptor_sets(bad)
