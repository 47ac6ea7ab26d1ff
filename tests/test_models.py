"""
Delta document parsing and asset descriptor tests.
"""

import json

import pytest

from delta.errors import MetadataError
from delta.models import APPLIED, OFFICIAL, STORE, STORE_SIGNED, UPDATE, parse_delta

from fakes import Build, build_name, delta_document


@pytest.fixture
def document():
    return delta_document(Build(build_name("20250101")), Build(build_name("20250108")))


def test_parse_delta_reads_all_assets(document):
    step = parse_delta(document)

    assert step.in_.name == build_name("20250101")
    assert step.out.name == build_name("20250108")
    assert [v.kind for v in step.out.variants] == [STORE, STORE_SIGNED, OFFICIAL]
    assert [v.kind for v in step.update.variants] == [UPDATE, APPLIED]
    assert step.update.name == "rom-13-nightly-device-20250101.update"
    assert step.revoked is False
    assert step.out.tag is None


def test_parse_delta_marks_revoked(document):
    assert parse_delta(document, revoked=True).revoked is True


def test_parse_delta_lowercases_digests(document):
    doc = json.loads(document)
    doc["out"]["sha256_store"] = doc["out"]["sha256_store"].upper()

    step = parse_delta(json.dumps(doc))

    assert step.out.store.sha256 == step.out.store.sha256.lower()


@pytest.mark.parametrize("field", ["in", "out", "update", "signature"])
def test_parse_delta_rejects_missing_section(document, field):
    doc = json.loads(document)
    del doc[field]

    with pytest.raises(MetadataError):
        parse_delta(json.dumps(doc))


def test_parse_delta_rejects_negative_size(document):
    doc = json.loads(document)
    doc["update"]["size"] = -1

    with pytest.raises(MetadataError, match="size"):
        parse_delta(json.dumps(doc), source="x.delta")


def test_parse_delta_rejects_non_json():
    with pytest.raises(MetadataError):
        parse_delta(b"<html>not found</html>")


def test_descriptor_accessors(document):
    step = parse_delta(document)

    assert step.update.get(STORE) is None
    with pytest.raises(KeyError):
        step.update.store  # noqa: B018
    assert step.out.official.kind == OFFICIAL


def test_set_tag(document):
    step = parse_delta(document)
    step.update.set_tag("/tmp/x.update")
    assert step.update.tag == "/tmp/x.update"
