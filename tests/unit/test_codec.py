# Unit tests for:
#   - flatten_template      (framing, ordering, truncation cap, default 32 MiB cap)
#   - split_chunks          (alignment checks, byte_count)
#   - unflatten_template    (signature filtering, call-local face ids)
#   - max_template_size
#
# Pure unit tests - StubEngine only, no models.

from __future__ import annotations

import struct

import numpy as np
import pytest

from conftest import StubEngine, make_record_set, unit_signature
from core.engine.records import FaceRecordSet
from core.errors import CorruptTemplateError, EngineError, EngineStatus, ErrorCode, UnknownError
from core.gallery.gallery import Gallery
from core.template.codec import (
    CHUNK_HEADER_SIZE,
    MAX_TEMPLATE_SIZE,
    decode_record_sets,
    flatten_template,
    max_template_size,
    split_chunks,
    unflatten_template,
)
from core.template.template import Template


def _template(*record_sets) -> Template:
    t = Template()
    for rs in record_sets:
        t.append(rs)
    return t


@pytest.fixture
def mixed_template() -> Template:
    """Two record sets: [signed, unsigned] and [signed]."""
    return _template(
        make_record_set([unit_signature(1), None]),
        make_record_set([unit_signature(2)]),
    )


class TestMaxTemplateSize:

    def test_constant(self):
        assert MAX_TEMPLATE_SIZE == 33_554_432

    def test_function_matches_constant(self):
        assert max_template_size() == MAX_TEMPLATE_SIZE

    def test_header_is_eight_bytes(self):
        assert CHUNK_HEADER_SIZE == 8


class TestFlattenTemplate:

    def test_empty_template_is_empty_bytes(self, stub_engine):
        assert flatten_template(stub_engine, Template()) == b""

    def test_single_chunk_framing(self, stub_engine):
        rs = make_record_set([unit_signature(1)])
        blob = stub_engine.serialize_record_set(rs)
        flat = flatten_template(stub_engine, _template(rs))
        assert flat[:8] == struct.pack("<Q", len(blob))
        assert flat[8:] == blob

    def test_length_is_little_endian(self, stub_engine):
        rs = make_record_set([None])
        flat = flatten_template(stub_engine, _template(rs))
        (length,) = struct.unpack("<Q", flat[:8])
        assert length == len(flat) - 8

    def test_chunks_follow_insertion_order(self, stub_engine, mixed_template):
        flat = flatten_template(stub_engine, mixed_template)
        chunks = split_chunks(flat)
        expected = [stub_engine.serialize_record_set(rs) for rs in mixed_template.record_sets]
        assert chunks == expected

    def test_keeps_signatureless_records(self, stub_engine, mixed_template):
        flat = flatten_template(stub_engine, mixed_template)
        sets = decode_record_sets(stub_engine, flat)
        assert [s.num_faces for s in sets] == [2, 1]
        assert [s.num_signatures for s in sets] == [1, 1]

    def test_deterministic(self, stub_engine, mixed_template):
        assert flatten_template(stub_engine, mixed_template) == flatten_template(
            stub_engine, mixed_template
        )

    def test_empty_record_set_is_still_a_chunk(self, stub_engine):
        flat = flatten_template(stub_engine, _template(make_record_set([])))
        assert len(split_chunks(flat)) == 1


class TestTruncation:

    @pytest.fixture
    def sizes(self, stub_engine, mixed_template):
        return [
            CHUNK_HEADER_SIZE + len(stub_engine.serialize_record_set(rs))
            for rs in mixed_template.record_sets
        ]

    def test_exactly_at_cap_keeps_everything(self, stub_engine, mixed_template, sizes):
        flat = flatten_template(stub_engine, mixed_template, max_size=sum(sizes))
        assert len(flat) == sum(sizes)
        assert len(split_chunks(flat)) == 2

    def test_one_under_cap_drops_last_chunk(self, stub_engine, mixed_template, sizes):
        flat = flatten_template(stub_engine, mixed_template, max_size=sum(sizes) - 1)
        assert len(flat) == sizes[0]
        assert len(split_chunks(flat)) == 1

    def test_one_over_cap_keeps_everything(self, stub_engine, mixed_template, sizes):
        flat = flatten_template(stub_engine, mixed_template, max_size=sum(sizes) + 1)
        assert len(flat) == sum(sizes)

    def test_first_chunk_too_big_gives_empty(self, stub_engine, mixed_template, sizes):
        flat = flatten_template(stub_engine, mixed_template, max_size=sizes[0] - 1)
        assert flat == b""

    def test_truncated_output_is_well_formed(self, stub_engine, mixed_template, sizes):
        flat = flatten_template(stub_engine, mixed_template, max_size=sizes[0] + 5)
        assert len(split_chunks(flat)) == 1

    def test_stops_at_first_chunk_that_does_not_fit(self, stub_engine):
        big = make_record_set([unit_signature(i) for i in range(4)])
        small = make_record_set([])
        template = _template(big, small)
        cap = len(stub_engine.serialize_record_set(small)) + CHUNK_HEADER_SIZE
        # big does not fit, so small is not tried either
        assert flatten_template(stub_engine, template, max_size=cap) == b""


class TestDefaultCap:
    """Two half-cap chunks flattened against MAX_TEMPLATE_SIZE itself."""

    HALF = MAX_TEMPLATE_SIZE // 2

    class SizedBlobEngine(StubEngine):
        """Serializes a record set to ``image_width`` zero bytes."""

        def serialize_record_set(self, record_set):
            return bytes(record_set.image_width)

    def _two_chunks(self, second_extra: int) -> Template:
        first = FaceRecordSet(image_width=self.HALF - CHUNK_HEADER_SIZE)
        second = FaceRecordSet(image_width=self.HALF - CHUNK_HEADER_SIZE + second_extra)
        return _template(first, second)

    def test_exactly_at_default_cap(self):
        flat = flatten_template(self.SizedBlobEngine(), self._two_chunks(0))
        assert len(flat) == MAX_TEMPLATE_SIZE
        assert len(split_chunks(flat)) == 2

    def test_one_under_default_cap(self):
        flat = flatten_template(self.SizedBlobEngine(), self._two_chunks(-1))
        assert len(flat) == MAX_TEMPLATE_SIZE - 1
        assert len(split_chunks(flat)) == 2

    def test_one_over_default_cap_drops_second_chunk(self):
        flat = flatten_template(self.SizedBlobEngine(), self._two_chunks(1))
        assert len(flat) == self.HALF
        assert len(split_chunks(flat)) == 1


class TestSplitChunks:

    def test_empty(self):
        assert split_chunks(b"") == []

    def test_trailing_fragment_raises(self, stub_engine, mixed_template):
        flat = flatten_template(stub_engine, mixed_template)
        with pytest.raises(CorruptTemplateError):
            split_chunks(flat + b"\x01\x02\x03")

    def test_declared_length_past_end_raises(self):
        data = struct.pack("<Q", 100) + b"x" * 10
        with pytest.raises(CorruptTemplateError):
            split_chunks(data)

    def test_zero_length_chunk(self):
        assert split_chunks(struct.pack("<Q", 0)) == [b""]

    def test_byte_count_limits_decoding(self, stub_engine, mixed_template):
        flat = flatten_template(stub_engine, mixed_template)
        first = CHUNK_HEADER_SIZE + len(
            stub_engine.serialize_record_set(mixed_template.record_sets[0])
        )
        assert len(split_chunks(flat, byte_count=first)) == 1

    def test_byte_count_mid_chunk_raises(self, stub_engine, mixed_template):
        flat = flatten_template(stub_engine, mixed_template)
        with pytest.raises(CorruptTemplateError):
            split_chunks(flat, byte_count=len(flat) - 1)

    def test_byte_count_beyond_buffer_raises(self):
        with pytest.raises(CorruptTemplateError):
            split_chunks(b"", byte_count=8)

    def test_corrupt_is_unknown_error(self):
        with pytest.raises(UnknownError) as exc_info:
            split_chunks(b"\x00")
        assert exc_info.value.code is ErrorCode.UNKNOWN_ERROR


class TestUnflattenTemplate:

    def test_round_trip_counts(self, stub_engine, mixed_template):
        flat = flatten_template(stub_engine, mixed_template)
        gallery = Gallery()
        added = unflatten_template(stub_engine, flat, gallery, subject_id=5)
        assert added == mixed_template.num_signatures == 2
        assert gallery.num_signatures == 2
        assert gallery.subject_ids() == [5]

    def test_face_ids_restart_each_call(self, stub_engine, mixed_template):
        flat = flatten_template(stub_engine, mixed_template)
        gallery = Gallery()
        unflatten_template(stub_engine, flat, gallery, subject_id=1)
        unflatten_template(stub_engine, flat, gallery, subject_id=2)
        face_ids = [e.face_id for e in gallery.entries()]
        assert face_ids == [0, 1, 0, 1]

    def test_default_subject_is_zero(self, stub_engine, mixed_template):
        gallery = Gallery()
        unflatten_template(stub_engine, flatten_template(stub_engine, mixed_template), gallery)
        assert gallery.subject_ids() == [0]

    def test_signatures_survive(self, stub_engine):
        sig = unit_signature(11)
        flat = flatten_template(stub_engine, _template(make_record_set([sig])))
        gallery = Gallery()
        unflatten_template(stub_engine, flat, gallery, subject_id=3)
        np.testing.assert_array_equal(gallery.signatures_for(3)[0], sig)

    def test_empty_buffer_adds_nothing(self, stub_engine):
        gallery = Gallery()
        assert unflatten_template(stub_engine, b"", gallery) == 0
        assert gallery.is_empty

    def test_only_unsigned_records_adds_nothing(self, stub_engine):
        flat = flatten_template(stub_engine, _template(make_record_set([None, None])))
        gallery = Gallery()
        assert unflatten_template(stub_engine, flat, gallery) == 0

    def test_misaligned_adds_nothing(self, stub_engine, mixed_template):
        flat = flatten_template(stub_engine, mixed_template)
        gallery = Gallery()
        with pytest.raises(CorruptTemplateError):
            unflatten_template(stub_engine, flat + b"\x00" * 3, gallery)
        assert gallery.is_empty

    def test_byte_count_respected(self, stub_engine, mixed_template):
        flat = flatten_template(stub_engine, mixed_template)
        first = CHUNK_HEADER_SIZE + len(
            stub_engine.serialize_record_set(mixed_template.record_sets[0])
        )
        gallery = Gallery()
        assert unflatten_template(stub_engine, flat, gallery, byte_count=first) == 1

    def test_accepts_bytearray(self, stub_engine, mixed_template):
        flat = bytearray(flatten_template(stub_engine, mixed_template))
        assert unflatten_template(stub_engine, flat, Gallery()) == 2

    def test_mixed_signature_sizes_add_nothing(self, stub_engine):
        template = _template(
            make_record_set([unit_signature(1)]),
            make_record_set([unit_signature(2, dim=8)]),
        )
        flat = flatten_template(stub_engine, template)
        gallery = Gallery()
        with pytest.raises(EngineError) as exc_info:
            unflatten_template(stub_engine, flat, gallery)
        assert exc_info.value.status is EngineStatus.DIMENSION_MISMATCH
        assert gallery.is_empty

    def test_size_differs_from_gallery_adds_nothing(self, stub_engine):
        gallery = Gallery()
        gallery.add(9, 0, unit_signature(9))
        flat = flatten_template(stub_engine, _template(make_record_set([unit_signature(1, dim=8)])))
        with pytest.raises(EngineError):
            unflatten_template(stub_engine, flat, gallery, subject_id=1)
        assert gallery.subject_ids() == [9]
        assert gallery.num_signatures == 1
