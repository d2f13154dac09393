# Copyright (c) Syntropy Systems
"""Tests for the result stream parser."""

from __future__ import annotations

import io
import json
import time

import pytest

from resultflow.models.results import MemoryStatus
from resultflow.parser import AutodetectResultsParser, ResultsParseError


def _stream(text: str) -> io.BytesIO:
    return io.BytesIO(text.encode("utf-8"))


class _ChunkStream(io.RawIOBase):
    """Returns the given chunks, then fails as if the writer were still blocked."""

    def __init__(self, *chunks: bytes) -> None:
        super().__init__()
        self._chunks = list(chunks)
        self.reads = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        self.reads += 1
        if not self._chunks:
            msg = "read past the available output"
            raise AssertionError(msg)
        return self._chunks.pop(0)


class TestAutodetectResultsParser:
    """Tests for AutodetectResultsParser."""

    def test_parses_each_result_kind(self) -> None:
        """Test that every result kind lands in its own field."""
        documents = [
            {"bucket": {"job_id": "j", "timestamp": 1000, "bucket_span": 60}},
            {"records": [{"job_id": "j", "timestamp": 1000, "probability": 0.01}]},
            {"influencers": [{
                "job_id": "j",
                "timestamp": 1000,
                "influencer_field_name": "host",
                "influencer_field_value": "web-1",
            }]},
            {"category_definition": {"job_id": "j", "category_id": 3}},
            {"model_debug_output": {"job_id": "j", "timestamp": 1000}},
            {"model_size_stats": {"job_id": "j", "model_bytes": 42, "memory_status": "soft_limit"}},
            {"model_snapshot": {"job_id": "j", "snapshot_id": "s1"}},
            {"quantiles": {"job_id": "j", "timestamp": 1000, "quantile_state": "qs"}},
            {"flush": {"id": "f1"}},
        ]
        parser = AutodetectResultsParser()

        with parser.parse_results(_stream(json.dumps(documents))) as it:
            results = list(it)

        assert len(results) == 9
        assert results[0].bucket is not None
        assert results[0].bucket.bucket_span == 60
        assert results[1].records is not None
        assert results[1].records[0].probability == 0.01
        assert results[2].influencers is not None
        assert results[3].category_definition is not None
        assert results[4].model_debug_output is not None
        assert results[5].model_size_stats is not None
        assert results[5].model_size_stats.memory_status is MemoryStatus.SOFT_LIMIT
        assert results[6].model_snapshot is not None
        assert results[7].quantiles is not None
        assert results[8].flush_acknowledgement is not None
        assert results[8].flush_acknowledgement.id == "f1"

    def test_empty_array(self) -> None:
        """Test that an empty array yields nothing."""
        with AutodetectResultsParser().parse_results(_stream("[ ]")) as it:
            assert list(it) == []

    def test_empty_stream(self) -> None:
        """Test that an empty stream yields nothing."""
        with AutodetectResultsParser().parse_results(_stream("")) as it:
            assert list(it) == []

    def test_missing_closing_bracket_is_tolerated(self) -> None:
        """Test output cut off between elements."""
        text = '[{"flush": {"id": "a"}},\n{"flush": {"id": "b"}},\n'
        with AutodetectResultsParser().parse_results(_stream(text)) as it:
            ids = [r.flush_acknowledgement.id for r in it if r.flush_acknowledgement]

        assert ids == ["a", "b"]

    def test_elements_split_across_chunks(self) -> None:
        """Test decoding when elements straddle read boundaries."""
        documents = [{"flush": {"id": f"flush-{i}"}} for i in range(50)]
        parser = AutodetectResultsParser(chunk_size=7)

        with parser.parse_results(_stream(json.dumps(documents))) as it:
            ids = [r.flush_acknowledgement.id for r in it if r.flush_acknowledgement]

        assert ids == [f"flush-{i}" for i in range(50)]

    def test_multibyte_characters_split_across_chunks(self) -> None:
        """Test UTF-8 sequences cut by a read boundary."""
        text = json.dumps([{"flush": {"id": "flüsh-漢字"}}], ensure_ascii=False)
        parser = AutodetectResultsParser(chunk_size=3)

        with parser.parse_results(_stream(text)) as it:
            results = list(it)

        assert results[0].flush_acknowledgement is not None
        assert results[0].flush_acknowledgement.id == "flüsh-漢字"

    def test_unknown_keys_are_ignored(self) -> None:
        """Test that unrecognised result kinds decode to an empty result."""
        with AutodetectResultsParser().parse_results(_stream('[{"new_kind": {}}]')) as it:
            results = list(it)

        assert len(results) == 1
        assert results[0].bucket is None
        assert results[0].flush_acknowledgement is None

    def test_truncated_element_raises(self) -> None:
        """Test that output cut off inside an element is a parse error."""
        text = '[{"flush": {"id": "a"}}, {"bucket": {"job_id": "j", "time'
        with AutodetectResultsParser().parse_results(_stream(text)) as it:
            first = next(it)
            assert first.flush_acknowledgement is not None
            with pytest.raises(ResultsParseError):
                _ = next(it)

    def test_invalid_document_raises(self) -> None:
        """Test that a schema violation is a parse error."""
        text = '[{"bucket": {"job_id": "j"}}]'
        with AutodetectResultsParser().parse_results(_stream(text)) as it:
            with pytest.raises(ResultsParseError, match="Invalid result document"):
                _ = next(it)

    def test_non_object_element_raises(self) -> None:
        """Test that a bare value in the array is rejected."""
        with AutodetectResultsParser().parse_results(_stream("[42]")) as it:
            with pytest.raises(ResultsParseError, match="Expected a result object"):
                _ = next(it)

    def test_close_closes_stream(self) -> None:
        """Test that leaving the context closes the underlying stream."""
        stream = _stream("[]")
        with AutodetectResultsParser().parse_results(stream) as it:
            pass

        assert stream.closed
        assert list(it) == []

    def test_braces_and_escapes_inside_strings(self) -> None:
        """Test that brackets and escaped quotes in values do not end an element."""
        documents = [
            {"flush": {"id": 'a}"]{\\'}},
            {"flush": {"id": "b"}},
        ]
        parser = AutodetectResultsParser(chunk_size=2)

        with parser.parse_results(_stream(json.dumps(documents))) as it:
            ids = [r.flush_acknowledgement.id for r in it if r.flush_acknowledgement]

        assert ids == ['a}"]{\\', "b"]

    def test_malformed_element_raises_before_reading_further(self) -> None:
        """Test a bad element fails at once while later output is still unread."""
        stream = _ChunkStream(
            b'[{"flush": {"id": "a"}},\n',
            b"{not json},\n",
        )
        with AutodetectResultsParser().parse_results(stream) as it:
            first = next(it)
            assert first.flush_acknowledgement is not None
            with pytest.raises(ResultsParseError, match="Malformed result document"):
                _ = next(it)

        assert stream.reads == 2

    def test_large_element_decodes_in_linear_time(self) -> None:
        """Test a multi-megabyte bucket is decoded without rescanning."""
        records = [
            {
                "job_id": "j",
                "timestamp": 1000,
                "probability": 0.01,
                "partition_field_value": f"host-{i}",
                "normalized_probability": 12.5,
            }
            for i in range(40_000)
        ]
        text = json.dumps([{"bucket": {
            "job_id": "j",
            "timestamp": 1000,
            "bucket_span": 60,
            "records": records,
        }}])
        assert len(text) > 4_000_000

        start = time.monotonic()
        with AutodetectResultsParser().parse_results(_stream(text)) as it:
            results = list(it)
        elapsed = time.monotonic() - start

        assert results[0].bucket is not None
        assert len(results[0].bucket.records) == 40_000
        assert elapsed < 5.0
