"""
Unit Tests for Label Segmenter
==============================

Unit tests for label counting, document segmentation, preview chunking and
label diagnostics.
"""

import pytest

from zpl_render.core.zpl.segmenter import (
    LabelUnit,
    analyze_labels,
    chunk_for_preview,
    content_hash,
    count_labels,
    count_labels_with_rule,
    preview_target,
    segment,
)

from tests.utils.helpers import zpl_document, zpl_label

GRAPHIC_A = "~DGR:LABEL_A.GRF,8,2,FFFF00000000FFFF"
GRAPHIC_B = "~DGR:LABEL_B.GRF,8,2,0000FFFFFFFF0000"


class TestCountLabels:
    """Test the label counting policy."""

    def test_counts_graphic_downloads_first(self):
        """Graphic downloads win even when labels are also present."""
        zpl = f"{GRAPHIC_A}\n{zpl_label(1)}\n{GRAPHIC_B}\n{zpl_label(2)}\n{zpl_label(3)}"
        assert count_labels_with_rule(zpl) == (2, "graphic_download")

    def test_counts_standalone_label_starts(self):
        assert count_labels_with_rule(zpl_document(1, 2, 3)) == (3, "label_start")

    @pytest.mark.parametrize("setup", ["^XA^MMT^XZ", "^XA^QA^XZ"])
    def test_ignores_setup_blocks(self, setup):
        """``^XA^MMT`` and ``^XA^QA`` do not start printable labels."""
        zpl = f"{setup}\n{zpl_document(1, 2)}"
        assert count_labels(zpl) == 2

    def test_print_quantity_without_label_starts(self):
        assert count_labels_with_rule("^FO50,50^FDHELLO^FS^PQ5") == (5, "print_quantity")

    def test_label_starts_take_precedence_over_print_quantity(self):
        assert count_labels_with_rule("^XA^FDHELLO^FS^PQ5^XZ") == (1, "label_start")

    def test_zero_print_quantity_falls_back_to_default(self):
        assert count_labels_with_rule("^FDHELLO^FS^PQ0") == (1, "default")

    def test_document_without_markers_is_one_label(self):
        assert count_labels_with_rule("just some text") == (1, "default")

    def test_count_is_at_least_one(self):
        for zpl in ["", "   ", "^XA^MMT^XZ", "^PQ0"]:
            assert count_labels(zpl) >= 1


class TestSegment:
    """Test splitting documents into renderable label units."""

    def test_one_unit_per_label(self):
        units, count = segment(zpl_document(1, 2, 3))
        assert count == 3
        assert [u.index for u in units] == [0, 1, 2]
        assert [u.zpl for u in units] == [zpl_label(1), zpl_label(2), zpl_label(3)]

    def test_units_are_bracketed(self):
        units, _ = segment(zpl_document(1, 2, 3, 4))
        for unit in units:
            assert unit.zpl.startswith("^XA")
            assert unit.zpl.endswith("^XZ")

    def test_setup_prelude_is_prepended_to_every_label(self):
        zpl = "^XA^MMT^XZ\n" + zpl_document(1, 2)
        units, count = segment(zpl)
        assert count == 2
        assert units[0].zpl == f"^XA^MMT^XZ\n{zpl_label(1)}"
        assert units[1].zpl == f"^XA^MMT^XZ\n{zpl_label(2)}"

    def test_missing_label_end_is_synthesized(self):
        units, _ = segment("^XA^FO50,50^FDLABEL1^FS")
        assert len(units) == 1
        assert units[0].zpl == "^XA^FO50,50^FDLABEL1^FS^XZ"

    def test_graphic_blocks_become_units(self):
        zpl = f"{GRAPHIC_A}\n^XA^XGR:LABEL_A.GRF^FS^XZ\n{GRAPHIC_B}\n^XA^XGR:LABEL_B.GRF^FS^XZ"
        units, count = segment(zpl)
        assert count == 2
        assert units[0].zpl.startswith(GRAPHIC_A)
        assert "LABEL_B" not in units[0].zpl
        assert units[1].zpl.startswith(GRAPHIC_B)

    def test_bare_graphic_block_gets_label_markers(self):
        units, _ = segment(GRAPHIC_A)
        assert units[0].zpl == f"^XA{GRAPHIC_A}^XZ"

    def test_unmarked_document_is_single_unit(self):
        units, count = segment("^FO50,50^FDHELLO^FS^PQ3")
        assert count == 3
        assert len(units) == 1
        assert units[0].zpl == "^XA^FO50,50^FDHELLO^FS^PQ3^XZ"

    def test_identical_labels_share_content_hash(self):
        units, _ = segment(zpl_document(1, 2, 1))
        assert units[0].content_hash == units[2].content_hash
        assert units[0].content_hash != units[1].content_hash

    def test_content_hash_is_sha256_hex(self):
        digest = content_hash("^XA^XZ")
        assert len(digest) == 64
        assert LabelUnit(index=0, zpl="^XA^XZ").content_hash == digest


class TestPreviewChunks:
    """Test preview chunking of large documents."""

    def test_chunks_group_labels(self):
        chunks = chunk_for_preview(zpl_document(*range(5)), chunk_size=2)
        assert len(chunks) == 3
        assert chunks[0] == f"{zpl_label(0)}\n\n{zpl_label(1)}"
        assert chunks[2] == zpl_label(4)

    def test_graphic_blocks_are_terminated(self):
        chunks = chunk_for_preview(f"{GRAPHIC_A}\n{GRAPHIC_B}", chunk_size=1)
        assert chunks == [
            f"{GRAPHIC_A}\n^XA^IDR:LABEL_A.GRF^FS^XZ",
            f"{GRAPHIC_B}\n^XA^IDR:LABEL_B.GRF^FS^XZ",
        ]

    def test_terminated_graphic_blocks_are_left_alone(self):
        block = f"{GRAPHIC_A}\n^XA^XGR:LABEL_A.GRF^FS^XZ"
        assert chunk_for_preview(block, chunk_size=4) == [block]

    def test_small_document_is_sent_whole(self):
        zpl = zpl_document(1, 2, 3)
        assert preview_target(zpl, 2, chunk_size=16) == (zpl, 2)

    def test_large_document_is_reduced_to_target_chunk(self):
        numbers = list(range(100, 120))
        markup, index = preview_target(zpl_document(*numbers), 17, chunk_size=16)
        assert index == 1
        assert markup.count("^XA") == 4
        assert "LABEL116" in markup and "LABEL117" in markup
        assert "LABEL115" not in markup


class TestAnalyzeLabels:
    """Test label diagnostics."""

    def test_reports_marker_counts(self):
        zpl = "^XA^MMT^XZ\n" + zpl_document(1, 2) + "\n^XA^FDLABEL3^FS^PQ2^XZ"
        analysis = analyze_labels(zpl)
        assert analysis.total_length == len(zpl)
        assert analysis.graphic_download_count == 0
        assert analysis.label_start_count == 4
        assert analysis.standalone_label_start_count == 3
        assert analysis.label_end_count == 4
        assert analysis.print_quantities == [2]
        assert analysis.label_count == 3
        assert analysis.counted_by == "label_start"
        assert analysis.unit_count == 3
