"""
Label Segmenter
===============

Counts the printable labels in a ZPL document and splits the document into
independently renderable label units.

Counting policy, first positive rule wins:
1. ``~DGR:`` graphic-download block starts
2. ``^XA`` label starts not immediately followed by ``^QA`` or ``^MMT``
3. the numeric argument of ``^PQ``
4. one label for the whole document
"""

from dataclasses import dataclass
from typing import List, Tuple
import hashlib
import re

from zpl_render.config.logging import get_logger
from zpl_render.models.schemas import LabelAnalysis

logger = get_logger(__name__)

LABEL_START = "^XA"
LABEL_END = "^XZ"

GRAPHIC_DOWNLOAD_RE = re.compile(r"~DGR:")
GRAPHIC_NAME_RE = re.compile(r"~DGR:([^,\s\^~]+)")
LABEL_START_RE = re.compile(r"\^XA")
STANDALONE_LABEL_START_RE = re.compile(r"\^XA(?!\^QA|\^MMT)")
LABEL_END_RE = re.compile(r"\^XZ")
PRINT_QUANTITY_RE = re.compile(r"\^PQ(\d+)")

DEFAULT_GRAPHIC_NAME = "DEMO.GRF"
TERMINATOR_TEMPLATE = "\n^XA^IDR:{name}^FS^XZ"


@dataclass(frozen=True)
class LabelUnit:
    """One independently renderable label and its position in the document."""

    index: int
    zpl: str

    @property
    def content_hash(self) -> str:
        return content_hash(self.zpl)


def content_hash(zpl: str) -> str:
    """SHA-256 of the label markup."""
    return hashlib.sha256(zpl.encode("utf-8")).hexdigest()


def count_labels_with_rule(zpl: str) -> Tuple[int, str]:
    """Return the label count and the name of the counting rule that produced it."""
    graphic_downloads = len(GRAPHIC_DOWNLOAD_RE.findall(zpl))
    if graphic_downloads > 0:
        return graphic_downloads, "graphic_download"

    standalone_starts = len(STANDALONE_LABEL_START_RE.findall(zpl))
    if standalone_starts > 0:
        return standalone_starts, "label_start"

    quantity = PRINT_QUANTITY_RE.search(zpl)
    if quantity and int(quantity.group(1)) > 0:
        return int(quantity.group(1)), "print_quantity"

    return 1, "default"


def count_labels(zpl: str) -> int:
    """Number of printable labels in a ZPL document."""
    return count_labels_with_rule(zpl)[0]


def _graphic_blocks(zpl: str) -> List[str]:
    starts = [m.start() for m in GRAPHIC_DOWNLOAD_RE.finditer(zpl)]
    blocks = []
    for i, start in enumerate(starts):
        end = starts[i + 1] if i + 1 < len(starts) else len(zpl)
        blocks.append(zpl[start:end].strip())
    return blocks


def _terminate_block(block: str) -> str:
    """Append a minimal ``^XA ... ^XZ`` block when the graphic block has no terminator."""
    if block.endswith(LABEL_END):
        return block
    match = GRAPHIC_NAME_RE.search(block)
    name = match.group(1) if match else DEFAULT_GRAPHIC_NAME
    return block + TERMINATOR_TEMPLATE.format(name=name)


def _ensure_label_markers(block: str) -> str:
    if LABEL_START not in block:
        block = LABEL_START + block
    if LABEL_END not in block:
        block = block + LABEL_END
    return block


def _label_blocks(zpl: str) -> List[str]:
    """Split on standalone ``^XA`` starts; each block runs to its first ``^XZ``."""
    starts = [m.start() for m in STANDALONE_LABEL_START_RE.finditer(zpl)]
    if not starts:
        return []

    # Downloads and settings ahead of the first label apply to every label
    prelude = zpl[: starts[0]].strip()

    blocks = []
    for i, start in enumerate(starts):
        limit = starts[i + 1] if i + 1 < len(starts) else len(zpl)
        end = zpl.find(LABEL_END, start, limit)
        if end == -1:
            block = zpl[start:limit].rstrip() + LABEL_END
        else:
            block = zpl[start : end + len(LABEL_END)]
        blocks.append(f"{prelude}\n{block}" if prelude else block)
    return blocks


def _split_units(zpl: str) -> List[str]:
    if GRAPHIC_DOWNLOAD_RE.search(zpl):
        return [_ensure_label_markers(block) for block in _graphic_blocks(zpl)]

    blocks = _label_blocks(zpl)
    if blocks:
        return blocks

    return [_ensure_label_markers(zpl.strip())]


def segment(zpl: str) -> Tuple[List[LabelUnit], int]:
    """
    Split a document into one renderable unit per upstream call.

    Args:
        zpl: ZPL document

    Returns:
        Tuple of (ordered label units, label count)
    """
    count, rule = count_labels_with_rule(zpl)
    units = [LabelUnit(index=i, zpl=block) for i, block in enumerate(_split_units(zpl))]

    logger.debug(
        "Segmented ZPL document",
        length=len(zpl),
        label_count=count,
        counted_by=rule,
        unit_count=len(units),
    )
    return units, count


def chunk_for_preview(zpl: str, chunk_size: int = 16) -> List[str]:
    """
    Group labels into chunks of at most ``chunk_size`` to bound preview request size.

    Graphic-download blocks are terminated so each chunk renders on its own.
    """
    if GRAPHIC_DOWNLOAD_RE.search(zpl):
        labels = [_terminate_block(block) for block in _graphic_blocks(zpl)]
    else:
        labels = _label_blocks(zpl) or [zpl]

    chunks = [
        "\n\n".join(labels[i : i + chunk_size]) for i in range(0, len(labels), chunk_size)
    ]
    logger.debug(
        "Split ZPL into preview chunks",
        label_count=len(labels),
        chunk_count=len(chunks),
        chunk_size=chunk_size,
    )
    return chunks


def preview_target(zpl: str, label_index: int, chunk_size: int = 16) -> Tuple[str, int]:
    """
    Locate the markup and in-markup index to send for previewing one label.

    Small documents are sent whole. Larger ones are reduced to the chunk that
    holds ``label_index``.

    Returns:
        Tuple of (markup to render, 0-based label index within that markup)
    """
    if count_labels(zpl) <= chunk_size:
        return zpl, label_index

    chunks = chunk_for_preview(zpl, chunk_size)
    chunk_index = min(label_index // chunk_size, len(chunks) - 1)
    return chunks[chunk_index], label_index - chunk_index * chunk_size


def analyze_labels(zpl: str) -> LabelAnalysis:
    """Marker counts behind the label count, for diagnosing unexpected page counts."""
    count, rule = count_labels_with_rule(zpl)
    units, _ = segment(zpl)
    return LabelAnalysis(
        total_length=len(zpl),
        graphic_download_count=len(GRAPHIC_DOWNLOAD_RE.findall(zpl)),
        label_start_count=len(LABEL_START_RE.findall(zpl)),
        standalone_label_start_count=len(STANDALONE_LABEL_START_RE.findall(zpl)),
        label_end_count=len(LABEL_END_RE.findall(zpl)),
        print_quantities=[int(q) for q in PRINT_QUANTITY_RE.findall(zpl)],
        label_count=count,
        counted_by=rule,
        unit_count=len(units),
    )
