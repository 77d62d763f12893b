"""
ZPL Module
==========

Label counting and segmentation of ZPL documents.

Components:
- segmenter: Count labels and split documents into independently renderable units
"""
