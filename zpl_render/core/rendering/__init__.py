"""
Rendering Module
===============

Multi-label rendering on top of the upstream dispatcher.

Components:
- orchestrator: Deduplicated, batch-sequential fan-out of label renders
- assembler: Merge per-label artifacts into one ordered PDF
- engine: Facade exposing preview, document, analysis and health operations
"""
