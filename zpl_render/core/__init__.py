"""
Core Business Logic
==================

Core business logic modules for ZPL render orchestration.

Modules:
- errors: Error taxonomy shared by all stages
- zpl: Label counting and segmentation
- upstream: Cache, concurrency gate, HTTP transport and dispatcher
- rendering: Batch orchestration, document assembly and the engine facade
"""
