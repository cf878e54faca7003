"""Test fixtures package for dircache.

- cache_data: Sample records, usage rows and a controllable clock
- graph_responses: Stand-ins for aiohttp sessions and Graph settings

Usage:
    from tests.fixtures.cache_data import FakeClock, make_record, memory_manager
    from tests.fixtures.graph_responses import FakeSession, graph_settings
"""
