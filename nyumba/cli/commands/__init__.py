"""
Nyumba CLI Commands

- cache: get/set/delete/clear/cleanup/stats on the durable cache
- search: suggest/find/nearby against a listings file
"""
