"""
Imagery Engine Test Suite

Structure:
- unit/: providers, geometry, compositor and orchestrator with a fake requests.Session
- integration/: HTTP surface and the end-to-end GIBS scenario (no live network)
"""
