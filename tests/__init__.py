"""
Daily Wallpaper Test Suite

Structure:
- conftest.py: synthetic JPEG sources, offline provider client, fake clock
- unit/: Unit tests for individual components and the HTTP layer
"""
