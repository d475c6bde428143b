"""Tests for bore-tunnel."""
