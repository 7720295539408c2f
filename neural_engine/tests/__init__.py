"""Tests for the neural engine."""
