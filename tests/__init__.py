"""Tests for PubSub Feed."""
